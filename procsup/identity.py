"""
Process identity: title, current user and ownership changes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import setproctitle

from .exceptions import ProcError, UnsupportedPlatformError
from .platform import is_posix


@dataclass(frozen=True)
class UserInfo:
    """Account the current process runs as."""

    name: str
    uid: int
    gid: int
    home: str
    shell: str


def set_title(title: str) -> bool:
    """
    Set the process title shown by ps and top.

    Returns:
        True if the title was applied, False for an empty title
    """
    if not title:
        return False
    setproctitle.setproctitle(title)
    return True


def get_title() -> str:
    return setproctitle.getproctitle()


def current_user() -> UserInfo:
    """
    Look up the account of the effective user id.

    Raises:
        UnsupportedPlatformError: On platforms without a passwd database
    """
    if not is_posix():
        raise UnsupportedPlatformError("user database not available")
    import pwd

    entry = pwd.getpwuid(os.geteuid())
    return UserInfo(
        name=entry.pw_name,
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        home=entry.pw_dir,
        shell=entry.pw_shell,
    )


def change_owner(user: str, group: str | None = None) -> UserInfo:
    """
    Switch the process to another user (and optionally group).

    The group is changed before the user, since dropping root first would
    forbid the group switch. Supplementary groups are reset to those of the
    target user.

    Args:
        user: Target user name
        group: Target group name (default: the user's primary group)

    Returns:
        The account now in effect

    Raises:
        ProcError: If the user or group does not exist or the switch is refused
        UnsupportedPlatformError: On platforms without user accounts
    """
    if not is_posix():
        raise UnsupportedPlatformError("ownership changes not supported")
    import grp
    import pwd

    try:
        entry = pwd.getpwnam(user)
    except KeyError:
        raise ProcError("unknown user", user=user) from None

    gid = entry.pw_gid
    if group:
        try:
            gid = grp.getgrnam(group).gr_gid
        except KeyError:
            raise ProcError("unknown group", group=group) from None

    if os.geteuid() == entry.pw_uid and os.getegid() == gid:
        return current_user()

    try:
        os.initgroups(user, gid)
        os.setgid(gid)
        os.setuid(entry.pw_uid)
    except PermissionError as e:
        raise ProcError("not permitted to change owner", user=user) from e

    return current_user()
