"""Build hook that records git build info in procsup/_build_info.py.

Configuration lives in pyproject.toml; this only adds a build_py step so the
installed package can report which commit it was built from
(see ``procsup version``). Source files are never modified.
"""

import subprocess
import sys
from datetime import UTC, datetime
from pathlib import Path

from setuptools import setup
from setuptools.command.build_py import build_py

_TEMPLATE = '''\
"""Build information - generated at build time, do not edit."""

COMMIT_SHORT = "{commit}"
BUILD_TIME = "{built}"
MODIFIED = {modified}
'''


def _git(*args: str) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=5,
            cwd=Path(__file__).parent,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    return result.stdout.strip() if result.returncode == 0 else None


def write_build_info(package_dir: Path) -> bool:
    """Write _build_info.py into package_dir; False outside a git checkout."""
    commit = _git("rev-parse", "--short=7", "HEAD")
    if not commit:
        print("procsup: no git info, skipping _build_info.py", file=sys.stderr)
        return False

    content = _TEMPLATE.format(
        commit=commit,
        built=datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
        modified=bool(_git("status", "--porcelain")),
    )
    (package_dir / "_build_info.py").write_text(content)
    print(f"procsup: wrote _build_info.py ({commit})", file=sys.stderr)
    return True


class BuildPy(build_py):
    """build_py that adds _build_info.py to the built package."""

    def run(self):
        super().run()
        package_dir = Path(self.build_lib) / "procsup"
        if package_dir.is_dir():
            write_build_info(package_dir)


setup(cmdclass={"build_py": BuildPy})
