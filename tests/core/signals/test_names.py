"""Tests for signal name resolution."""

import signal

import pytest

from procsup.signals import describe, is_forceful, resolve_signal


@pytest.mark.unit
class TestResolveSignal:
    """Test resolve_signal."""

    @pytest.mark.parametrize(
        "value", ["TERM", "term", "SIGTERM", " sigterm ", "15", 15, signal.SIGTERM]
    )
    def test_term_spellings(self, value):
        assert resolve_signal(value) is signal.SIGTERM

    def test_int_alias(self):
        assert resolve_signal("INT") is signal.SIGINT

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="unknown signal"):
            resolve_signal("NOPE")

    def test_unknown_number(self):
        with pytest.raises(ValueError, match="unknown signal number"):
            resolve_signal(999)


@pytest.mark.unit
class TestDescribe:
    """Test describe and is_forceful."""

    def test_interrupt_description(self):
        assert describe("INT") == "SIGINT(Ctrl+C)"

    def test_plain_description(self):
        assert describe(signal.SIGTERM) == "SIGTERM"

    @pytest.mark.posix
    def test_forceful(self):
        assert is_forceful("KILL") is True
        assert is_forceful("STOP") is True
        assert is_forceful("TERM") is False
