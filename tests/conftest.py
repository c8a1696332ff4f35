"""Shared fixtures for ShellQuest tests."""

import pytest

from shellquest.command_handler import handle_command
from shellquest.config import reload_config
from shellquest.filesystem import FileSystem

NOW = 1_700_000_000.0


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment variables out of the configuration."""
    for key in (
        "SHELLQUEST_USER",
        "SHELLQUEST_HTML_OUTPUT",
        "SHELLQUEST_SUDO_DENYLIST",
        "SHELLQUEST_MAX_OUTPUT",
    ):
        monkeypatch.delenv(key, raising=False)
    reload_config()
    yield
    reload_config()


@pytest.fixture
def clock():
    """A controllable clock frozen at NOW."""

    class Clock:
        def __init__(self):
            self.now = NOW

        def __call__(self):
            return self.now

        def advance(self, seconds):
            self.now += seconds

    return Clock()


@pytest.fixture
def fs(clock):
    """Fresh seeded filesystem, session user 'user' in /home/user."""
    return FileSystem(clock=clock)


@pytest.fixture
def root_fs(clock):
    """Seeded filesystem with root as the session user."""
    return FileSystem(username="root", clock=clock)


@pytest.fixture
def run(fs):
    """Run a command line against the ``fs`` fixture."""

    def _run(line, **kwargs):
        return handle_command(line, fs, **kwargs)

    return _run

