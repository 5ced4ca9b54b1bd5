"""
Tests for in-flight ownership checks.
"""

import os
import socket
import subprocess
import sys

import pytest

from warden.core.owner import current_owner, owner_alive


def test_current_process_is_alive():
    owner = current_owner()

    assert owner == {"pid": os.getpid(), "host": socket.gethostname()}
    assert owner_alive(owner)


def test_live_child_is_alive():
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    try:
        assert owner_alive({"pid": proc.pid, "host": socket.gethostname()})
    finally:
        proc.kill()
        proc.wait()


def test_exited_process_is_gone():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()

    assert not owner_alive({"pid": proc.pid, "host": socket.gethostname()})


@pytest.mark.parametrize(
    "owner",
    [
        None,
        "1234",
        {},
        {"pid": os.getpid(), "host": "elsewhere.invalid"},
        {"pid": "1", "host": socket.gethostname()},
        {"pid": 0, "host": socket.gethostname()},
        {"pid": -1, "host": socket.gethostname()},
    ],
)
def test_unusable_owner_is_gone(owner):
    assert not owner_alive(owner)
