"""
Shared fixtures: a ledger on a throwaway SQLite file and a scriptable applier.
"""

import os
import tempfile

import pytest

from warden.core.clock import ManualClock
from warden.core.errors import ApplierError
from warden.ledger import Ledger

from .fakes import FakeApplier


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "warden.sqlite")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def ledger(db_path, clock):
    led = Ledger.open(db_path, busy_timeout=10.0, clock=clock)
    yield led
    led.close()


@pytest.fixture
def applier():
    return FakeApplier()


@pytest.fixture
def failing_applier():
    return FakeApplier(apply_error=ApplierError("disk full"))
