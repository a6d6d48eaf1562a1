import gc

import pytest

from ortkernel import _ffi
from ortkernel.config import BridgeConfig, set_config

from fake_engine import FakeEngine


@pytest.fixture
def engine():
    """A fresh fake engine installed as the process-wide entry point table."""
    eng = FakeEngine()
    previous = _ffi.install(eng.api)
    yield eng
    gc.collect()
    _ffi.install(previous)


@pytest.fixture
def config():
    cfg = BridgeConfig()
    previous = set_config(cfg)
    yield cfg
    set_config(previous)
