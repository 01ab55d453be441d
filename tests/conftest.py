import os
import sys

import pytest
import taichi as ti

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(autouse=True)
def taichi_cpu():
    """Fresh CPU runtime per test; every field of the previous test is dropped."""
    ti.init(arch=ti.cpu, default_fp=ti.f64, random_seed=0, log_level=ti.WARN)
    yield
    ti.reset()
