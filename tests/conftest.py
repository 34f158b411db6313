"""
Shared fixtures: simulated slot engines with generated keys.
"""

import numpy as np
import pytest

from fq_compare import Comparator, FHEOperations, FieldOperations, SimulationEngine


def make_context(p, d=1, nslots=16, max_level=30):
    """FHEOperations over a SimulationEngine with sk/pk/relin keys ready."""
    field = FieldOperations(p, d)
    fhe = FHEOperations(SimulationEngine(field, nslots, max_level=max_level))
    fhe.generate_keys()
    return fhe


def make_comparator(p, circuit_type, d=1, expansion_len=3, nslots=12, max_level=30, **kwargs):
    fhe = make_context(p, d, nslots, max_level)
    return Comparator(fhe, circuit_type, d, expansion_len, fhe.sk, **kwargs)


@pytest.fixture
def make_ops():
    return make_context


@pytest.fixture
def make_cmp():
    return make_comparator


@pytest.fixture
def rng():
    return np.random.default_rng(2024)
