"""
Tests for base-field coordinate extraction from F_{p^d} slots.
"""

import numpy as np
import pytest

from fq_compare import FieldCoordinateExtractor


def _extractor(make_ops, p, d, nslots):
    fhe = make_ops(p, d=d, nslots=nslots)
    fhe.generate_frobenius_keys(fhe.sk, range(1, d))
    return fhe, FieldCoordinateExtractor(fhe)


@pytest.mark.parametrize("p,d", [(3, 2), (5, 2), (5, 3), (2, 4)])
def test_coordinates_land_in_base_field(make_ops, rng, p, d):
    fhe, extractor = _extractor(make_ops, p, d, nslots=12)
    values = rng.integers(0, p, size=(12, d))
    coords = extractor.extract(fhe.encrypt(values))
    assert len(coords) == d
    for j, ct in enumerate(coords):
        out = fhe.decrypt(ct)
        assert out[:, 0].tolist() == values[:, j].tolist()
        assert not np.any(out[:, 1:])


def test_recombine(make_ops):
    fhe, extractor = _extractor(make_ops, 3, 2, nslots=9)
    x = fhe.field.from_int(np.arange(9))
    ct = fhe.encrypt(x)
    np.testing.assert_array_equal(fhe.decrypt(extractor.recombine(extractor.extract(ct))), x)


def test_extraction_is_free_in_depth(make_ops):
    fhe, extractor = _extractor(make_ops, 5, 3, nslots=4)
    ct = fhe.encrypt([7, 30, 124])
    assert all(c.depth == 0 and c.level == ct.level for c in extractor.extract(ct))
    assert fhe.engine.counters.frobenius == 2


def test_prime_field_passthrough(make_ops):
    fhe = make_ops(7, nslots=4)
    extractor = FieldCoordinateExtractor(fhe)
    ct = fhe.encrypt([1, 2])
    assert extractor.extract(ct)[0] is ct


def test_recombine_checks_length(make_ops):
    _, extractor = _extractor(make_ops, 3, 2, nslots=4)
    with pytest.raises(ValueError):
        extractor.recombine([])
