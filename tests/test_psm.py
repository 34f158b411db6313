"""
Tests for private set membership: encrypted sets (P, S) and plaintext sets.
"""

import numpy as np
import pytest


def _slots(cmp, ct):
    return cmp.fhe_ops.decrypt(ct)[:, 0].tolist()


# =============================================================================
# Integer PSM (P)
# =============================================================================

class TestIntegerPSM:

    def test_setup(self, make_cmp):
        cmp = make_cmp(17, "P", nslots=16, set_size=4)
        assert cmp.enc_base == 8
        assert cmp.max_value(1) == 8
        assert cmp.estimated_depth() == 8

    def test_encrypted_sets(self, make_cmp):
        cmp = make_cmp(17, "P", nslots=16, set_size=4)
        fhe = cmp.fhe_ops
        sets = [[1, 3, 5, 7], [0, 2, 4, 6], [7, 6, 5, 4], [1, 2, 3, 4]]
        queries = [5, 7, 4, 0]
        xs = [q for q in queries for _ in range(4)]
        ys = [s for members in sets for s in members]
        result = cmp.compare(fhe.encrypt(cmp.encode_numbers(xs, 1)),
                             fhe.encrypt(cmp.encode_numbers(ys, 1)))
        assert _slots(cmp, result) == [1, 0, 0, 0, 0, 0, 0, 0, 1, 0, 0, 0, 0, 0, 0, 0]
        assert result.depth <= cmp.estimated_depth()

    def test_extension_field_elements(self, make_cmp):
        cmp = make_cmp(5, "P", d=2, nslots=8, set_size=2)
        fhe = cmp.fhe_ops
        assert cmp.max_value(1) == 4
        sets = [[0, 1], [2, 3], [1, 3], [0, 2]]
        queries = [1, 0, 2, 2]
        xs = [q for q in queries for _ in range(2)]
        ys = [s for members in sets for s in members]
        result = cmp.compare(fhe.encrypt(cmp.encode_numbers(xs, 1)),
                             fhe.encrypt(cmp.encode_numbers(ys, 1)))
        assert cmp.decode_results(fhe.decrypt(result), 4, 2) == [1, 0, 0, 1]
        assert result.depth <= cmp.estimated_depth()

    @pytest.mark.parametrize("p,d,set_size,nslots", [
        (17, 1, 4, 16),
        (13, 1, 3, 12),
        (5, 2, 2, 8),
        (7, 2, 4, 8),
    ])
    def test_randomized(self, make_cmp, p, d, set_size, nslots):
        cmp = make_cmp(p, "P", d=d, nslots=nslots, set_size=set_size, seed=5)
        report = cmp.test_compare_psm(3)
        assert report.passed
        assert report.max_depth <= cmp.estimated_depth()

    def test_set_larger_than_domain(self, make_cmp):
        cmp = make_cmp(5, "P", nslots=8, set_size=4)
        with pytest.raises(ValueError):
            cmp.test_compare_psm(1)


# =============================================================================
# String PSM (S)
# =============================================================================

class TestStringPSM:

    def test_setup(self, make_cmp):
        cmp = make_cmp(11, "S", expansion_len=3, nslots=24, set_size=4)
        assert cmp.enc_base == 5
        assert cmp.max_value() == 125
        assert cmp.estimated_depth() == 8

    def test_encrypted_string_sets(self, make_cmp):
        cmp = make_cmp(11, "S", expansion_len=3, nslots=24, set_size=4)
        fhe = cmp.fhe_ops
        sets = [[10, 20, 30, 124], [0, 1, 2, 3]]
        queries = [30, 4]
        xs = [q for q in queries for _ in range(4)]
        ys = [s for members in sets for s in members]
        result = cmp.compare(fhe.encrypt(cmp.encode_numbers(xs)), fhe.encrypt(cmp.encode_numbers(ys)))
        out = _slots(cmp, result)
        assert out == [1] + [0] * 23
        assert result.depth <= cmp.estimated_depth()

    @pytest.mark.parametrize("p,L,set_size,nslots", [
        (11, 3, 4, 24),
        (7, 2, 3, 12),
        (13, 4, 2, 16),
    ])
    def test_randomized(self, make_cmp, p, L, set_size, nslots):
        cmp = make_cmp(p, "S", expansion_len=L, nslots=nslots, set_size=set_size, seed=9)
        report = cmp.test_string_psm(3)
        assert report.passed
        assert report.max_depth <= cmp.estimated_depth()

    def test_slots_too_few_for_one_set(self, make_cmp):
        cmp = make_cmp(11, "S", expansion_len=3, nslots=8, set_size=4)
        with pytest.raises(ValueError):
            cmp.test_string_psm(1)


# =============================================================================
# Plaintext sets
# =============================================================================

class TestPlaintextSets:

    def test_membership(self, make_cmp):
        cmp = make_cmp(17, "P", nslots=16, set_size=4)
        fhe = cmp.fhe_ops
        values = list(range(8)) * 2
        found = cmp.membership(fhe.encrypt(cmp.encode_numbers(values, 1)), [1, 4, 6])
        assert _slots(cmp, found) == [int(v in (1, 4, 6)) for v in values]

    def test_membership_extension_field(self, make_cmp):
        cmp = make_cmp(5, "P", d=2, nslots=4, set_size=2)
        fhe = cmp.fhe_ops
        found = cmp.membership(fhe.encrypt(cmp.encode_numbers([0, 1, 2, 3], 1)), [2])
        out = fhe.decrypt(found)
        assert out[:, 0].tolist() == [0, 0, 1, 0]
        assert not np.any(out[:, 1])

    def test_membership_rejects_duplicates(self, make_cmp):
        cmp = make_cmp(17, "P", nslots=16, set_size=4)
        with pytest.raises(ValueError):
            cmp.membership(cmp.fhe_ops.encrypt([1]), [3, 3])

    def test_string_membership(self, make_cmp):
        cmp = make_cmp(11, "S", expansion_len=3, nslots=12, set_size=2)
        fhe = cmp.fhe_ops
        ct = fhe.encrypt(cmp.encode_numbers([5, 17, 99, 17]))
        found = cmp.string_membership(ct, [17, 99])
        out = _slots(cmp, found)
        assert cmp.decode_results(fhe.decrypt(found)) == [0, 1, 1, 1]
        assert sum(out) == 3

    def test_string_membership_rejects_duplicates(self, make_cmp):
        cmp = make_cmp(11, "S", expansion_len=3, nslots=12, set_size=2)
        with pytest.raises(ValueError):
            cmp.string_membership(cmp.fhe_ops.encrypt([1]), [17, 17])


# =============================================================================
# Configuration
# =============================================================================

class TestPSMConfiguration:

    @pytest.mark.parametrize("set_size", [None, 0])
    def test_set_size_required(self, make_cmp, set_size):
        with pytest.raises(ValueError):
            make_cmp(17, "P", nslots=16, set_size=set_size)

    def test_field_too_small(self, make_cmp):
        with pytest.raises(ValueError):
            make_cmp(3, "P", nslots=8, set_size=2)

    def test_wrong_self_test(self, make_cmp):
        cmp = make_cmp(17, "P", nslots=16, set_size=4)
        with pytest.raises(ValueError):
            cmp.test_compare(1)
        with pytest.raises(ValueError):
            cmp.test_string_psm(1)
