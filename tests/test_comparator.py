"""
Tests for encrypted less-than comparison of packed numbers (U, B and T circuits).
"""

import numpy as np
import pytest

from fq_compare import CircuitType, Comparator, NoiseBudgetExhausted, RunReport


def _digit_base(p, ctype):
    if ctype == "T":
        return p
    return 2 if p == 2 else (p + 1) // 2


def _compare(cmp, xs, ys):
    fhe = cmp.fhe_ops
    ct_x = fhe.encrypt(cmp.encode_numbers(xs))
    ct_y = fhe.encrypt(cmp.encode_numbers(ys))
    result = cmp.compare(ct_x, ct_y)
    return result, fhe.decrypt(result)


# =============================================================================
# Circuit selection
# =============================================================================

class TestCircuitType:

    @pytest.mark.parametrize("text,expected", [
        ("U", CircuitType.UNIVARIATE),
        ("b", CircuitType.BIVARIATE),
        ("T", CircuitType.TAN_ET_AL),
        ("P", CircuitType.PSM),
        ("s", CircuitType.PSM_STRING),
    ])
    def test_parse(self, text, expected):
        assert CircuitType.parse(text) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            CircuitType.parse("X")

    def test_psm_flag(self):
        assert CircuitType.PSM.is_psm and CircuitType.PSM_STRING.is_psm
        assert not CircuitType.UNIVARIATE.is_psm

    @pytest.mark.parametrize("p,ctype,kind", [
        (7, "U", "small_field"),
        (7, "B", "small_field"),
        (13, "U", "univariate"),
        (13, "B", "bivariate"),
        (7, "T", "bivariate"),
    ])
    def test_polynomial_routing(self, make_cmp, p, ctype, kind):
        cmp = make_cmp(p, ctype)
        assert cmp.poly.kind == kind
        assert cmp.enc_base == _digit_base(p, ctype)


# =============================================================================
# Per-digit comparison
# =============================================================================

class TestDigitLessThan:

    @pytest.mark.parametrize("p,ctype", [
        (2, "U"), (3, "U"), (5, "U"), (7, "U"), (11, "U"), (13, "U"), (17, "U"), (23, "U"),
        (5, "B"), (13, "B"), (17, "B"),
        (3, "T"), (5, "T"), (7, "T"), (11, "T"),
    ])
    def test_exhaustive(self, make_cmp, p, ctype):
        base = _digit_base(p, ctype)
        cmp = make_cmp(p, ctype, expansion_len=1, nslots=base * base)
        xs = [x for x in range(base) for _ in range(base)]
        ys = [y for _ in range(base) for y in range(base)]
        fhe = cmp.fhe_ops
        lt, eq = cmp.digit_less_than(fhe.encrypt(xs), fhe.encrypt(ys))
        assert fhe.decrypt(lt)[:, 0].tolist() == [int(x < y) for x, y in zip(xs, ys)]
        assert fhe.decrypt(eq)[:, 0].tolist() == [int(x == y) for x, y in zip(xs, ys)]

    def test_single_slot_numbers(self, make_cmp):
        cmp = make_cmp(13, "U", expansion_len=1, nslots=4)
        _, out = _compare(cmp, [0, 6, 3, 5], [6, 0, 3, 6])
        assert out[:, 0].tolist() == [1, 0, 0, 1]


# =============================================================================
# Packed numbers
# =============================================================================

class TestCompare:

    def test_results_at_batch_heads(self, make_cmp):
        cmp = make_cmp(7, "U", expansion_len=3, nslots=6)
        # base 4: 36 = [2, 1, 0], 35 = [2, 0, 3], 31 = [1, 3, 3], 32 = [2, 0, 0]
        result, out = _compare(cmp, [36, 31], [35, 32])
        assert out[:, 0].tolist() == [0, 0, 0, 1, 0, 0]
        assert result.depth == cmp.estimated_depth() == 6

    def test_equal_numbers(self, make_cmp):
        cmp = make_cmp(7, "U", expansion_len=3, nslots=6)
        _, out = _compare(cmp, [17, 0], [17, 0])
        assert cmp.decode_results(out) == [0, 0]

    @pytest.mark.parametrize("p,ctype,L,nslots", [
        (2, "U", 5, 10),
        (7, "U", 3, 12),
        (11, "U", 3, 12),
        (13, "U", 4, 12),
        (17, "U", 2, 10),
        (13, "B", 2, 10),
        (7, "B", 3, 12),
        (7, "T", 3, 12),
        (5, "T", 4, 8),
    ])
    def test_randomized(self, make_cmp, p, ctype, L, nslots):
        cmp = make_cmp(p, ctype, expansion_len=L, nslots=nslots, seed=7)
        report = cmp.test_compare(3)
        assert isinstance(report, RunReport)
        assert report.runs == 3
        assert report.passed
        assert 0 < report.max_depth <= cmp.estimated_depth()

    def test_boundary_values(self, make_cmp):
        cmp = make_cmp(13, "U", expansion_len=2, nslots=8)
        top = cmp.max_value() - 1
        _, out = _compare(cmp, [0, top, top, 0], [top, 0, top, 0])
        assert cmp.decode_results(out) == [1, 0, 0, 0]

    def test_operation_counters(self, make_cmp):
        cmp = make_cmp(7, "U", expansion_len=3, nslots=6)
        _compare(cmp, [1, 2], [3, 4])
        counters = cmp.fhe_ops.engine.counters
        assert counters.multiplications > 0
        assert counters.rotations > 0
        assert counters.frobenius == 0

    def test_compare_into(self, make_cmp):
        cmp = make_cmp(7, "U", expansion_len=3, nslots=6)
        fhe = cmp.fhe_ops
        target = fhe.encrypt([0])
        out = cmp.compare_into(target, fhe.encrypt(cmp.encode_numbers([3, 9])),
                               fhe.encrypt(cmp.encode_numbers([5, 2])))
        assert out is target
        assert cmp.decode_results(fhe.decrypt(target)) == [1, 0]


class TestExtensionFieldSlots:

    def test_two_digits_per_slot(self, make_cmp):
        cmp = make_cmp(3, "U", d=2, expansion_len=2, nslots=8)
        assert cmp.max_value() == 16
        result, out = _compare(cmp, [5, 9, 15, 0], [6, 9, 3, 1])
        assert cmp.decode_results(out) == [1, 0, 0, 1]
        assert result.depth <= cmp.estimated_depth() == 4

    @pytest.mark.parametrize("p,d,L", [(3, 2, 2), (5, 2, 2), (3, 3, 1), (13, 2, 2)])
    def test_randomized(self, make_cmp, p, d, L):
        cmp = make_cmp(p, "U", d=d, expansion_len=L, nslots=6, seed=11)
        report = cmp.test_compare(2)
        assert report.passed
        assert report.max_depth <= cmp.estimated_depth()
        assert cmp.fhe_ops.engine.counters.frobenius > 0

    def test_slot_less_than(self, make_cmp):
        cmp = make_cmp(5, "U", d=2, expansion_len=1, nslots=9)
        fhe = cmp.fhe_ops
        # slots hold two base-3 digits, most significant in coordinate 0
        xs = [[a, b] for a in range(3) for b in range(3)]
        ys = [[1, 1]] * 9
        lt = cmp.less_than(fhe.encrypt(np.array(xs)), fhe.encrypt(np.array(ys)))
        expected = [int(3 * a + b < 4) for a, b in xs]
        assert fhe.decrypt(lt)[:, 0].tolist() == expected


# =============================================================================
# Configuration and budget errors
# =============================================================================

class TestErrors:

    def test_depth_exceeds_chain(self, make_cmp):
        cmp = make_cmp(7, "U", expansion_len=3, nslots=6, max_level=2)
        fhe = cmp.fhe_ops
        with pytest.raises(NoiseBudgetExhausted):
            cmp.compare(fhe.encrypt([1]), fhe.encrypt([2]))

    def test_low_level_input(self, make_cmp):
        cmp = make_cmp(7, "U", expansion_len=3, nslots=6)
        fhe = cmp.fhe_ops
        with pytest.raises(NoiseBudgetExhausted):
            cmp.compare(fhe.encrypt([1]), fhe.encrypt([2], level=5))

    def test_expansion_len(self, make_ops):
        fhe = make_ops(7, nslots=6)
        with pytest.raises(ValueError):
            Comparator(fhe, "U", 1, 0, fhe.sk)

    def test_degree_mismatch(self, make_ops):
        fhe = make_ops(7, nslots=6)
        with pytest.raises(ValueError):
            Comparator(fhe, "U", 2, 3, fhe.sk)

    def test_keys_required(self):
        from fq_compare import FHEOperations, FieldOperations, SimulationEngine

        fhe = FHEOperations(SimulationEngine(FieldOperations(7), 6))
        with pytest.raises(ValueError):
            Comparator(fhe, "U", 1, 3, None)

    @pytest.mark.parametrize("ctype", ["B", "T"])
    def test_bivariate_field_limit(self, make_cmp, ctype):
        with pytest.raises(ValueError):
            make_cmp(263, ctype, nslots=4)

    def test_unknown_circuit(self, make_cmp):
        with pytest.raises(ValueError):
            make_cmp(7, "Z")

    def test_number_overflow(self, make_cmp):
        cmp = make_cmp(7, "U", expansion_len=3, nslots=12)
        assert cmp.max_value() == 64
        with pytest.raises(ValueError):
            cmp.encode_numbers([64])
        with pytest.raises(ValueError):
            cmp.encode_numbers([1] * 5)

    def test_wrong_self_test(self, make_cmp):
        cmp = make_cmp(7, "U", expansion_len=3, nslots=12)
        with pytest.raises(ValueError):
            cmp.test_compare_psm(1)
        with pytest.raises(ValueError):
            cmp.test_string_psm(1)


def test_print_decrypted(make_cmp, capsys):
    cmp = make_cmp(7, "U", expansion_len=3, nslots=6)
    cmp.print_decrypted(cmp.fhe_ops.encrypt(cmp.encode_numbers([36])), batches=1)
    assert "batch 0: [[2], [1], [0]]" in capsys.readouterr().out
