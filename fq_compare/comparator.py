"""
Comparator Module

Homomorphic comparison and private set membership over F_{p^d} slots.

Numbers are written in base `enc_base`, most significant digit first, and
packed into batches of `expansion_len` consecutive slots; with d > 1 every
slot carries d digits (coordinate 0 is the most significant). `compare`
leaves one result per batch, in the first slot of the batch.
"""

from __future__ import annotations

import dataclasses
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .batch_rotation import BatchRotator
from .coefficient_computation import (
    MAX_BIVARIATE_CHAR,
    CoefficientComputer,
    ComparisonPolynomial,
)
from .engines import Ciphertext
from .extraction import FieldCoordinateExtractor
from .fhe_operations import FHEOperations
from .masks import MaskLibrary
from .poly_evaluation import PolynomialEvaluator


class CircuitType(Enum):
    UNIVARIATE = "U"
    BIVARIATE = "B"
    TAN_ET_AL = "T"
    PSM = "P"
    PSM_STRING = "S"

    @classmethod
    def parse(cls, value) -> "CircuitType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(
                f"unknown circuit type {value!r}; choose U (univariate), B (bivariate), "
                f"T (Tan et al.), P (PSM) or S (string PSM)"
            ) from None

    @property
    def is_psm(self) -> bool:
        return self in (CircuitType.PSM, CircuitType.PSM_STRING)


@dataclass
class RunReport:
    """Outcome of a batch of randomized test runs."""

    runs: int
    failures: int
    mean_seconds: float
    max_depth: int

    @property
    def passed(self) -> bool:
        return self.failures == 0


def _ceil_log2(n: int) -> int:
    return math.ceil(math.log2(n)) if n > 1 else 0


class Comparator:
    """Compares numbers packed into encrypted slot batches."""

    def __init__(
        self,
        fhe_ops: FHEOperations,
        circuit_type,
        d: int,
        expansion_len: int,
        secret_key,
        verbose: bool = False,
        set_size: Optional[int] = None,
        seed: Optional[int] = None,
    ):
        self.circuit_type = CircuitType.parse(circuit_type)
        if expansion_len < 1:
            raise ValueError(f"expansion_len must be positive, got {expansion_len}")
        if fhe_ops.field.d != d:
            raise ValueError(f"engine slots have degree {fhe_ops.field.d}, comparator expects d={d}")
        if fhe_ops.relin_key is None:
            raise ValueError("FHE keys not generated; call fhe_ops.generate_keys() first")

        self.fhe_ops = fhe_ops
        self.field = fhe_ops.field
        self.p = self.field.p
        self.d = d
        self.expansion_len = int(expansion_len)
        self.verbose = verbose
        self.nslots = fhe_ops.slot_count
        self._sk = secret_key
        self._rng = np.random.default_rng(seed)

        self.coeffs = CoefficientComputer(self.field, verbose=verbose)
        self.evaluator = PolynomialEvaluator(fhe_ops, verbose=verbose)
        self.extractor = FieldCoordinateExtractor(fhe_ops, verbose=verbose) if d > 1 else None

        self.poly: Optional[ComparisonPolynomial] = None
        self.set_size: Optional[int] = None
        self._less_than_digit: Optional[Callable] = None

        if self.circuit_type.is_psm:
            self._init_psm(set_size)
        else:
            self._init_comparison()

        self._register_keys(secret_key)
        self._log(f"{self.circuit_type.name} comparator: p={self.p}, d={d}, "
                  f"L={self.expansion_len}, enc_base={self.enc_base}, slots={self.nslots}")

    def _log(self, message: str):
        if self.verbose:
            print(f"[CMP] {message}")

    # ------------------------------------------------------------------
    # 0) Setup
    # ------------------------------------------------------------------

    def _init_comparison(self):
        ctype = self.circuit_type
        if ctype in (CircuitType.BIVARIATE, CircuitType.TAN_ET_AL) and self.p > MAX_BIVARIATE_CHAR:
            raise ValueError(f"{ctype.name} circuits need p <= {MAX_BIVARIATE_CHAR}, got {self.p}")

        if ctype is CircuitType.TAN_ET_AL:
            self.poly = self.coeffs.build_polynomial(self.p, full_range=True)
        else:
            self.poly = self.coeffs.build_polynomial(self.p, is_univariate=ctype is CircuitType.UNIVARIATE)
        self.enc_base = self.poly.enc_base

        small_field_routines: Dict[int, Callable] = {
            2: self._less_than_mod_2,
            3: self._less_than_mod_3,
            5: self._less_than_mod_5,
            7: self._less_than_mod_7,
            11: self._less_than_mod_11,
        }
        if self.poly.kind == "small_field":
            self._less_than_digit = small_field_routines[self.p]
        elif self.poly.kind == "univariate":
            self._less_than_digit = self._less_than_univariate
        else:
            self._less_than_digit = self._less_than_bivariate

        self.masks = MaskLibrary(self.fhe_ops, self.expansion_len, verbose=self.verbose)
        self.rotator = BatchRotator(self.fhe_ops, self.masks, verbose=self.verbose)

    def _init_psm(self, set_size: Optional[int]):
        if set_size is None or set_size < 1:
            raise ValueError(f"PSM circuits need a positive set_size, got {set_size}")
        if self.p < 5:
            raise ValueError(f"PSM digits live in [0, (p-1)/2); p={self.p} is too small")
        self.set_size = int(set_size)
        self.enc_base = (self.p - 1) // 2

        if self.circuit_type is CircuitType.PSM:
            width = self.set_size
        else:
            width = self.expansion_len
        self.masks = MaskLibrary(self.fhe_ops, width, verbose=self.verbose)
        self.rotator = BatchRotator(self.fhe_ops, self.masks, verbose=self.verbose)
        if self.circuit_type is CircuitType.PSM_STRING:
            self.set_masks = MaskLibrary(self.fhe_ops, self.expansion_len * self.set_size,
                                         verbose=self.verbose)
            self.set_rotator = BatchRotator(self.fhe_ops, self.set_masks, verbose=self.verbose)

    def _register_keys(self, sk):
        amounts = list(self.rotator.rotation_amounts())
        if self.circuit_type is CircuitType.PSM_STRING:
            amounts += self.set_rotator.rotation_amounts()
        self.fhe_ops.generate_rotation_keys(sk, amounts)
        if self.d > 1:
            self.fhe_ops.generate_frobenius_keys(sk, range(1, self.d))

    # ------------------------------------------------------------------
    # 1) Per-digit less-than routines: each returns (lt, z^{p-1})
    # ------------------------------------------------------------------

    def _less_than_mod_2(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        ops = self.fhe_ops
        lt = ops.multiply(y, ops.add_constant(x, 1))
        return lt, ops.sub(x, y)

    def _less_than_mod_3(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        ops, c = self.fhe_ops, self.poly.coeffs
        z = ops.sub(x, y)
        z2 = ops.multiply(z, z)
        lt = ops.add(ops.multiply_constant(z2, c[2]), ops.multiply_constant(z, c[1]))
        return lt, z2

    def _less_than_mod_5(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        ops, c = self.fhe_ops, self.poly.coeffs
        z = ops.sub(x, y)
        z2 = ops.multiply(z, z)
        z3 = ops.multiply(z2, z)
        z4 = ops.multiply(z2, z2)
        lt = ops.add(ops.multiply_constant(z4, c[4]), ops.multiply_constant(z3, c[3]))
        lt = ops.add(lt, ops.multiply_constant(z, c[1]))
        return lt, z4

    def _less_than_mod_7(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        ops, c = self.fhe_ops, self.poly.coeffs
        z = ops.sub(x, y)
        z2 = ops.multiply(z, z)
        z3 = ops.multiply(z2, z)
        z5 = ops.multiply(z3, z2)
        z6 = ops.multiply(z3, z3)
        lt = ops.add(ops.multiply_constant(z6, c[6]), ops.multiply_constant(z5, c[5]))
        lt = ops.add(lt, ops.multiply_constant(z3, c[3]))
        lt = ops.add(lt, ops.multiply_constant(z, c[1]))
        return lt, z6

    def _less_than_mod_11(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        ops, c = self.fhe_ops, self.poly.coeffs
        z = ops.sub(x, y)
        w = ops.multiply(z, z)
        w2 = ops.multiply(w, w)
        w3 = ops.multiply(w2, w)
        w4 = ops.multiply(w2, w2)
        w5 = ops.multiply(w4, w)
        # odd part z * g(w), g(w) = c1 + c3 w + c5 w^2 + c7 w^3 + c9 w^4
        g = ops.add_constant(ops.multiply_constant(w, c[3]), c[1])
        for power, coef in ((w2, c[5]), (w3, c[7]), (w4, c[9])):
            g = ops.add(g, ops.multiply_constant(power, coef))
        lt = ops.add(ops.multiply(g, z), ops.multiply_constant(w5, c[10]))
        return lt, w5

    def _less_than_univariate(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        z = self.fhe_ops.sub(x, y)
        return self.evaluator.evaluate_comparison_poly(z, self.poly)

    def _less_than_bivariate(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        lt = self.evaluator.evaluate_bivariate(x, y, self.poly.tensor)
        witness = self.evaluator.power(self.fhe_ops.sub(x, y), self.p - 1)
        return lt, witness

    def digit_less_than(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        """Slot-wise ([x < y], [x == y]) for F_p digits."""
        lt, witness = self._less_than_digit(x, y)
        return lt, self.fhe_ops.one_minus(witness)

    def less_than(self, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        """Slot-wise [x < y]; with d > 1 the d digits of a slot are compared lexicographically."""
        lt, _ = self._slot_less_than(x, y)
        return lt

    def _slot_less_than(self, x: Ciphertext, y: Ciphertext) -> Tuple[Ciphertext, Ciphertext]:
        if self.d == 1:
            return self.digit_less_than(x, y)

        xs = self.extractor.extract(x)
        ys = self.extractor.extract(y)
        pairs = [self.digit_less_than(xj, yj) for xj, yj in zip(xs, ys)]

        # balanced tree of (lt_a + eq_a * lt_b, eq_a * eq_b), a more significant than b
        ops = self.fhe_ops
        while len(pairs) > 1:
            merged = []
            for k in range(0, len(pairs) - 1, 2):
                (lt_a, eq_a), (lt_b, eq_b) = pairs[k], pairs[k + 1]
                merged.append((ops.add(lt_a, ops.multiply(eq_a, lt_b)), ops.multiply(eq_a, eq_b)))
            if len(pairs) % 2:
                merged.append(pairs[-1])
            pairs = merged
        return pairs[0]

    # ------------------------------------------------------------------
    # 2) Equality
    # ------------------------------------------------------------------

    def map_to_01(self, x: Ciphertext, pow: int = 1) -> Ciphertext:
        return self.evaluator.map_to_01(x, pow)

    def is_zero(self, z: Ciphertext, pow: int = 1) -> Ciphertext:
        return self.evaluator.is_zero(z, pow)

    # ------------------------------------------------------------------
    # 3) Comparison
    # ------------------------------------------------------------------

    def compare(self, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        """One result per batch, in its first slot.

        U/B/T: [X < Y]. P: [x in S] with x repeated over a batch of set_size
        slots and y holding S. S: [X in S] with X repeated over set_size
        strings of expansion_len slots and y holding the set strings.
        """
        self.fhe_ops.require_depth(x, self.estimated_depth())
        self.fhe_ops.require_depth(y, self.estimated_depth())
        start = time.time()

        if self.circuit_type is CircuitType.PSM:
            result = self._compare_psm(x, y)
        elif self.circuit_type is CircuitType.PSM_STRING:
            result = self._compare_string_psm(x, y)
        else:
            result = self._compare_less_than(x, y)

        self._log(f"compare: depth {result.depth}, level {result.level}, {time.time() - start:.3f}s")
        return result

    def compare_into(self, result: Ciphertext, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        """`compare` writing into an existing ciphertext object."""
        out = self.compare(x, y)
        for f in dataclasses.fields(out):
            setattr(result, f.name, getattr(out, f.name))
        return result

    def _isolate_heads(self, ct: Ciphertext, masks: MaskLibrary) -> Ciphertext:
        return self.fhe_ops.multiply_plain(ct, masks.head_mask(0).multiplier)

    def _compare_less_than(self, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        lt, eq = self._slot_less_than(x, y)
        if self.expansion_len == 1:
            return lt

        # prefix_eq[i] = prod of eq[j] for j < i inside the batch
        prefix_eq = self.rotator.batch_shift(eq, 0, -1, for_mul=True)
        prefix_eq = self.rotator.shift_and_mul(prefix_eq, 0)
        terms = self.fhe_ops.multiply(lt, prefix_eq)
        total = self.rotator.shift_and_add(terms, 0, reverse=True)
        return self._isolate_heads(total, self.masks)

    def _compare_psm(self, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        diff = self.fhe_ops.sub(x, y)
        vanishing = self.rotator.running_product(diff, 0)
        found = self.evaluator.is_zero(vanishing, self.d)
        return self._isolate_heads(found, self.masks)

    def _compare_string_psm(self, x: Ciphertext, y: Ciphertext) -> Ciphertext:
        digit_eq = self.evaluator.is_zero(self.fhe_ops.sub(x, y), self.d)
        string_eq = self.rotator.running_product(digit_eq, 0)
        string_eq = self._isolate_heads(string_eq, self.masks)
        found = self.set_rotator.running_sum(string_eq, 0)
        return self._isolate_heads(found, self.set_masks)

    # ------------------------------------------------------------------
    # 4) Membership in a plaintext set
    # ------------------------------------------------------------------

    def membership(self, x: Ciphertext, elements: Sequence) -> Ciphertext:
        """Slot-wise [x in S] through the vanishing polynomial of S."""
        poly = self.coeffs.vanishing_polynomial(self._psm_elements(elements))
        self.fhe_ops.require_depth(x, self._membership_depth(len(poly) - 1))
        vanishing = self.evaluator.evaluate_polynomial(x, poly)
        return self.evaluator.is_zero(vanishing, self.d)

    def string_membership(self, x: Ciphertext, strings: Sequence[int]) -> Ciphertext:
        """[X in S] for every batch X of expansion_len slots; result in the batch head."""
        if len(set(strings)) != len(strings):
            raise ValueError("set strings must be distinct")
        per_batch = self.nslots // self.expansion_len
        found = None
        for s in strings:
            pattern = self.encode_numbers([s] * per_batch, self.expansion_len)
            eq = self.evaluator.is_zero(self.fhe_ops.sub_plain(x, self.fhe_ops.encode(pattern)), self.d)
            eq = self.rotator.running_product(eq, 0)
            found = eq if found is None else self.fhe_ops.add(found, eq)
        return self._isolate_heads(found, self.masks)

    def _psm_elements(self, elements: Sequence) -> np.ndarray:
        return np.stack([self._number_to_slots(int(v), 1)[0] for v in elements])

    # ------------------------------------------------------------------
    # 5) Depth accounting
    # ------------------------------------------------------------------

    def _digit_depth(self) -> int:
        kind = self.poly.kind
        if kind == "small_field":
            return {2: 1, 3: 1, 5: 2, 7: 3, 11: 4}[self.p]
        if kind == "univariate":
            return self.poly.ps_params.depth + 2
        rows, cols = np.nonzero(self.poly.tensor)
        bivar = max(_ceil_log2(int(rows.max())), _ceil_log2(int(cols.max()))) + 1
        return max(bivar, _ceil_log2(self.p - 1))

    def _is_zero_depth(self) -> int:
        bits = len(bin(self.d)) - 3
        return _ceil_log2(self.p - 1) + 2 * bits

    def _membership_depth(self, degree: int) -> int:
        return self.coeffs.membership_params(degree).depth + self._is_zero_depth()

    def estimated_depth(self) -> int:
        """Upper bound on the multiplicative depth of `compare` for this configuration."""
        L = self.expansion_len
        if self.circuit_type is CircuitType.PSM:
            return 2 * _ceil_log2(self.set_size) + self._is_zero_depth()
        if self.circuit_type is CircuitType.PSM_STRING:
            return self._is_zero_depth() + 2 * _ceil_log2(L)
        depth = self._digit_depth() + _ceil_log2(self.d)
        if L > 1:
            depth += _ceil_log2(L) + 1
        return depth

    # ------------------------------------------------------------------
    # 6) Encoding helpers
    # ------------------------------------------------------------------

    def _number_to_slots(self, value: int, slots: int) -> np.ndarray:
        digits = self.field.int_to_digits(value, self.enc_base, slots * self.d)
        return np.array(digits, dtype=np.int64).reshape(slots, self.d)

    def encode_numbers(self, values: Sequence[int], slots_per_number: Optional[int] = None) -> np.ndarray:
        """Pack integers into consecutive batches; returns a (nslots, d) slot array."""
        width = self.expansion_len if slots_per_number is None else slots_per_number
        if len(values) * width > self.nslots:
            raise ValueError(f"{len(values)} numbers of {width} slots exceed {self.nslots} slots")
        out = self.field.zero(self.nslots)
        for i, value in enumerate(values):
            out[i * width:(i + 1) * width] = self._number_to_slots(int(value), width)
        return out

    def decode_results(self, slots: np.ndarray, count: Optional[int] = None,
                       width: Optional[int] = None) -> List[int]:
        """Results stored in the first slot of each batch."""
        width = self.expansion_len if width is None else width
        count = self.nslots // width if count is None else count
        return [int(slots[i * width, 0]) for i in range(count)]

    def max_value(self, slots_per_number: Optional[int] = None) -> int:
        width = self.expansion_len if slots_per_number is None else slots_per_number
        return self.enc_base ** (width * self.d)

    def print_decrypted(self, ct: Ciphertext, batches: int = 4):
        """Debug print of the first batches (uses the secret key)."""
        dec = self.fhe_ops.decrypt(ct, self._sk)
        width = self.expansion_len
        for b in range(min(batches, self.nslots // width)):
            chunk = dec[b * width:(b + 1) * width]
            print(f"batch {b}: {chunk.tolist()}")

    # ------------------------------------------------------------------
    # 7) Randomized self-tests
    # ------------------------------------------------------------------

    def _run(self, x_vals, y_vals, expected, width: int, result_width: int) -> Tuple[bool, float, int]:
        ct_x = self.fhe_ops.encrypt(self.encode_numbers(x_vals, width))
        ct_y = self.fhe_ops.encrypt(self.encode_numbers(y_vals, width))
        start = time.time()
        result = self.compare(ct_x, ct_y)
        elapsed = time.time() - start
        got = self.decode_results(self.fhe_ops.decrypt(result, self._sk), len(expected), result_width)
        ok = got == list(expected)
        if not ok:
            self._log(f"mismatch: expected {list(expected)}, got {got}")
        return ok, elapsed, result.depth

    def _report(self, outcomes) -> RunReport:
        runs = len(outcomes)
        failures = sum(1 for ok, _, _ in outcomes if not ok)
        report = RunReport(
            runs=runs,
            failures=failures,
            mean_seconds=float(np.mean([t for _, t, _ in outcomes])) if runs else 0.0,
            max_depth=max((dep for _, _, dep in outcomes), default=0),
        )
        self._log(f"{runs} runs, {failures} failures, {report.mean_seconds:.3f}s/run, depth {report.max_depth}")
        return report

    def test_compare(self, runs: int) -> RunReport:
        if self.circuit_type.is_psm:
            raise ValueError("test_compare needs a U, B or T comparator")
        count = self.nslots // self.expansion_len
        bound = self.max_value()
        outcomes = []
        for _ in range(runs):
            xs = [int(v) for v in self._rng.integers(0, bound, size=count)]
            ys = [int(v) for v in self._rng.integers(0, bound, size=count)]
            expected = [int(a < b) for a, b in zip(xs, ys)]
            outcomes.append(self._run(xs, ys, expected, self.expansion_len, self.expansion_len))
        return self._report(outcomes)

    def _random_set(self, bound: int) -> List[int]:
        if bound < self.set_size:
            raise ValueError(f"only {bound} encodable values for a set of {self.set_size}")
        return [int(v) for v in self._rng.choice(bound, size=self.set_size, replace=False)]

    def _random_queries(self, bound: int, groups: int) -> Tuple[List[List[int]], List[int], List[int]]:
        sets, queries, expected = [], [], []
        for _ in range(groups):
            members = self._random_set(bound)
            if self._rng.integers(0, 2):
                query = members[int(self._rng.integers(0, len(members)))]
            else:
                query = int(self._rng.integers(0, bound))
            sets.append(members)
            queries.append(query)
            expected.append(int(query in members))
        return sets, queries, expected

    def test_compare_psm(self, runs: int) -> RunReport:
        if self.circuit_type is not CircuitType.PSM:
            raise ValueError("test_compare_psm needs a P comparator")
        groups = self.nslots // self.set_size
        bound = self.max_value(1)
        outcomes = []
        for _ in range(runs):
            sets, queries, expected = self._random_queries(bound, groups)
            xs = [q for q in queries for _ in range(self.set_size)]
            ys = [s for members in sets for s in members]
            outcomes.append(self._run(xs, ys, expected, 1, self.set_size))
        return self._report(outcomes)

    def test_string_psm(self, runs: int) -> RunReport:
        if self.circuit_type is not CircuitType.PSM_STRING:
            raise ValueError("test_string_psm needs an S comparator")
        L = self.expansion_len
        groups = self.nslots // (L * self.set_size)
        if groups < 1:
            raise ValueError(f"{self.nslots} slots cannot hold {self.set_size} strings of {L} slots")
        bound = self.max_value()
        outcomes = []
        for _ in range(runs):
            sets, queries, expected = self._random_queries(bound, groups)
            xs = [q for q in queries for _ in range(self.set_size)]
            ys = [s for members in sets for s in members]
            outcomes.append(self._run(xs, ys, expected, L, L * self.set_size))
        return self._report(outcomes)
