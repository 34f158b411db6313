"""
Coefficient Computation Module

This module builds every polynomial the comparison circuits evaluate:

1. the univariate less-than polynomial f(z), with f(x - y) = [x < y] on
   digits in [0, (p+1)/2);
2. bivariate less-than tensors on S x S (half range) or F_p x F_p
   (Tan et al.);
3. fixed tables for the small fields F_2, F_3, F_5, F_7 and F_11;
4. vanishing polynomials prod_{s in S} (X - s) for set membership;
5. the Patterson-Stockmeyer parameters for evaluating them.

All construction happens once, on plaintext integers, before anything is
encrypted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .field_operations import FieldOperations


# Coefficients (constant term first) of the univariate less-than polynomial
# for the small fields. Equal to CoefficientComputer.univariate_less_than(p).
SMALL_FIELD_LT_COEFFS: Dict[int, Tuple[int, ...]] = {
    3: (0, 1, 2),
    5: (0, 4, 0, 3, 3),
    7: (0, 3, 0, 1, 0, 6, 4),
    11: (0, 1, 0, 3, 0, 3, 0, 5, 0, 4, 6),
}

SMALL_FIELDS = (2, 3, 5, 7, 11)

# Largest characteristic for which the O(p^2) bivariate tensors are built.
MAX_BIVARIATE_CHAR = 257


@dataclass(frozen=True)
class PSParams:
    """Baby-step / giant-step split of a polynomial of degree `degree`."""

    degree: int
    baby_step: int
    giant_step: int
    top_coef: int
    extra_coef: int
    baby_index: int
    giant_index: int

    @property
    def multiplications(self) -> int:
        """Ciphertext products spent by the ladder (baby + giant + combine)."""
        return (self.baby_step - 1) + max(self.giant_step - 2, 0) + (self.giant_step - 1)

    @property
    def depth(self) -> int:
        """Upper bound on the ladder's multiplicative depth, relative to its input."""
        baby = math.ceil(math.log2(self.baby_step)) if self.baby_step > 1 else 0
        if self.giant_step == 1:
            return baby
        return baby + math.ceil(math.log2(self.giant_step - 1)) + 1


@dataclass(frozen=True)
class ComparisonPolynomial:
    """Immutable description of the per-digit less-than circuit.

    kind is one of ``"univariate"``, ``"bivariate"`` or ``"small_field"``.
    """

    p: int
    kind: str
    enc_base: int
    coeffs: np.ndarray
    ps_params: Optional[PSParams] = None
    monic_odd_coeffs: Optional[np.ndarray] = None
    tensor: Optional[np.ndarray] = None

    @property
    def degree(self) -> int:
        if self.tensor is not None:
            rows, cols = np.nonzero(self.tensor)
            return int((rows + cols).max()) if len(rows) else 0
        nonzero = np.nonzero(self.coeffs)[0]
        return int(nonzero[-1]) if len(nonzero) else 0


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


def compute_ps_params(degree: int, p: int, top_coef: int = 1, extra_coef: int = 0,
                      witness_exponent: Optional[int] = None) -> PSParams:
    """Pick baby/giant steps minimising ciphertext multiplications.

    `witness_exponent` is the power of the ladder variable that must also be
    produced (for the comparison polynomial, w^{(p-1)/2} = z^{p-1}). It
    defaults to degree + 1.
    """
    if degree < 0:
        raise ValueError("degree must be non-negative")
    terms = degree + 1
    best = None
    for baby in range(1, terms + 1):
        giant = -(-terms // baby)
        mults = (baby - 1) + max(giant - 2, 0) + (giant - 1)
        depth = (math.ceil(math.log2(baby)) if baby > 1 else 0) + \
                (math.ceil(math.log2(giant)) if giant > 1 else 0)
        key = (mults, depth, baby)
        if best is None or key < best[0]:
            best = (key, baby, giant)
    _, baby, giant = best

    exponent = terms if witness_exponent is None else witness_exponent
    if exponent > baby * giant:
        raise ValueError(f"witness exponent {exponent} exceeds ladder reach {baby * giant}")
    giant_index, baby_index = divmod(exponent, baby)
    if giant_index > giant - 1:
        giant_index, baby_index = giant - 1, exponent - (giant - 1) * baby

    return PSParams(
        degree=degree,
        baby_step=baby,
        giant_step=giant,
        top_coef=int(top_coef) % p,
        extra_coef=int(extra_coef) % p,
        baby_index=baby_index,
        giant_index=giant_index,
    )


class CoefficientComputer:
    """Builds comparison, equality and membership polynomials over F_p."""

    def __init__(self, field: FieldOperations, verbose: bool = False):
        self.field = field
        self.p = field.p
        self.verbose = verbose

    def _log(self, message: str):
        if self.verbose:
            print(f"[COEFF] {message}")

    # ------------------------------------------------------------------
    # 1) Lagrange interpolation
    # ------------------------------------------------------------------

    def interpolate_full_field(self, values: Sequence[int]) -> np.ndarray:
        """Unique polynomial of degree <= p-1 with P(a) = values[a] for all a.

        Uses 1 - (z - a)^{p-1} = [z == a] and (z - a)^{p-1} = sum_k z^k a^{p-1-k},
        swept over exponents with one vector multiply per step.
        """
        p = self.p
        y = np.asarray(values, dtype=np.int64) % p
        if y.shape != (p,):
            raise ValueError(f"need exactly {p} values")

        points = np.arange(p, dtype=np.int64)
        coeffs = np.zeros(p, dtype=np.int64)
        power = np.ones(p, dtype=np.int64)   # a^e, with 0^0 = 1
        for e in range(p):
            k = p - 1 - e
            coeffs[k] = (-int(np.dot(y, power) % p)) % p
            power = (power * points) % p
        coeffs[0] = (coeffs[0] + int(y.sum() % p)) % p
        return coeffs

    def lagrange_basis(self, points: Sequence[int]) -> np.ndarray:
        """Matrix L with L[a] the coefficients of the Lagrange basis poly at points[a]."""
        p = self.p
        pts = [int(x) % p for x in points]
        if len(set(pts)) != len(pts):
            raise ValueError("interpolation points must be distinct")
        s = len(pts)

        # N(x) = prod (x - b), low-order first
        full = [1]
        for b in pts:
            nxt = [0] * (len(full) + 1)
            for i, c in enumerate(full):
                nxt[i + 1] = (nxt[i + 1] + c) % p
                nxt[i] = (nxt[i] - b * c) % p
            full = nxt

        basis = np.zeros((s, s), dtype=np.int64)
        for row, a in enumerate(pts):
            # synthetic division N(x) / (x - a)
            quotient = [0] * s
            carry = 0
            for i in range(s, 0, -1):
                carry = (full[i] + carry * a) % p
                quotient[i - 1] = carry
            denom = 1
            for b in pts:
                if b != a:
                    denom = denom * (a - b) % p
            scale = pow(denom, p - 2, p)
            basis[row] = [(q * scale) % p for q in quotient]
        return basis

    def interpolate_bivariate(self, points: Sequence[int], table: np.ndarray) -> np.ndarray:
        """Coefficient tensor A with sum_ij A[i, j] x^i y^j = table[x, y] on points^2."""
        basis = self.lagrange_basis(points)
        y = np.asarray(table, dtype=np.int64) % self.p
        left = (basis.T @ y) % self.p
        return (left @ basis) % self.p

    # ------------------------------------------------------------------
    # 2) Less-than polynomials
    # ------------------------------------------------------------------

    def enc_base(self, full_range: bool = False) -> int:
        """Digit base: half the field for the sign trick, all of it for Tan et al."""
        if full_range:
            return self.p
        return 2 if self.p == 2 else (self.p + 1) // 2

    def univariate_less_than(self, p: Optional[int] = None) -> np.ndarray:
        """Coefficients of f with f(x - y) = [x < y] for x, y in [0, (p+1)/2).

        f(z) = (p+1)/2 z^{p-1} + sum_{k odd} c_k z^k with
        c_k = sum_{b=1}^{(p-1)/2} b^{p-1-k}; the even part vanishes.
        """
        p = self.p if p is None else p
        if p == 2:
            raise ValueError("F_2 has no univariate less-than polynomial in x - y")
        half = (p - 1) // 2
        coeffs = np.zeros(p, dtype=np.int64)
        coeffs[p - 1] = (p + 1) // 2
        base = np.arange(1, half + 1, dtype=np.int64)
        square = (base * base) % p
        power = np.ones(half, dtype=np.int64)         # b^{p-1-k} for k = p-2, p-4, ...
        power = (power * base) % p                      # b^1 pairs with k = p-2
        for k in range(p - 2, 0, -2):
            coeffs[k] = int(power.sum() % p)
            power = (power * square) % p
        return coeffs

    def less_than_table(self, domain: int) -> np.ndarray:
        idx = np.arange(domain)
        return (idx[:, None] < idx[None, :]).astype(np.int64)

    def build_polynomial(self, field_char: Optional[int] = None,
                         is_univariate: bool = True,
                         full_range: bool = False) -> ComparisonPolynomial:
        """Build the per-digit less-than circuit description.

        Small fields get their fixed table; otherwise a univariate
        polynomial plus its Patterson-Stockmeyer split, or a bivariate
        tensor (on the half range, or on all of F_p when `full_range`).
        """
        p = self.p if field_char is None else field_char
        if p != self.p:
            raise ValueError(f"field characteristic {p} does not match F_{self.p}")

        if full_range:
            return self._bivariate_polynomial(full_range=True)

        if p in SMALL_FIELDS:
            self._log(f"Using fixed small-field table for F_{p}")
            if p == 2:
                coeffs = np.array([0, 1], dtype=np.int64)
            else:
                coeffs = np.array(SMALL_FIELD_LT_COEFFS[p], dtype=np.int64)
            return ComparisonPolynomial(p=p, kind="small_field", enc_base=self.enc_base(),
                                        coeffs=_readonly(coeffs))

        if not is_univariate:
            return self._bivariate_polynomial(full_range=False)

        self._log(f"Computing univariate less-than polynomial of degree {p - 1}")
        coeffs = self.univariate_less_than()
        odd = coeffs[1::2][: (p - 1) // 2].copy()      # g(w) with f = top z^{p-1} + z g(z^2)
        top = int(odd[-1])
        monic = (odd * pow(top, p - 2, p)) % p
        params = compute_ps_params(
            degree=len(odd) - 1, p=p, top_coef=top, extra_coef=int(coeffs[p - 1]),
            witness_exponent=(p - 1) // 2,
        )
        self._log(f"PS params: baby={params.baby_step} giant={params.giant_step} "
                  f"mults={params.multiplications}")
        return ComparisonPolynomial(
            p=p, kind="univariate", enc_base=self.enc_base(), coeffs=_readonly(coeffs),
            ps_params=params, monic_odd_coeffs=_readonly(monic),
        )

    def _bivariate_polynomial(self, full_range: bool) -> ComparisonPolynomial:
        p = self.p
        if p > MAX_BIVARIATE_CHAR:
            raise ValueError(f"bivariate circuits are limited to p <= {MAX_BIVARIATE_CHAR}, got {p}")
        domain = self.enc_base(full_range)
        self._log(f"Interpolating bivariate less-than on {domain}x{domain} points")
        tensor = self.interpolate_bivariate(range(domain), self.less_than_table(domain))
        return ComparisonPolynomial(
            p=p, kind="bivariate", enc_base=domain,
            coeffs=_readonly(tensor.reshape(-1).copy()), tensor=_readonly(tensor),
        )

    # ------------------------------------------------------------------
    # 3) Set membership
    # ------------------------------------------------------------------

    def vanishing_polynomial(self, elements) -> np.ndarray:
        """Coefficients (low-order first, shape (k+1, d)) of prod (X - s)."""
        field = self.field
        roots = field.elements(elements).reshape(-1, field.d)
        if len({tuple(r) for r in roots.tolist()}) != len(roots):
            raise ValueError("set elements must be distinct")

        poly = field.one(1)
        for root in roots:
            shifted = np.zeros((len(poly) + 1, field.d), dtype=np.int64)
            shifted[1:] = poly                                   # X * poly
            shifted[:-1] = field.sub(shifted[:-1], field.mul(poly, root))
            poly = shifted
        return _readonly(poly)

    def membership_params(self, degree: int) -> PSParams:
        return compute_ps_params(degree=degree, p=self.p)
