from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .coefficient_computation import ComparisonPolynomial, PSParams, compute_ps_params
from .engines import Ciphertext
from .fhe_operations import FHEOperations


class PolynomialEvaluator:
    """Homomorphic polynomial evaluation with Patterson-Stockmeyer ladders."""

    # ------------------------------------------------------------------
    # 0) Construction
    # ------------------------------------------------------------------

    def __init__(self, fhe_ops: FHEOperations, *, verbose: bool = False):
        self.fhe_ops = fhe_ops
        self.field = fhe_ops.field
        self.p = self.field.p
        self.verbose = verbose

    def _log(self, msg: str) -> None:
        if self.verbose:
            print(f"[PS] {msg}")

    def _is_zero_coeff(self, c) -> bool:
        return not np.any(np.asarray(c, dtype=np.int64) % self.p)

    # ------------------------------------------------------------------
    # 1) Power ladders
    # ------------------------------------------------------------------

    def power(self, x: Ciphertext, e: int, cache: Optional[Dict[int, Ciphertext]] = None) -> Ciphertext:
        """x^e (e >= 1) by balanced products: x^e = x^{ceil(e/2)} * x^{floor(e/2)}."""
        if e < 1:
            raise ValueError("exponent must be positive")
        cache = {1: x} if cache is None else cache
        cache.setdefault(1, x)

        def _pow(k: int) -> Ciphertext:
            if k not in cache:
                hi, lo = (k + 1) // 2, k // 2
                cache[k] = self.fhe_ops.multiply(_pow(hi), _pow(lo))
            return cache[k]

        return _pow(e)

    def power_basis(self, x: Ciphertext, max_deg: int) -> Dict[int, Ciphertext]:
        """{k: x^k} for 1 <= k <= max_deg, each at depth ceil(log2 k)."""
        basis: Dict[int, Ciphertext] = {1: x}
        for k in range(2, max_deg + 1):
            self.power(x, k, basis)
        return basis

    def linear_combination(self, basis: Dict[int, Ciphertext], coeffs, ref: Ciphertext) -> Ciphertext:
        """sum_i coeffs[i] * basis[i] with coeffs[0] the constant term."""
        acc = None
        for i in range(1, len(coeffs)):
            if self._is_zero_coeff(coeffs[i]):
                continue
            term = self.fhe_ops.multiply_constant(basis[i], coeffs[i])
            acc = term if acc is None else self.fhe_ops.add(acc, term)
        if acc is None:
            return self.fhe_ops.constant_like(ref, coeffs[0] if len(coeffs) else 0)
        if not self._is_zero_coeff(coeffs[0]):
            acc = self.fhe_ops.add_constant(acc, coeffs[0])
        return acc

    # ------------------------------------------------------------------
    # 2) Patterson-Stockmeyer
    # ------------------------------------------------------------------

    def _paterson_stockmeyer(
        self, w: Ciphertext, coeffs: np.ndarray, params: PSParams,
    ) -> Tuple[Ciphertext, Dict[int, Ciphertext], Dict[int, Ciphertext]]:
        """Evaluate sum_k coeffs[k] w^k; also return the baby and giant ladders."""
        B, G = params.baby_step, params.giant_step
        baby = self.power_basis(w, B)
        giant = self.power_basis(baby[B], G - 1) if G > 1 else {}

        result = None
        for j in range(G):
            chunk = coeffs[j * B:(j + 1) * B]
            if len(chunk) == 0 or all(self._is_zero_coeff(c) for c in chunk):
                continue
            if j == 0:
                term = self.linear_combination(baby, chunk, w)
            elif all(self._is_zero_coeff(c) for c in chunk[1:]):
                term = self.fhe_ops.multiply_constant(giant[j], chunk[0])
            else:
                term = self.fhe_ops.multiply(self.linear_combination(baby, chunk, w), giant[j])
            result = term if result is None else self.fhe_ops.add(result, term)

        if result is None:
            result = self.fhe_ops.constant_like(w, 0)
        self._log(f"PS B={B} G={G} -> depth {result.depth}")
        return result, baby, giant

    def evaluate_polynomial(self, x: Ciphertext, coeffs: Sequence) -> Ciphertext:
        """P(x) for coefficients over F_p or F_{p^d}, constant term first."""
        coeffs = np.asarray(coeffs, dtype=np.int64) % self.p
        nonzero = [k for k in range(len(coeffs)) if not self._is_zero_coeff(coeffs[k])]
        if not nonzero:
            return self.fhe_ops.constant_like(x, 0)
        degree = nonzero[-1]
        if degree == 0:
            return self.fhe_ops.constant_like(x, coeffs[0])
        params = compute_ps_params(degree, self.p)
        result, _, _ = self._paterson_stockmeyer(x, coeffs[:degree + 1], params)
        return result

    def evaluate_comparison_poly(self, z: Ciphertext, poly: ComparisonPolynomial) -> Tuple[Ciphertext, Ciphertext]:
        """(f(z), z^{p-1}) for the univariate less-than polynomial, sharing one ladder.

        f(z) = top * z * g(w) + extra * w^{(p-1)/2}, with w = z^2 and g monic.
        """
        params = poly.ps_params
        if params is None or poly.monic_odd_coeffs is None:
            raise ValueError(f"{poly.kind} polynomial has no Patterson-Stockmeyer form")

        w = self.fhe_ops.multiply(z, z)
        g, baby, giant = self._paterson_stockmeyer(w, poly.monic_odd_coeffs, params)
        g = self.fhe_ops.multiply_constant(g, params.top_coef)
        odd = self.fhe_ops.multiply(g, z)

        parts = []
        if params.baby_index:
            parts.append(baby[params.baby_index])
        if params.giant_index:
            parts.append(giant[params.giant_index])
        witness = parts[0] if len(parts) == 1 else self.fhe_ops.multiply(parts[0], parts[1])

        lt = self.fhe_ops.add(odd, self.fhe_ops.multiply_constant(witness, params.extra_coef))
        return lt, witness

    def evaluate_bivariate(self, x: Ciphertext, y: Ciphertext, tensor: np.ndarray) -> Ciphertext:
        """sum_ij A[i, j] x^i y^j = sum_i x^i * (sum_j A[i, j] y^j)."""
        tensor = np.asarray(tensor, dtype=np.int64) % self.p
        rows = [i for i in range(tensor.shape[0]) if np.any(tensor[i])]
        if not rows:
            return self.fhe_ops.constant_like(x, 0)
        deg_x = rows[-1]
        cols = [j for j in range(tensor.shape[1]) if np.any(tensor[:, j])]
        deg_y = cols[-1] if cols else 0

        xs = self.power_basis(x, deg_x) if deg_x else {}
        ys = self.power_basis(y, deg_y) if deg_y else {}

        result = None
        for i in rows:
            inner = self.linear_combination(ys, tensor[i, :deg_y + 1], y)
            term = inner if i == 0 else self.fhe_ops.multiply(xs[i], inner)
            result = term if result is None else self.fhe_ops.add(result, term)
        return result

    # ------------------------------------------------------------------
    # 3) Equality
    # ------------------------------------------------------------------

    def map_to_01(self, x: Ciphertext, pow: int = 1, witness: Optional[Ciphertext] = None) -> Ciphertext:
        """x^{p^pow - 1}: 1 where the slot is non-zero, 0 where it is zero.

        With E(k) = x^{p^k - 1}: E(2k) = E(k) * frob^k(E(k)) and
        E(k + 1) = E(1) * frob(E(k)).
        """
        if pow < 1:
            raise ValueError("pow must be positive")
        base = witness if witness is not None else self.power(x, self.p - 1)
        if self.field.d == 1 or pow == 1:
            return base

        result, k = base, 1
        for bit in bin(pow)[3:]:
            result = self.fhe_ops.multiply(result, self.fhe_ops.frobenius(result, k))
            k *= 2
            if bit == "1":
                result = self.fhe_ops.multiply(base, self.fhe_ops.frobenius(result, 1))
                k += 1
        return result

    def is_zero(self, x: Ciphertext, pow: int = 1, witness: Optional[Ciphertext] = None) -> Ciphertext:
        """1 - x^{p^pow - 1}."""
        return self.fhe_ops.one_minus(self.map_to_01(x, pow, witness))
