"""
Field Operations Module

This module handles arithmetic in the slot field F_{p^d} = F_p[X]/(f(X)),
the integer <-> digit encodings used to pack numbers into slots, and the
trace-dual basis that lets base-field coordinates be pulled out of an
extension-field slot.

Elements are numpy int64 coordinate vectors of length d (the coefficient of
X^j sits at index j). A vector of slots is an array of shape (nslots, d).
"""

from __future__ import annotations

import itertools
from typing import List, Optional, Sequence

import numpy as np
import sympy


class FieldOperations:
    """Vectorised arithmetic in F_{p^d}."""

    def __init__(
        self,
        p: int,
        d: int = 1,
        modulus: Optional[Sequence[int]] = None,
        verbose: bool = False,
    ):
        if not sympy.isprime(p):
            raise ValueError(f"plaintext modulus must be prime, got {p}")
        if d < 1:
            raise ValueError(f"extension degree must be positive, got {d}")

        self.p = int(p)
        self.d = int(d)
        self.verbose = verbose

        if modulus is None:
            modulus = self.find_irreducible(self.p, self.d)
        f = np.asarray(modulus, dtype=np.int64) % self.p
        if f.shape != (self.d + 1,) or f[-1] != 1:
            raise ValueError("slot modulus must be a monic polynomial of degree d")
        if self.d > 1 and not self.is_irreducible(f, self.p):
            raise ValueError(f"slot modulus {f.tolist()} is reducible over F_{self.p}")
        f.flags.writeable = False
        self.modulus = f
        self.order = self.p ** self.d

        self._log(f"F_{self.p}^{self.d} with modulus {self.modulus.tolist()}")

    def _log(self, message: str):
        if self.verbose:
            print(f"[FIELD] {message}")

    # ------------------------------------------------------------------
    # 0) Slot modulus selection
    # ------------------------------------------------------------------

    @staticmethod
    def is_irreducible(coeffs: Sequence[int], p: int) -> bool:
        """Irreducibility over F_p of a polynomial given low-order first."""
        x = sympy.Symbol("x")
        poly = sympy.Poly(list(reversed([int(c) for c in coeffs])), x, modulus=p)
        return bool(poly.is_irreducible)

    @staticmethod
    def find_irreducible(p: int, d: int) -> List[int]:
        """Lexicographically first monic irreducible polynomial of degree d."""
        if d == 1:
            return [0, 1]
        for tail in itertools.product(range(p), repeat=d):
            if tail[0] == 0:
                continue
            coeffs = list(tail) + [1]
            if FieldOperations.is_irreducible(coeffs, p):
                return coeffs
        raise ValueError(f"no irreducible polynomial of degree {d} over F_{p}")

    # ------------------------------------------------------------------
    # 1) Element construction
    # ------------------------------------------------------------------

    def elements(self, values) -> np.ndarray:
        """Coerce ints or coordinate arrays into shape (..., d) elements.

        Plain integers are read as base-p encodings (see :meth:`from_int`),
        so for values below p this is the embedding of F_p.
        """
        arr = np.asarray(values)
        if arr.ndim >= 2 and arr.shape[-1] == self.d:
            return arr.astype(np.int64) % self.p
        if self.d == 1:
            return (arr.astype(np.int64) % self.p)[..., None]
        return self.from_int(arr)

    def zero(self, count: Optional[int] = None) -> np.ndarray:
        shape = (self.d,) if count is None else (count, self.d)
        return np.zeros(shape, dtype=np.int64)

    def one(self, count: Optional[int] = None) -> np.ndarray:
        return self.constant(1, count)

    def constant(self, value: int, count: Optional[int] = None) -> np.ndarray:
        """The F_p constant `value` (optionally repeated `count` times)."""
        elem = self.zero(count)
        elem[..., 0] = int(value) % self.p
        return elem

    def generator(self) -> np.ndarray:
        """The class of X, i.e. the element with coordinates (0, 1, 0, ...)."""
        if self.d == 1:
            return self.constant(0)
        elem = self.zero()
        elem[1] = 1
        return elem

    def from_int(self, values) -> np.ndarray:
        """Base-p coordinates of integers in [0, p^d)."""
        arr = np.asarray(values, dtype=object)
        if np.any(arr < 0) or np.any(arr >= self.order):
            raise ValueError(f"values must lie in [0, {self.order})")
        out = np.zeros(arr.shape + (self.d,), dtype=np.int64)
        rest = arr.copy()
        for j in range(self.d):
            out[..., j] = np.asarray(rest % self.p, dtype=object).astype(np.int64)
            rest = rest // self.p
        return out

    def to_int(self, elems) -> np.ndarray:
        """Inverse of :meth:`from_int`."""
        arr = np.asarray(elems, dtype=np.int64) % self.p
        out = np.zeros(arr.shape[:-1], dtype=object)
        for j in reversed(range(self.d)):
            out = out * self.p + arr[..., j].astype(object)
        return out

    # ------------------------------------------------------------------
    # 2) Arithmetic
    # ------------------------------------------------------------------

    def add(self, a, b) -> np.ndarray:
        return (np.asarray(a, dtype=np.int64) + np.asarray(b, dtype=np.int64)) % self.p

    def sub(self, a, b) -> np.ndarray:
        return (np.asarray(a, dtype=np.int64) - np.asarray(b, dtype=np.int64)) % self.p

    def neg(self, a) -> np.ndarray:
        return (-np.asarray(a, dtype=np.int64)) % self.p

    def mul(self, a, b) -> np.ndarray:
        a = np.asarray(a, dtype=np.int64)
        b = np.asarray(b, dtype=np.int64)
        if self.d == 1:
            return (a * b) % self.p

        shape = np.broadcast_shapes(a.shape, b.shape)[:-1]
        prod = np.zeros(shape + (2 * self.d - 1,), dtype=np.int64)
        for i in range(self.d):
            prod[..., i:i + self.d] += a[..., i:i + 1] * b
            prod %= self.p

        # reduce modulo the monic slot polynomial, highest degree first
        tail = self.modulus[:self.d]
        for k in range(2 * self.d - 2, self.d - 1, -1):
            lead = prod[..., k:k + 1]
            prod[..., k - self.d:k] -= lead * tail
            prod[..., k - self.d:k] %= self.p
        return prod[..., :self.d] % self.p

    def pow(self, a, e: int) -> np.ndarray:
        """Square-and-multiply power; e = 0 yields 1 (also for 0^0)."""
        if e < 0:
            raise ValueError("negative exponents are not supported, use inv()")
        base = np.asarray(a, dtype=np.int64) % self.p
        result = np.zeros_like(base)
        result[..., 0] = 1
        while e:
            if e & 1:
                result = self.mul(result, base)
            e >>= 1
            if e:
                base = self.mul(base, base)
        return result

    def inv(self, a) -> np.ndarray:
        a = np.asarray(a, dtype=np.int64) % self.p
        if np.any(np.all(a == 0, axis=-1)):
            raise ZeroDivisionError("cannot invert zero")
        return self.pow(a, self.order - 2)

    def frobenius(self, a, k: int = 1) -> np.ndarray:
        """a^{p^k}; the identity when k is a multiple of d."""
        result = np.asarray(a, dtype=np.int64) % self.p
        for _ in range(k % self.d):
            result = self.pow(result, self.p)
        return result

    def trace(self, a) -> np.ndarray:
        """Tr(a) = sum_i a^{p^i}, returned as F_p integers."""
        a = np.asarray(a, dtype=np.int64) % self.p
        total = a.copy()
        conj = a
        for _ in range(1, self.d):
            conj = self.pow(conj, self.p)
            total = self.add(total, conj)
        return total[..., 0]

    def is_zero(self, a) -> np.ndarray:
        return np.all(np.asarray(a) % self.p == 0, axis=-1)

    # ------------------------------------------------------------------
    # 3) Digit encodings
    # ------------------------------------------------------------------

    @staticmethod
    def int_to_digits(value: int, base: int, length: int) -> List[int]:
        """Fixed-width base-`base` expansion, most significant digit first."""
        if value < 0 or value >= base ** length:
            raise ValueError(f"{value} does not fit in {length} digits of base {base}")
        digits = []
        for _ in range(length):
            value, digit = divmod(value, base)
            digits.append(digit)
        return digits[::-1]

    @staticmethod
    def digits_to_int(digits: Sequence[int], base: int) -> int:
        value = 0
        for digit in digits:
            value = value * base + int(digit)
        return value

    # ------------------------------------------------------------------
    # 4) Trace-dual basis
    # ------------------------------------------------------------------

    def dual_basis(self) -> np.ndarray:
        """Trace-dual basis beta_j of the polynomial basis 1, X, ..., X^{d-1}.

        Tr(beta_j * X^i) = [i == j], so the j-th coordinate of any element a
        is Tr(beta_j * a).
        """
        x = self.generator()
        powers = [self.pow(x, e) for e in range(2 * self.d - 1)]
        gram = [[int(self.trace(powers[i + k])) for k in range(self.d)] for i in range(self.d)]
        gram_inv = sympy.Matrix(gram).inv_mod(self.p)
        beta = np.array(gram_inv.tolist(), dtype=np.int64) % self.p
        return beta

    def extraction_constants(self) -> np.ndarray:
        """Table C[j, i] = beta_j^{p^i} with shape (d, d, d)."""
        beta = self.dual_basis()
        table = np.zeros((self.d, self.d, self.d), dtype=np.int64)
        for j in range(self.d):
            conj = beta[j]
            for i in range(self.d):
                table[j, i] = conj
                conj = self.pow(conj, self.p)
        table.flags.writeable = False
        return table
