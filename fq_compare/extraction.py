"""
Extraction Module

Projects encrypted F_{p^d} slots onto their base-field coordinates with the
trace-dual basis: x_j = Tr(beta_j * x) = sum_i beta_j^{p^i} * frob^i(x).
"""

from __future__ import annotations

from typing import List

from .engines import Ciphertext
from .fhe_operations import FHEOperations


class FieldCoordinateExtractor:
    """Splits F_{p^d} slot ciphertexts into d ciphertexts with F_p slots.

    Uses d - 1 Frobenius applications and constant products only, so no
    multiplicative depth is consumed.
    """

    def __init__(self, fhe_ops: FHEOperations, verbose: bool = False):
        self.fhe_ops = fhe_ops
        self.field = fhe_ops.field
        self.d = self.field.d
        self.verbose = verbose
        self.constants = self.field.extraction_constants()
        basis = [self.field.pow(self.field.generator(), j) for j in range(self.d)]
        self.basis = basis
        self._log(f"Extraction constants ready for d={self.d}")

    def _log(self, message: str):
        if self.verbose:
            print(f"[EXTRACT] {message}")

    def extract(self, x: Ciphertext) -> List[Ciphertext]:
        """[x_0, ..., x_{d-1}] with x = sum_j x_j X^j and every x_j in F_p."""
        if self.d == 1:
            return [x]
        conjugates = [x] + [self.fhe_ops.frobenius(x, i) for i in range(1, self.d)]
        coords = []
        for j in range(self.d):
            acc = None
            for i in range(self.d):
                term = self.fhe_ops.multiply_constant(conjugates[i], self.constants[j, i])
                acc = term if acc is None else self.fhe_ops.add(acc, term)
            coords.append(acc)
        return coords

    def recombine(self, coords: List[Ciphertext]) -> Ciphertext:
        if len(coords) != self.d:
            raise ValueError(f"expected {self.d} coordinates, got {len(coords)}")
        acc = coords[0]
        for j in range(1, self.d):
            acc = self.fhe_ops.add(acc, self.fhe_ops.multiply_constant(coords[j], self.basis[j]))
        return acc
