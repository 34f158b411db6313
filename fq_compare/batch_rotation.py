"""
Batch Rotation Module

Rotations and log-depth scans restricted to fixed-width slot batches.
Batches start at slot `start` and tile the slot vector every `width` slots;
values never leak across a batch boundary.
"""

from __future__ import annotations

from typing import List

from .engines import Ciphertext
from .fhe_operations import FHEOperations
from .masks import FILL_ONE, FILL_ZERO, MaskLibrary


class BatchRotator:
    """Segmented rotation engine over a MaskLibrary."""

    def __init__(self, fhe_ops: FHEOperations, masks: MaskLibrary, verbose: bool = False):
        self.fhe_ops = fhe_ops
        self.masks = masks
        self.width = masks.width
        self.verbose = verbose

    def _log(self, message: str):
        if self.verbose:
            print(f"[ROT] {message}")

    def rotation_amounts(self) -> List[int]:
        """Every rotation amount the scans of this rotator perform."""
        amounts = []
        e = 1
        while e < self.width:
            amounts += [e, -e]
            e *= 2
        return amounts

    def batch_shift(self, ct: Ciphertext, start: int, shift: int, for_mul: bool = False) -> Ciphertext:
        """new[i] = old[i + shift] inside each batch; vacated slots get 0 (or 1 if for_mul)."""
        if shift == 0:
            return ct
        fill = FILL_ONE if for_mul else FILL_ZERO
        mask = self.masks.get(start, shift, fill)

        if abs(shift) >= self.width:
            moved = self.fhe_ops.multiply_plain(ct, mask.multiplier)
        else:
            moved = self.fhe_ops.rotate(ct, shift)
            moved = self.fhe_ops.multiply_plain(moved, mask.multiplier)
        if for_mul:
            moved = self.fhe_ops.add_plain(moved, mask.complement)
        return moved

    def _scan(self, ct: Ciphertext, start: int, reverse: bool, for_mul: bool) -> Ciphertext:
        combine = self.fhe_ops.multiply if for_mul else self.fhe_ops.add
        e = 1
        while e < self.width:
            shifted = self.batch_shift(ct, start, e if reverse else -e, for_mul)
            ct = combine(ct, shifted)
            e *= 2
        return ct

    def shift_and_add(self, ct: Ciphertext, start: int, reverse: bool = False) -> Ciphertext:
        """Prefix sums per batch (suffix sums when reverse)."""
        return self._scan(ct, start, reverse, for_mul=False)

    def shift_and_mul(self, ct: Ciphertext, start: int, reverse: bool = False) -> Ciphertext:
        """Prefix products per batch (suffix products when reverse)."""
        return self._scan(ct, start, reverse, for_mul=True)

    def running_sum(self, ct: Ciphertext, start: int) -> Ciphertext:
        """Every slot of a batch receives the sum of that batch."""
        total = self.shift_and_add(ct, start, reverse=True)
        head = self.fhe_ops.multiply_plain(total, self.masks.head_mask(start).multiplier)
        return self.shift_and_add(head, start)

    def running_product(self, ct: Ciphertext, start: int) -> Ciphertext:
        """Every slot of a batch receives the product of that batch."""
        total = self.shift_and_mul(ct, start, reverse=True)
        mask = self.masks.head_mask(start, FILL_ONE)
        head = self.fhe_ops.multiply_plain(total, mask.multiplier)
        head = self.fhe_ops.add_plain(head, mask.complement)
        return self.shift_and_mul(head, start)
