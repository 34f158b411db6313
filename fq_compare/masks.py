"""
Mask Library Module

Plaintext selection masks for batch-restricted rotations. A mask for
(start, shift, fill) keeps slot i when slot i + shift lies in the same
batch as i; every other slot is set to the additive identity (fill "zero")
or the multiplicative identity (fill "one").
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from .engines import Plaintext
from .fhe_operations import FHEOperations

FILL_ZERO = "zero"
FILL_ONE = "one"
HEAD = "head"


@dataclass(frozen=True)
class PlaintextMask:
    start: int
    shift: Optional[int]
    fill: str
    values: np.ndarray
    multiplier: Plaintext
    complement: Optional[Plaintext]
    size: float


class MaskLibrary:
    """Caches one mask per (start, shift, fill) for batches of `width` slots."""

    def __init__(self, fhe_ops: FHEOperations, width: int, verbose: bool = False):
        if width < 1:
            raise ValueError(f"batch width must be positive, got {width}")
        self.fhe_ops = fhe_ops
        self.width = int(width)
        self.nslots = fhe_ops.slot_count
        self.verbose = verbose
        self._masks: Dict[Tuple[int, int, str], PlaintextMask] = {}
        self._lock = threading.Lock()

        positions = np.arange(self.nslots)
        self._positions = positions

        shifts = [0]
        e = 1
        while e < self.width:
            shifts += [e, -e]
            e *= 2
        for shift in shifts:
            for fill in (FILL_ZERO, FILL_ONE):
                self._store(self.build_mask(0, shift, fill))
        for fill in (FILL_ZERO, FILL_ONE):
            self._store(self.build_mask(0, 0, fill, head=True))
        self._log(f"Precomputed {len(self._masks)} masks for width {self.width}")

    def _log(self, message: str):
        if self.verbose:
            print(f"[MASK] {message}")

    def _store(self, mask: PlaintextMask):
        kind = HEAD + "-" + mask.fill if mask.shift is None else mask.fill
        self._masks[(mask.start, 0 if mask.shift is None else mask.shift, kind)] = mask

    def batch_ids(self, start: int) -> np.ndarray:
        return (self._positions - start) // self.width

    def selection(self, start: int, shift: int) -> np.ndarray:
        """0/1 vector: slot i keeps the value rotated in from slot i + shift."""
        if abs(shift) >= self.width:
            return np.zeros(self.nslots, dtype=np.int64)
        src = self._positions + shift
        ids = self.batch_ids(start)
        inside = (src >= 0) & (src < self.nslots)
        keep = np.zeros(self.nslots, dtype=bool)
        keep[inside] = ids[inside] == ids[src[inside]]
        return keep.astype(np.int64)

    def head_selection(self, start: int) -> np.ndarray:
        return (((self._positions - start) % self.width) == 0).astype(np.int64)

    def build_mask(self, start: int, shift: int, fill: str, head: bool = False) -> PlaintextMask:
        """Build (without caching) the mask for a batch window starting at `start`."""
        if not 0 <= start < self.width:
            raise ValueError(f"mask start {start} outside [0, {self.width})")
        if fill not in (FILL_ZERO, FILL_ONE):
            raise ValueError(f"unknown fill policy {fill!r}")

        values = self.head_selection(start) if head else self.selection(start, shift)
        values.flags.writeable = False
        multiplier = self.fhe_ops.encode(values)
        complement = self.fhe_ops.encode(1 - values) if fill == FILL_ONE else None
        return PlaintextMask(
            start=start,
            shift=None if head else shift,
            fill=fill,
            values=values,
            multiplier=multiplier,
            complement=complement,
            size=math.sqrt(max(int(values.sum()), 1)),
        )

    def get(self, start: int, shift: int, fill: str = FILL_ZERO) -> PlaintextMask:
        if abs(shift) >= self.width:
            shift = self.width
        key = (start, shift, fill)
        mask = self._masks.get(key)
        if mask is None:
            with self._lock:
                mask = self._masks.get(key)
                if mask is None:
                    mask = self.build_mask(start, shift, fill)
                    self._masks[key] = mask
        return mask

    def head_mask(self, start: int, fill: str = FILL_ZERO) -> PlaintextMask:
        key = (start, 0, HEAD + "-" + fill)
        mask = self._masks.get(key)
        if mask is None:
            with self._lock:
                mask = self._masks.get(key)
                if mask is None:
                    mask = self.build_mask(start, 0, fill, head=True)
                    self._masks[key] = mask
        return mask
