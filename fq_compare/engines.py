"""
Engines Module

Slot-level homomorphic primitive layer used by the comparison circuits.

Two engines share one interface (create_*_key / encode / encrypt / decrypt /
add / multiply / rotate):

* ``SimulationEngine`` keeps slot values in the clear but enforces the
  leveled-HE contract (level consumption, key-switching relations, depth
  accounting), so circuits can be validated and profiled exactly.
* ``PyfhelEngine`` runs the same calls on Pyfhel's BGV scheme (d = 1 only).
"""

from __future__ import annotations

import itertools
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Optional, Set

import numpy as np

from .field_operations import FieldOperations

try:
    from Pyfhel import Pyfhel
    _PYFHEL_AVAILABLE = True
except ImportError:
    Pyfhel = None
    _PYFHEL_AVAILABLE = False


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

class NoiseBudgetExhausted(RuntimeError):
    """A ciphertext ran out of levels (or noise budget)."""


class MissingKeyError(KeyError):
    """No key-switching relation was registered for a rotation/Frobenius amount."""


class BackendNotAvailableError(ImportError):
    """An optional HE backend library is not installed."""


# ----------------------------------------------------------------------
# Handles
# ----------------------------------------------------------------------

_key_ids = itertools.count(1)


@dataclass(frozen=True)
class SecretKey:
    key_id: int = dataclass_field(default_factory=lambda: next(_key_ids))


@dataclass(frozen=True)
class PublicKey:
    secret_id: int


@dataclass(frozen=True)
class RelinearizationKey:
    secret_id: int


@dataclass(frozen=True)
class FixedRotationKey:
    secret_id: int
    delta: int


@dataclass(frozen=True)
class FrobeniusKey:
    secret_id: int
    power: int


@dataclass
class Plaintext:
    """Encoded slot vector; `size` is the magnitude estimate used for noise accounting."""

    data: Any
    size: float = 1.0


@dataclass
class Ciphertext:
    data: Any
    level: int
    depth: int = 0
    noise_bits: float = 0.0


@dataclass
class OperationCounters:
    multiplications: int = 0
    constant_multiplications: int = 0
    additions: int = 0
    rotations: int = 0
    frobenius: int = 0

    def reset(self):
        self.multiplications = 0
        self.constant_multiplications = 0
        self.additions = 0
        self.rotations = 0
        self.frobenius = 0


# ----------------------------------------------------------------------
# Interface
# ----------------------------------------------------------------------

class SlotEngine(ABC):
    """Leveled HE over nslots SIMD slots, each an element of F_{p^d}."""

    field: FieldOperations
    slot_count: int
    max_level: int

    def __init__(self):
        self.counters = OperationCounters()
        self._rotation_deltas: Set[int] = set()
        self._frobenius_powers: Set[int] = set()

    @property
    def p(self) -> int:
        return self.field.p

    @property
    def d(self) -> int:
        return self.field.d

    # -- keys -----------------------------------------------------------

    def create_secret_key(self) -> SecretKey:
        return SecretKey()

    def create_public_key(self, sk: SecretKey) -> PublicKey:
        return PublicKey(sk.key_id)

    def create_relinearization_key(self, sk: SecretKey) -> RelinearizationKey:
        return RelinearizationKey(sk.key_id)

    def create_fixed_rotation_key(self, sk: SecretKey, delta: int) -> FixedRotationKey:
        delta = int(delta) % self.slot_count
        self._rotation_deltas.add(delta)
        return FixedRotationKey(sk.key_id, delta)

    def create_frobenius_key(self, sk: SecretKey, power: int) -> FrobeniusKey:
        raise ValueError(f"{type(self).__name__} has no Frobenius automorphism (slots are F_{self.p}, d = 1)")

    def _check_rotation_key(self, key: FixedRotationKey):
        if key.delta % self.slot_count not in self._rotation_deltas:
            raise MissingKeyError(f"no rotation key registered for {key.delta}")

    # -- encoding -------------------------------------------------------

    def slot_vector(self, values) -> np.ndarray:
        """Coerce values into a full (slot_count, d) element array, zero padded."""
        elems = self.field.elements(values).reshape(-1, self.d)
        if len(elems) > self.slot_count:
            raise ValueError(f"{len(elems)} values exceed slot count {self.slot_count}")
        full = self.field.zero(self.slot_count)
        full[:len(elems)] = elems
        return full

    @abstractmethod
    def encode(self, values) -> Plaintext: ...

    @abstractmethod
    def encrypt(self, values, pk: PublicKey, level: Optional[int] = None) -> Ciphertext: ...

    @abstractmethod
    def decrypt(self, ct: Ciphertext, sk: SecretKey) -> np.ndarray: ...

    # -- arithmetic -----------------------------------------------------

    @abstractmethod
    def add(self, a: Ciphertext, b) -> Ciphertext: ...

    @abstractmethod
    def subtract(self, a: Ciphertext, b) -> Ciphertext: ...

    @abstractmethod
    def negate(self, a: Ciphertext) -> Ciphertext: ...

    @abstractmethod
    def multiply(self, a: Ciphertext, b, relin_key: Optional[RelinearizationKey] = None) -> Ciphertext: ...

    @abstractmethod
    def rotate(self, ct: Ciphertext, key: FixedRotationKey) -> Ciphertext: ...

    def frobenius(self, ct: Ciphertext, key: FrobeniusKey) -> Ciphertext:
        raise ValueError(f"{type(self).__name__} has no Frobenius automorphism (slots are F_{self.p}, d = 1)")

    # -- bookkeeping shared by both engines -----------------------------

    def _after_add(self, a: Ciphertext, b) -> dict:
        self.counters.additions += 1
        if isinstance(b, Ciphertext):
            return dict(level=min(a.level, b.level), depth=max(a.depth, b.depth),
                        noise_bits=max(a.noise_bits, b.noise_bits) + 1.0)
        return dict(level=a.level, depth=a.depth, noise_bits=a.noise_bits)

    def _after_multiply(self, a: Ciphertext, b, relin_key) -> dict:
        if isinstance(b, Ciphertext):
            if relin_key is None:
                raise MissingKeyError("ciphertext multiplication needs a relinearization key")
            level = min(a.level, b.level) - 1
            if level < 0:
                raise NoiseBudgetExhausted(
                    f"multiplication at level {min(a.level, b.level)} leaves no budget "
                    f"(depth so far {max(a.depth, b.depth)})"
                )
            self.counters.multiplications += 1
            return dict(level=level, depth=max(a.depth, b.depth) + 1,
                        noise_bits=a.noise_bits + b.noise_bits)
        self.counters.constant_multiplications += 1
        return dict(level=a.level, depth=a.depth,
                    noise_bits=a.noise_bits + math.log2(max(b.size, 1.0)))


# ----------------------------------------------------------------------
# Simulation backend
# ----------------------------------------------------------------------

class SimulationEngine(SlotEngine):
    """Exact slot arithmetic with leveled-HE bookkeeping."""

    def __init__(self, field: FieldOperations, slot_count: int, max_level: int = 30):
        super().__init__()
        if slot_count < 1:
            raise ValueError("slot_count must be positive")
        if max_level < 0:
            raise ValueError("max_level must be non-negative")
        self.field = field
        self.slot_count = int(slot_count)
        self.max_level = int(max_level)

    @classmethod
    def from_params(cls, p: int, m: int, max_level: int = 30, verbose: bool = False) -> "SimulationEngine":
        """Slot layout of the m-th cyclotomic ring with plaintext modulus p."""
        from .fhe_operations import slot_layout

        d, nslots = slot_layout(p, m)
        return cls(FieldOperations(p, d, verbose=verbose), nslots, max_level)

    def create_frobenius_key(self, sk: SecretKey, power: int) -> FrobeniusKey:
        power = int(power) % self.d
        self._frobenius_powers.add(power)
        return FrobeniusKey(sk.key_id, power)

    def encode(self, values) -> Plaintext:
        data = self.slot_vector(values)
        data.flags.writeable = False
        nonzero = int(np.count_nonzero(np.any(data != 0, axis=-1)))
        return Plaintext(data, size=math.sqrt(max(nonzero, 1)))

    def encrypt(self, values, pk: PublicKey, level: Optional[int] = None) -> Ciphertext:
        data = values.data if isinstance(values, Plaintext) else self.slot_vector(values)
        level = self.max_level if level is None else level
        if not 0 <= level <= self.max_level:
            raise ValueError(f"level must lie in [0, {self.max_level}]")
        return Ciphertext(np.array(data, dtype=np.int64), level=level)

    def decrypt(self, ct: Ciphertext, sk: SecretKey) -> np.ndarray:
        return np.array(ct.data, dtype=np.int64)

    def _operand(self, b) -> np.ndarray:
        return b.data if isinstance(b, (Ciphertext, Plaintext)) else self.slot_vector(b)

    def add(self, a: Ciphertext, b) -> Ciphertext:
        meta = self._after_add(a, b)
        return Ciphertext(self.field.add(a.data, self._operand(b)), **meta)

    def subtract(self, a: Ciphertext, b) -> Ciphertext:
        meta = self._after_add(a, b)
        return Ciphertext(self.field.sub(a.data, self._operand(b)), **meta)

    def negate(self, a: Ciphertext) -> Ciphertext:
        return Ciphertext(self.field.neg(a.data), a.level, a.depth, a.noise_bits)

    def multiply(self, a: Ciphertext, b, relin_key: Optional[RelinearizationKey] = None) -> Ciphertext:
        if not isinstance(b, (Ciphertext, Plaintext)):
            b = self.encode(b)
        meta = self._after_multiply(a, b, relin_key)
        return Ciphertext(self.field.mul(a.data, b.data), **meta)

    def rotate(self, ct: Ciphertext, key: FixedRotationKey) -> Ciphertext:
        self._check_rotation_key(key)
        self.counters.rotations += 1
        return Ciphertext(np.roll(ct.data, -key.delta, axis=0), ct.level, ct.depth, ct.noise_bits)

    def frobenius(self, ct: Ciphertext, key: FrobeniusKey) -> Ciphertext:
        if key.power not in self._frobenius_powers:
            raise MissingKeyError(f"no Frobenius key registered for power {key.power}")
        self.counters.frobenius += 1
        return Ciphertext(self.field.frobenius(ct.data, key.power), ct.level, ct.depth, ct.noise_bits)


# ----------------------------------------------------------------------
# Pyfhel BGV backend
# ----------------------------------------------------------------------

class PyfhelEngine(SlotEngine):
    """Pyfhel BGV over F_p slots (first row of the 2 x n/2 batching matrix).

    The plaintext modulus must support batching (p = 1 mod 2n). Ciphertexts
    are never modulus-switched; levels are tracked against the chain length
    and the scheme's invariant noise budget is checked after each product.
    """

    # SEAL default coefficient moduli at 128-bit security
    DEFAULT_QI_SIZES = {
        4096: [36, 36, 37],
        8192: [43, 43, 44, 44, 44],
        16384: [48, 48, 48, 49, 49, 49, 49, 49, 49],
        32768: [55] * 16,
    }

    def __init__(self, p: int, n: int = 2**13, sec: int = 128, qi_sizes=None):
        super().__init__()
        if not _PYFHEL_AVAILABLE:
            raise BackendNotAvailableError("Pyfhel is not installed; pip install fq-compare[pyfhel]")
        if (p - 1) % (2 * n) != 0:
            raise ValueError(f"plaintext modulus {p} does not support batching with n={n}")

        self.field = FieldOperations(p, 1)
        self.n = n
        if qi_sizes is None:
            if n not in self.DEFAULT_QI_SIZES:
                raise ValueError(f"no default modulus chain for n={n}; pass qi_sizes")
            qi_sizes = self.DEFAULT_QI_SIZES[n]
        self.qi_sizes = list(qi_sizes)
        self.slot_count = n // 2
        self.max_level = max(len(self.qi_sizes) - 2, 0)

        self._he = Pyfhel()
        self._he.contextGen(scheme="bgv", n=n, t=p, sec=sec, qi_sizes=self.qi_sizes)
        self._he.keyGen()

    def create_relinearization_key(self, sk: SecretKey) -> RelinearizationKey:
        self._he.relinKeyGen()
        return super().create_relinearization_key(sk)

    def create_fixed_rotation_key(self, sk: SecretKey, delta: int) -> FixedRotationKey:
        if not self._rotation_deltas:
            self._he.rotateKeyGen()
        return super().create_fixed_rotation_key(sk, delta)

    def _row(self, values) -> np.ndarray:
        row = np.zeros(self.n, dtype=np.int64)
        row[:self.slot_count] = self.slot_vector(values)[:, 0]
        return row

    def encode(self, values) -> Plaintext:
        row = self._row(values)
        return Plaintext(self._he.encodeBGV(row), size=math.sqrt(max(np.count_nonzero(row), 1)))

    def encrypt(self, values, pk: PublicKey, level: Optional[int] = None) -> Ciphertext:
        if isinstance(values, Plaintext):
            handle = self._he.encryptPtxt(values.data)
        else:
            handle = self._he.encryptBGV(self._row(values))
        return Ciphertext(handle, level=self.max_level if level is None else level)

    def decrypt(self, ct: Ciphertext, sk: SecretKey) -> np.ndarray:
        row = np.asarray(self._he.decryptBGV(ct.data), dtype=np.int64)[:self.slot_count]
        return (row % self.p)[:, None]

    def _plain(self, b) -> Plaintext:
        return b if isinstance(b, Plaintext) else self.encode(b)

    def add(self, a: Ciphertext, b) -> Ciphertext:
        meta = self._after_add(a, b)
        if isinstance(b, Ciphertext):
            return Ciphertext(self._he.add(a.data, b.data, in_new_ctxt=True), **meta)
        return Ciphertext(self._he.add_plain(a.data, self._plain(b).data, in_new_ctxt=True), **meta)

    def subtract(self, a: Ciphertext, b) -> Ciphertext:
        meta = self._after_add(a, b)
        if isinstance(b, Ciphertext):
            return Ciphertext(self._he.sub(a.data, b.data, in_new_ctxt=True), **meta)
        return Ciphertext(self._he.sub_plain(a.data, self._plain(b).data, in_new_ctxt=True), **meta)

    def negate(self, a: Ciphertext) -> Ciphertext:
        return Ciphertext(self._he.negate(a.data, in_new_ctxt=True), a.level, a.depth, a.noise_bits)

    def multiply(self, a: Ciphertext, b, relin_key: Optional[RelinearizationKey] = None) -> Ciphertext:
        if not isinstance(b, Ciphertext):
            b = self._plain(b)
        meta = self._after_multiply(a, b, relin_key)
        if isinstance(b, Ciphertext):
            handle = self._he.multiply(a.data, b.data, in_new_ctxt=True)
            self._he.relinearize(handle)
            if self._he.noise_level(handle) <= 0:
                raise NoiseBudgetExhausted(f"invariant noise budget exhausted at depth {meta['depth']}")
        else:
            handle = self._he.multiply_plain(a.data, b.data, in_new_ctxt=True)
        return Ciphertext(handle, **meta)

    def rotate(self, ct: Ciphertext, key: FixedRotationKey) -> Ciphertext:
        self._check_rotation_key(key)
        self.counters.rotations += 1
        # left rotation of each batching row; row 1 only ever holds zeros
        delta = key.delta if key.delta <= self.slot_count // 2 else key.delta - self.slot_count
        handle = self._he.rotate(ct.data, delta, in_new_ctxt=True)
        return Ciphertext(handle, ct.level, ct.depth, ct.noise_bits)
