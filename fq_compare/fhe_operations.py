"""
FHE Operations Module

This module owns the slot engine and its key material, registers the
key-switching relations the comparison circuits need, and provides the
parameter helpers (slot layout, modulus-chain prime sizing, PSM parameter
search) used to configure an engine.
"""

from __future__ import annotations

import math
import threading
import warnings
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import sympy

from .engines import (
    Ciphertext,
    MissingKeyError,
    NoiseBudgetExhausted,
    Plaintext,
    SimulationEngine,
    SlotEngine,
)
from .field_operations import FieldOperations

# HElib modulus-chain constants
SP_NBITS = 60
PRIME_GENERATOR_B = 3


class ParameterAdvisory(UserWarning):
    """Non-fatal warning about sub-optimal parameter choices."""


# ----------------------------------------------------------------------
# Parameter helpers
# ----------------------------------------------------------------------

def slot_layout(p: int, m: int) -> Tuple[int, int]:
    """(d, nslots) for plaintext modulus p in the m-th cyclotomic ring."""
    if m < 2:
        raise ValueError("cyclotomic order m must be at least 2")
    if math.gcd(p, m) != 1:
        raise ValueError(f"m={m} must be coprime to p={p}")
    d = int(sympy.n_order(p, m))
    nslots = int(sympy.totient(m)) // d
    return d, nslots


def _bit_loss() -> float:
    return -math.log1p(-1.0 / float(1 << PRIME_GENERATOR_B)) / math.log(2.0)


def ctxt_prime_size(n_bits: int) -> int:
    """Size of each ciphertext prime so the chain reaches n_bits without overshooting."""
    bit_loss = _bit_loss()
    max_psize = SP_NBITS - bit_loss
    n_primes = int(math.ceil(n_bits / max_psize))

    target = SP_NBITS
    while (10 * (target - 1) >= 9 * SP_NBITS
           and (target - 1) >= 30
           and ((target - 1) - bit_loss) * n_primes >= n_bits):
        target -= 1

    if ((target - 1) - bit_loss) * n_primes >= n_bits:
        warnings.warn(f"ctxt_prime_size({n_bits}): non-optimal target size {target}",
                      ParameterAdvisory, stacklevel=2)
    return target


def chain_levels(n_bits: int) -> int:
    """Number of ciphertext primes (hence levels) in a chain of n_bits."""
    size = ctxt_prime_size(n_bits) - _bit_loss()
    return int(math.ceil(n_bits / size))


def adjust_psm_parameters(p: int, m: int, d: int, max_primes: int = 100,
                          max_orders: int = 100000) -> Tuple[int, int]:
    """Next prime p' >= p and m' >= m with m' coprime to p' and d <= ord_{m'}(p') < 25."""
    candidate = int(p)
    for _ in range(max_primes):
        if sympy.isprime(candidate):
            for m_ in range(int(m), int(m) + max_orders):
                if m_ < 2 or m_ % candidate == 0 or math.gcd(candidate, m_) != 1:
                    continue
                order = int(sympy.n_order(candidate, m_))
                if d <= order < 25:
                    return candidate, m_
        candidate += 1
    raise ValueError(f"no PSM parameters found from p={p}, m={m}, d={d}")


@dataclass
class ComparisonParams:
    """Experiment configuration shared by the command-line harnesses."""

    circuit_type: str = "U"
    p: int = 7
    d: int = 1
    m: Optional[int] = None
    nslots: Optional[int] = None
    nb_primes: int = 600
    expansion_len: int = 3
    runs: int = 1
    set_size: Optional[int] = None
    verbose: bool = False
    seed: Optional[int] = None

    def __post_init__(self):
        if not sympy.isprime(self.p):
            raise ValueError(f"p must be prime, got {self.p}")
        if self.d < 1:
            raise ValueError("d must be positive")
        if self.expansion_len < 1:
            raise ValueError("expansion_len must be positive")
        if self.runs < 1:
            raise ValueError("runs must be positive")
        if self.m is None and self.nslots is None:
            raise ValueError("give either the cyclotomic order m or an explicit slot count")
        if self.nb_primes < 1:
            raise ValueError("nb_primes must be positive")

    def build_engine(self) -> SlotEngine:
        levels = chain_levels(self.nb_primes)
        if self.nslots is not None:
            field = FieldOperations(self.p, self.d, verbose=self.verbose)
            return SimulationEngine(field, self.nslots, max_level=levels)

        d, nslots = slot_layout(self.p, self.m)
        if d != self.d:
            raise ValueError(
                f"slots of m={self.m} have degree {d} over F_{self.p}, expected {self.d}; "
                f"see adjust_psm_parameters()"
            )
        field = FieldOperations(self.p, d, verbose=self.verbose)
        return SimulationEngine(field, nslots, max_level=levels)


# ----------------------------------------------------------------------
# FHEOperations
# ----------------------------------------------------------------------

class FHEOperations:
    """Manages the slot engine, its keys and plaintext constants."""

    def __init__(self, engine: SlotEngine, verbose: bool = False):
        self.engine = engine
        self.verbose = verbose
        self.field = engine.field
        self.slot_count = engine.slot_count
        self.max_level = engine.max_level

        self.sk = None
        self.pk = None
        self.relin_key = None
        self.rotation_keys: Dict[int, object] = {}
        self.frobenius_keys: Dict[int, object] = {}

        self._const_cache: Dict[Tuple, Plaintext] = {}
        self._cache_lock = threading.Lock()

        self._log(f"Engine {type(engine).__name__}: p={engine.p}, d={engine.d}, "
                  f"slots={self.slot_count}, levels={self.max_level}")

    def _log(self, message: str):
        if self.verbose:
            print(f"[FHE-OPS] {message}")

    # ------------------------------------------------------------------
    # 1) Keys
    # ------------------------------------------------------------------

    def generate_keys(self) -> Dict[str, object]:
        """Generate and cache the secret, public and relinearization keys."""
        self._log("Generating FHE keys …")

        keys: Dict[str, object] = {}
        keys["sk"] = self.engine.create_secret_key()
        keys["pk"] = self.engine.create_public_key(keys["sk"])
        keys["relin_key"] = self.engine.create_relinearization_key(keys["sk"])

        self.sk = keys["sk"]
        self.pk = keys["pk"]
        self.relin_key = keys["relin_key"]
        return keys

    def generate_rotation_keys(self, sk, amounts: Iterable[int]) -> Dict[int, object]:
        """Register fixed rotation keys for every amount (mod slot count)."""
        created = 0
        for amount in amounts:
            delta = int(amount) % self.slot_count
            if delta == 0 or delta in self.rotation_keys:
                continue
            self.rotation_keys[delta] = self.engine.create_fixed_rotation_key(sk, delta)
            created += 1
        self._log(f"Generated {created} rotation keys ({len(self.rotation_keys)} total)")
        return self.rotation_keys

    def generate_frobenius_keys(self, sk, powers: Iterable[int]) -> Dict[int, object]:
        for power in powers:
            power = int(power) % self.field.d
            if power and power not in self.frobenius_keys:
                self.frobenius_keys[power] = self.engine.create_frobenius_key(sk, power)
        self._log(f"Frobenius keys for powers {sorted(self.frobenius_keys)}")
        return self.frobenius_keys

    # ------------------------------------------------------------------
    # 2) Encoding / encryption
    # ------------------------------------------------------------------

    def encode(self, values) -> Plaintext:
        return self.engine.encode(values)

    def encode_constant(self, value) -> Plaintext:
        """Plaintext with `value` (an F_p integer or F_{p^d} element) in every slot."""
        elem = np.asarray(value, dtype=np.int64)
        if elem.ndim == 0:
            elem = self.field.constant(int(elem))
        key = ("const",) + tuple(int(c) % self.field.p for c in elem.reshape(-1))
        with self._cache_lock:
            pt = self._const_cache.get(key)
            if pt is None:
                pt = self.engine.encode(np.broadcast_to(elem, (self.slot_count, self.field.d)))
                self._const_cache[key] = pt
        return pt

    def encrypt(self, values, level: Optional[int] = None) -> Ciphertext:
        if self.pk is None:
            raise ValueError("public key not set; call generate_keys() first")
        return self.engine.encrypt(values, self.pk, level=level)

    def decrypt(self, ct: Ciphertext, sk=None) -> np.ndarray:
        sk = sk if sk is not None else self.sk
        if sk is None:
            raise ValueError("secret key not set; call generate_keys() first")
        return self.engine.decrypt(ct, sk)

    # ------------------------------------------------------------------
    # 3) Arithmetic
    # ------------------------------------------------------------------

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self.engine.add(a, b)

    def sub(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self.engine.subtract(a, b)

    def negate(self, a: Ciphertext) -> Ciphertext:
        return self.engine.negate(a)

    def add_plain(self, a: Ciphertext, pt: Plaintext) -> Ciphertext:
        return self.engine.add(a, pt)

    def sub_plain(self, a: Ciphertext, pt: Plaintext) -> Ciphertext:
        return self.engine.subtract(a, pt)

    def add_constant(self, a: Ciphertext, value) -> Ciphertext:
        return self.engine.add(a, self.encode_constant(value))

    def multiply(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        if self.relin_key is None:
            raise MissingKeyError("relinearization key not set; call generate_keys() first")
        return self.engine.multiply(a, b, self.relin_key)

    def multiply_plain(self, a: Ciphertext, pt: Plaintext) -> Ciphertext:
        return self.engine.multiply(a, pt)

    def multiply_constant(self, a: Ciphertext, value) -> Ciphertext:
        return self.engine.multiply(a, self.encode_constant(value))

    def one_minus(self, a: Ciphertext) -> Ciphertext:
        return self.engine.add(self.engine.negate(a), self.encode_constant(1))

    def constant_like(self, a: Ciphertext, value) -> Ciphertext:
        """Encryption of a constant at the level of `a` (used to seed sums and products)."""
        zero = self.engine.multiply(a, self.encode_constant(0))
        return self.engine.add(zero, self.encode_constant(value))

    # ------------------------------------------------------------------
    # 4) Automorphisms
    # ------------------------------------------------------------------

    def rotate(self, ct: Ciphertext, delta: int) -> Ciphertext:
        """Slot i of the result holds slot i + delta of `ct` (cyclically)."""
        delta = int(delta) % self.slot_count
        if delta == 0:
            return ct
        key = self.rotation_keys.get(delta)
        if key is None:
            raise MissingKeyError(f"no rotation key for amount {delta}")
        return self.engine.rotate(ct, key)

    def frobenius(self, ct: Ciphertext, power: int) -> Ciphertext:
        """Slot-wise x -> x^{p^power}."""
        power = int(power) % self.field.d
        if power == 0:
            return ct
        key = self.frobenius_keys.get(power)
        if key is None:
            raise MissingKeyError(f"no Frobenius key for power {power}")
        return self.engine.frobenius(ct, key)

    # ------------------------------------------------------------------
    # 5) Level accounting
    # ------------------------------------------------------------------

    def require_depth(self, ct: Ciphertext, depth: int):
        """Raise NoiseBudgetExhausted if `ct` cannot absorb `depth` more products."""
        if ct.level < depth:
            raise NoiseBudgetExhausted(
                f"operation needs {depth} levels but the ciphertext has {ct.level} left"
            )
