"""
Comparison Circuit

Wires the fq_compare modules into a single facade (`ComparisonCircuit`) and
runs randomized comparison experiments from the command line.

USAGE
-----
```bash
python comparison_circuit.py U 7 1 --nslots 12 --expansion-len 3 --runs 5
python comparison_circuit.py B 131 1 --m 13 --expansion-len 2
python comparison_circuit.py P 17 1 --m 32 --set-size 4
```
"""
from __future__ import annotations

import argparse
import sys
import time
from typing import List, Optional

from fq_compare import (
    CircuitType,
    Comparator,
    ComparisonParams,
    FHEOperations,
    RunReport,
    adjust_psm_parameters,
    slot_layout,
)


class ComparisonCircuit:
    """High-level facade: engine, keys and comparator for one parameter set."""

    def __init__(self, params: ComparisonParams):
        self.params = params
        self.verbose = params.verbose

        # 1) Slot engine and keys
        self._log("Building slot engine …")
        self.fhe = FHEOperations(params.build_engine(), verbose=params.verbose)
        self.keys = self.fhe.generate_keys()

        # 2) Comparator (polynomials, masks, rotation/Frobenius keys)
        self._log("Initialising comparator …")
        self.comparator = Comparator(
            self.fhe,
            params.circuit_type,
            params.d,
            params.expansion_len,
            self.keys["sk"],
            verbose=params.verbose,
            set_size=params.set_size,
            seed=params.seed,
        )
        self._log("Initialisation complete")

    def _log(self, message: str):
        if self.verbose:
            print(f"[MAIN] {message}")

    def run(self, runs: Optional[int] = None) -> RunReport:
        runs = self.params.runs if runs is None else runs
        ctype = self.comparator.circuit_type
        if ctype is CircuitType.PSM:
            return self.comparator.test_compare_psm(runs)
        if ctype is CircuitType.PSM_STRING:
            return self.comparator.test_string_psm(runs)
        return self.comparator.test_compare(runs)


def build_parser(description: str, circuit_choices: List[str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("circuit_type", choices=circuit_choices, help="circuit type")
    parser.add_argument("p", type=int, help="plaintext modulus (prime)")
    parser.add_argument("d", type=int, help="digits per slot (slot field degree)")
    parser.add_argument("--m", type=int, default=None, help="order of the cyclotomic ring")
    parser.add_argument("--nslots", type=int, default=None,
                        help="explicit slot count (instead of --m)")
    parser.add_argument("--nb-primes", type=int, default=600,
                        help="bit size of the ciphertext modulus chain")
    parser.add_argument("--expansion-len", type=int, default=3,
                        help="slots per compared number")
    parser.add_argument("--set-size", type=int, default=4, help="elements in the server set (P, S)")
    parser.add_argument("--runs", type=int, default=1, help="number of experiments")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--adjust", action="store_true",
                        help="search for the next usable (p, m) before building")
    parser.add_argument("--verbose", action="store_true")
    return parser


def run_cli(args: argparse.Namespace, set_size: Optional[int] = None) -> int:
    p, m, d = args.p, args.m, args.d
    if args.adjust:
        if m is None:
            print("--adjust needs --m", file=sys.stderr)
            return 2
        p, m = adjust_psm_parameters(p, m, d)
        # slots take the full degree ord_m(p) >= d
        d, _ = slot_layout(p, m)
        print(f"Adjusted parameters: p={p} m={m} d={d}")

    params = ComparisonParams(
        circuit_type=args.circuit_type,
        p=p,
        d=d,
        m=m,
        nslots=args.nslots,
        nb_primes=args.nb_primes,
        expansion_len=args.expansion_len,
        runs=args.runs,
        set_size=set_size,
        verbose=args.verbose,
        seed=args.seed,
    )

    print("=" * 80)
    print(f"Circuit {params.circuit_type}: p={params.p} d={params.d} m={params.m} "
          f"nb_primes={params.nb_primes} L={params.expansion_len} runs={params.runs}")
    print("=" * 80)

    start = time.time()
    circuit = ComparisonCircuit(params)
    init_time = time.time() - start
    print(f"Initialisation: {init_time:.2f} s, slots={circuit.fhe.slot_count}, "
          f"levels={circuit.fhe.max_level}, enc_base={circuit.comparator.enc_base}, "
          f"estimated depth={circuit.comparator.estimated_depth()}")

    report = circuit.run()
    counters = circuit.fhe.engine.counters
    print(f"Runs: {report.runs}  failures: {report.failures}  "
          f"mean: {report.mean_seconds:.3f} s  depth: {report.max_depth}")
    print(f"Operations: {counters.multiplications} mult, {counters.constant_multiplications} const-mult, "
          f"{counters.rotations} rot, {counters.frobenius} frob")
    print("PASS" if report.passed else "FAIL")
    return 0 if report.passed else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser("Homomorphic comparison experiments", ["U", "B", "T", "P"])
    args = parser.parse_args(argv)
    if args.circuit_type != "P":
        return run_cli(args)
    # PSM needs ord_m(p) == d, so a given m is always adjusted
    args.adjust = args.adjust or args.m is not None
    return run_cli(args, set_size=args.set_size)


if __name__ == "__main__":
    sys.exit(main())
