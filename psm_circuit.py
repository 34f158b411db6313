"""
PSM Circuit

Randomized private set membership experiments: integer queries against an
encrypted set (P) or digit strings against an encrypted set of strings (S).

USAGE
-----
```bash
python psm_circuit.py P 17 1 --nslots 16 --set-size 4 --runs 3
python psm_circuit.py S 11 1 --nslots 24 --expansion-len 3 --set-size 4
```
"""
from __future__ import annotations

import sys
from typing import List, Optional

from comparison_circuit import build_parser, run_cli


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser("Private set membership experiments", ["P", "S"])
    args = parser.parse_args(argv)
    return run_cli(args, set_size=args.set_size)


if __name__ == "__main__":
    sys.exit(main())
