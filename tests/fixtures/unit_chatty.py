#!/usr/bin/env python3
import sys

LINES = 3000


def main() -> int:
    for idx in range(LINES):
        sys.stdout.write(f"out {idx}\n")
        if idx % 100 == 0:
            sys.stderr.write(f"err {idx}\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
