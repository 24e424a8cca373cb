#!/usr/bin/env python3
import sys


def main() -> int:
    print("about to fail")
    sys.stderr.write("unit failed on purpose\n")
    return 3


if __name__ == "__main__":
    raise SystemExit(main())
