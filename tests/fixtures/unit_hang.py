#!/usr/bin/env python3
import sys
import time


def main() -> int:
    print("hanging", flush=True)
    time.sleep(120)
    return 0


if __name__ == "__main__":
    sys.exit(main())
