#!/usr/bin/python3
# -*- coding: utf-8 -*-
"""Top-level executable shim.

Purpose:
- `python vhostsniff.py -f report.txt` command execution from a checkout
"""

import os
import sys

from vhostsniff.cli import main

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nInterrupted")
        try:
            sys.exit(0)
        except SystemExit:
            os._exit(0)
