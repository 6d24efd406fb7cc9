#!/usr/bin/env python3
"""
WhiteScan - Edge IP White List Scanner

Pings and HTTP-probes a list of candidate IPs and keeps the ones that
answer in "white list.txt".

Usage:
    python whitescan.py -i ipv4.txt -p 80,443
    python whitescan.py --no-ping -g 16 -n 500
    python whitescan.py --show-whitelist
"""

import sys

from whitescan.main import main

if __name__ == "__main__":
    sys.exit(main())
