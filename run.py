#!/usr/bin/env python3
"""Command-line runner"""
import sys

from wpbackup.cli import main

if __name__ == '__main__':
    sys.exit(main())
