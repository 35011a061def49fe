"""
Scale Practice Log - Main entry point
"""
import sys

from scalelog.cli import main

if __name__ == "__main__":
    sys.exit(main())
