#!/usr/bin/env python3
"""Convenience script to run bookmark enrichment."""

import sys
from pathlib import Path

# Ensure src is on path when run from project root
sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from bookmark_enrichment.main import main

if __name__ == "__main__":
    sys.exit(main())
