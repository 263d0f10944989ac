#!/usr/bin/env python3
"""
Genomic offset analysis script (LFMM2 + genetic gap)
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from genoff.cli.run_offset import main


if __name__ == "__main__":
    sys.exit(main())
