"""
PatternScope CLI entry point.

Usage:
    python -m patternscope.cli detect page.html --pattern chat
    python -m patternscope.cli explain page.html --pattern chat
    python -m patternscope.cli diff before.html after.html
    python -m patternscope.cli signatures page.html
    python -m patternscope.cli similar page.html ".a" ".b"
"""

import sys
from .main import main

if __name__ == "__main__":
    sys.exit(main())
