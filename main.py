#!/usr/bin/env python3
"""
main.py: quick-start entry point.

    python main.py generate source.png target.png --sidelen 128

Or use the full CLI:

    python -m pixel_rearrange.cli generate --help
    python -m pixel_rearrange.cli weights target.png --size 128
"""

from pixel_rearrange.cli import app

if __name__ == "__main__":
    app()
