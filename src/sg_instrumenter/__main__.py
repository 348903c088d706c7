"""
Entry point for module execution (``python -m sg_instrumenter``).

This module delegates execution to the CLI handler in ``sg_instrumenter.cli.__main__``.
"""

import sys
from sg_instrumenter.cli.__main__ import main

if __name__ == "__main__":
  sys.exit(main())
