"""
Command handler implementations.
"""

from .instrument import handle_instrument, collect_sources, write_atomic, _print_batch_summary
from .scan import handle_scan

__all__ = [
  "_print_batch_summary",
  "collect_sources",
  "handle_instrument",
  "handle_scan",
  "write_atomic",
]
