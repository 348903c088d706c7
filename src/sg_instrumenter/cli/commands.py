"""
CLI Command Handlers Facade.

Re-exports the handlers from `sg_instrumenter.cli.handlers` so the dispatcher
(and tests patching it) reference one module.
"""

from sg_instrumenter.cli.handlers.instrument import handle_instrument
from sg_instrumenter.cli.handlers.scan import handle_scan

__all__ = ["handle_instrument", "handle_scan"]
