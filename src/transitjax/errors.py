"""Error taxonomy for transitjax.

The library has a single failure class: malformed arguments.  Everything
else (including a Kepler iteration that runs out of budget) returns a
value.  :class:`InvalidArgumentError` subclasses :class:`ValueError` so
callers that already catch ``ValueError`` keep working.
"""

from __future__ import annotations


class InvalidArgumentError(ValueError):
    """Raised when inputs or output buffers violate a call's contract.

    Always raised before any output buffer has been written, so a failed
    call never leaves partial results behind.
    """
