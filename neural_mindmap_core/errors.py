# neural_mindmap_core/errors.py

"""
Error taxonomy for the mind map engine.

Every error raised by an engine operation derives from ``MindMapError`` so that
callers (and the HTTP layer) can map them without string matching.
"""

import asyncio
from typing import Optional


class MindMapError(Exception):
    """Base class for all engine errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MindMapError, ValueError):
    """Malformed arguments. Never retried."""

    status_code = 400


class NotFoundError(MindMapError):
    """An operation referenced a context with no stored map. Never retried."""

    status_code = 404


class UpstreamError(MindMapError):
    """Embedding provider, graph store or expansion job failure.

    The originating message is kept verbatim in ``message``; the original exception,
    when there is one, is available as ``original``.
    """

    status_code = 502

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class MindMapTimeoutError(MindMapError, asyncio.TimeoutError):
    """Expansion wait exceeded its bound. Distinct from UpstreamError so callers can retry with a longer bound."""

    status_code = 504

    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class ComputationError(MindMapError):
    """Internal invariant violation or malformed raw graph. Fatal to the current operation."""

    status_code = 500
