"""
Tracing and metrics for the bidding engine.
"""

from .tracing import (
    setup_tracing,
    engine_span,
    set_outcome,
    get_current_span,
    get_tracer,
    shutdown_tracing,
)

__all__ = [
    'setup_tracing',
    'engine_span',
    'set_outcome',
    'get_current_span',
    'get_tracer',
    'shutdown_tracing',
]
