"""
Langfuse tracing integration for the agent loop.

Records each agent run with its model calls and tool invocations.
"""

from .client import (
    TracingClient,
    get_tracing_client,
    init_tracing_client,
    shutdown_tracing,
)
from .context import (
    GenerationContext,
    SpanContext,
    TracingContext,
)

__all__ = [
    "TracingClient",
    "init_tracing_client",
    "get_tracing_client",
    "shutdown_tracing",
    "TracingContext",
    "SpanContext",
    "GenerationContext",
]
