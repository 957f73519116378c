"""
Run-scoped tracing context using Langfuse SDK v3.

Parent/child links are passed explicitly through ``TraceContext`` (trace id
plus parent span id) rather than relying on OTEL context state, so spans
nest correctly even when the agent runs inside other instrumented code.

Layout of one agent run:

    agent_run (span)
    ├── model_call step=0 (generation, with usage)
    ├── tool:<name> (span, status=error on failure)
    └── model_call step=1 ...
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

from langfuse.types import TraceContext

from ..model import Usage
from .client import get_tracing_client

logger = logging.getLogger(__name__)


def _tracing_enabled() -> bool:
    client = get_tracing_client()
    return client is not None and client.enabled and client.client is not None


@dataclass
class _Observation:
    """Shared lifecycle of spans and generations."""

    name: str
    enabled: bool = False
    input: Optional[Any] = None
    metadata: Optional[dict] = None
    _trace_context: Optional[TraceContext] = field(default=None, repr=False)
    _context_manager: Any = field(default=None, repr=False)
    _observation: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[Any] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)
    _end_metadata: dict = field(default_factory=dict, repr=False)

    as_type = "span"

    def _start_kwargs(self) -> dict[str, Any]:
        return {
            "trace_context": self._trace_context,
            "as_type": self.as_type,
            "name": self.name,
            "input": self.input,
            "metadata": self.metadata,
        }

    def _end_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "metadata": {
                "status": self._status,
                "duration_ms": round((time.time() - self._start_time) * 1000, 2),
                **self._end_metadata,
            }
        }
        if self._output is not None:
            kwargs["output"] = self._output
        return kwargs

    def start(self) -> None:
        if not self.enabled or not _tracing_enabled():
            return
        try:
            self._start_time = time.time()
            self._context_manager = (
                get_tracing_client().client.start_as_current_observation(
                    **self._start_kwargs()
                )
            )
            self._observation = self._context_manager.__enter__()
        except Exception as e:
            logger.warning("Failed to start %s '%s': %s", self.as_type, self.name, e)
            self._observation = None

    def end(self) -> None:
        if not self.enabled or not self._observation:
            return
        try:
            self._observation.update(**self._end_kwargs())
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning("Failed to end %s '%s': %s", self.as_type, self.name, e)

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status

    def add_metadata(self, metadata: dict) -> None:
        """Metadata recorded when the observation ends."""
        self._end_metadata.update(metadata)

    def child_trace_context(self) -> Optional[TraceContext]:
        """Trace context that makes this observation the parent."""
        span_id = getattr(self._observation, "id", None)
        trace_id = getattr(self._observation, "trace_id", None) or (
            self._trace_context or {}
        ).get("trace_id")
        if not span_id or not trace_id:
            return self._trace_context
        return TraceContext(trace_id=trace_id, parent_span_id=span_id)


@contextmanager
def _observe(observation: _Observation) -> Generator[Any, None, None]:
    try:
        observation.start()
        yield observation
    finally:
        observation.end()


@dataclass
class SpanContext(_Observation):
    """A span; children opened through it nest under it."""

    as_type = "span"

    def span(
        self,
        name: str,
        metadata: Optional[dict] = None,
        input: Optional[Any] = None,
    ):
        return _observe(
            SpanContext(
                name=name,
                enabled=self.enabled,
                input=input,
                metadata=metadata,
                _trace_context=self.child_trace_context(),
            )
        )

    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ):
        return _observe(
            GenerationContext(
                name=name,
                enabled=self.enabled,
                input=input,
                metadata=metadata,
                model=model,
                model_parameters=model_parameters,
                _trace_context=self.child_trace_context(),
            )
        )


@dataclass
class GenerationContext(_Observation):
    """A model call, recorded with model name, parameters and token usage."""

    model: str = ""
    model_parameters: Optional[dict] = None
    _usage: Optional[dict] = field(default=None, repr=False)

    as_type = "generation"

    def _start_kwargs(self) -> dict[str, Any]:
        kwargs = super()._start_kwargs()
        kwargs["model"] = self.model
        kwargs["model_parameters"] = self.model_parameters
        return kwargs

    def _end_kwargs(self) -> dict[str, Any]:
        kwargs = super()._end_kwargs()
        if self._usage:
            kwargs["usage_details"] = self._usage
        return kwargs

    def set_usage(self, usage: Usage) -> None:
        self._usage = {
            "input": usage.input_tokens,
            "output": usage.output_tokens,
            "total": usage.total_tokens,
        }


@dataclass
class TracingContext:
    """
    Tracing for one agent run.

    ``start_trace`` opens the root span; ``span`` and ``generation`` open
    children of it. Everything degrades to a no-op when the global tracing
    client is missing or disabled.
    """

    run_id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    _root: Optional[SpanContext] = field(default=None, repr=False)
    _enabled: bool = field(default=False, repr=False)

    def __post_init__(self):
        self._enabled = _tracing_enabled()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_trace(
        self,
        name: str = "agent_run",
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        if not self._enabled:
            logger.debug("[%s] start_trace skipped: tracing disabled", self.run_id)
            return

        self._root = SpanContext(
            name=name,
            enabled=True,
            input=input,
            metadata={"run_id": self.run_id, **(metadata or {})},
        )
        self._root.start()
        observation = self._root._observation
        if observation is None:
            return

        try:
            observation.update_trace(user_id=self.user_id, session_id=self.session_id)
        except Exception as e:
            logger.warning("[%s] Failed to set trace attributes: %s", self.run_id, e)

    def end_trace(
        self,
        output: Optional[Any] = None,
        status: str = "success",
        metadata: Optional[dict] = None,
    ) -> None:
        if self._root is None:
            return
        self._root.set_output(output)
        self._root.set_status(status)
        if metadata:
            self._root.add_metadata(metadata)
        self._root.end()
        self._root = None

    def get_trace_context(self) -> Optional[TraceContext]:
        """Trace context pointing at the root span, if a trace is open."""
        if self._root is None:
            return None
        return self._root.child_trace_context()

    def span(
        self,
        name: str,
        metadata: Optional[dict] = None,
        input: Optional[Any] = None,
    ):
        return _observe(
            SpanContext(
                name=name,
                enabled=self._enabled,
                input=input,
                metadata=metadata,
                _trace_context=self.get_trace_context(),
            )
        )

    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ):
        return _observe(
            GenerationContext(
                name=name,
                enabled=self._enabled,
                input=input,
                metadata=metadata,
                model=model,
                model_parameters=model_parameters,
                _trace_context=self.get_trace_context(),
            )
        )
