"""
Agent step loop.

Drives a language model through repeated steps until it stops asking for
tools. Each step:

    1. Build the input messages: system prompt, prior conversation, user
       prompt, then every response message from earlier steps
    2. Let the step preparer override model, messages, system prompt,
       tool choice or active tools
    3. Call the model (under the retry policy) with the active tools
    4. Validate and, where possible, repair every tool call in place
    5. Execute the tool calls in order and append their results
    6. Record the step and derive the messages fed back next step
    7. Stop when a stop condition fires or the step did not end in tool calls

``Agent.generate`` takes one complete response per step; ``Agent.stream``
consumes the model's event stream through ``StreamReconstructor`` and
reports progress to a ``StreamHandler``.
"""

import itertools
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Sequence, Union

from ..cancellation import RunContext
from ..content import (
    Content,
    FilePart,
    FinishReason,
    Message,
    MessageRole,
    ProviderMetadata,
    ResponseContent,
    ToolCallContent,
    ToolResultContent,
    ToolResultOutputError,
    new_system_message,
    new_user_message,
    to_response_messages,
)
from ..errors import InvalidArgumentError
from ..model import Call, LanguageModel, Response, ToolChoice
from ..retry import OnRetryCallback, RetryOptions, retry_with_backoff
from ..tools.base import AgentTool
from ..tools.registry import ToolSet
from .executor import execute_tools
from .results import AgentResult, StepResult
from .stop_conditions import StopCondition, is_stop_condition_met
from .streaming import StreamedStep, StreamHandler, StreamReconstructor
from .validation import RepairToolCallFunction, validate_and_repair_tool_call

if TYPE_CHECKING:
    from ..tracing import TracingContext

logger = logging.getLogger(__name__)


@dataclass
class PrepareStepOptions:
    """What the step preparer sees before each step."""

    model: LanguageModel
    steps: list[StepResult]
    step_number: int  # zero-based
    messages: list[Message]


@dataclass
class PrepareStepResult:
    """
    Overrides for one step.

    Unset fields keep the agent's settings. ``active_tools`` set to ``None``
    or ``[]`` both mean every tool; ``disable_all_tools`` sends no tools at
    all. ``context`` replaces the run context from this step on.
    """

    model: Optional[LanguageModel] = None
    messages: Optional[list[Message]] = None
    system: Optional[str] = None
    tool_choice: Optional[str] = None
    active_tools: Optional[list[str]] = None
    disable_all_tools: bool = False
    context: Optional[RunContext] = None


PrepareStepFunction = Callable[
    [RunContext, PrepareStepOptions], Optional[PrepareStepResult]
]


@dataclass
class AgentCall:
    """
    One agent invocation.

    Unset settings fall back to the agent's. Provider options and headers
    are merged with the agent's, the call's keys winning.
    """

    prompt: str
    files: list[FilePart] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    active_tools: Optional[list[str]] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    provider_options: ProviderMetadata = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    max_retries: Optional[int] = None
    on_retry: Optional[OnRetryCallback] = None
    stop_when: list[StopCondition] = field(default_factory=list)
    prepare_step: Optional[PrepareStepFunction] = None
    repair_tool_call: Optional[RepairToolCallFunction] = None


@dataclass
class AgentStreamCall(AgentCall):
    handler: Optional[StreamHandler] = None


def should_continue(
    tool_calls: Sequence[ToolCallContent], finish_reason: FinishReason
) -> bool:
    """A step leads to another only if it made tool calls and ended for them."""
    return len(tool_calls) > 0 and finish_reason == FinishReason.TOOL_CALLS


@dataclass
class _PreparedStep:
    ctx: RunContext
    model: LanguageModel
    system_prompt: str
    messages: list[Message]
    tools: ToolSet
    tool_choice: str


def _with_system_prompt(messages: list[Message], system: str) -> list[Message]:
    """Swap the leading system message for ``system`` (removing it if empty)."""
    messages = list(messages)
    has_system = bool(messages) and messages[0].role == MessageRole.SYSTEM
    if system:
        if has_system:
            messages[0] = new_system_message(system)
        else:
            messages.insert(0, new_system_message(system))
    elif has_system:
        messages = messages[1:]
    return messages


def _substitute_tool_calls(
    content: Iterable[Content], tool_calls: list[ToolCallContent]
) -> list[Content]:
    """Put validated tool calls back in the positions of the raw ones."""
    validated = iter(tool_calls)
    result: list[Content] = []
    for item in content:
        if isinstance(item, ToolCallContent):
            result.append(next(validated))
        else:
            result.append(item)
    return result


class Agent:
    """
    Multi-step tool-calling agent over a ``LanguageModel``.

    Settings given here are defaults; every ``AgentCall`` may override them.
    The tool set is shared by all steps; the step preparer can narrow it
    per step. No state is kept between runs.
    """

    def __init__(
        self,
        model: LanguageModel,
        *,
        system_prompt: str = "",
        tools: Union[ToolSet, Iterable[AgentTool], None] = None,
        stop_when: Optional[list[StopCondition]] = None,
        prepare_step: Optional[PrepareStepFunction] = None,
        repair_tool_call: Optional[RepairToolCallFunction] = None,
        max_retries: Optional[int] = None,
        on_retry: Optional[OnRetryCallback] = None,
        retry_initial_delay: float = 2.0,
        retry_backoff_factor: float = 2.0,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        top_k: Optional[int] = None,
        presence_penalty: Optional[float] = None,
        frequency_penalty: Optional[float] = None,
        provider_options: Optional[ProviderMetadata] = None,
        headers: Optional[dict[str, str]] = None,
        tracing_context: Optional["TracingContext"] = None,
        execution_id: Optional[str] = None,
    ):
        self.model = model
        self.system_prompt = system_prompt
        self.tools = tools if isinstance(tools, ToolSet) else ToolSet(tools)
        self.stop_when = list(stop_when or [])
        self.prepare_step = prepare_step
        self.repair_tool_call = repair_tool_call
        self.max_retries = max_retries
        self.on_retry = on_retry
        self.retry_initial_delay = retry_initial_delay
        self.retry_backoff_factor = retry_backoff_factor
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.top_k = top_k
        self.presence_penalty = presence_penalty
        self.frequency_penalty = frequency_penalty
        self.provider_options = dict(provider_options or {})
        self.headers = dict(headers or {})
        self.tracing_context = tracing_context
        self.execution_id = execution_id

    @property
    def id_prefix(self) -> str:
        return f"[{self.execution_id}] " if self.execution_id else ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(
        self, call: AgentCall, ctx: Optional[RunContext] = None
    ) -> AgentResult:
        """
        Run the agent to completion, one full model response per step.

        Raises:
            InvalidArgumentError: Empty prompt; raised before any model call.
            APICallError, RetryError: The model call failed for good.
            RunCancelledError: ``ctx`` was cancelled.
            Exception: Anything raised by a tool or a hook, unchanged.
        """
        ctx = ctx or RunContext.background()
        call = self._prepare_call(call)
        initial_prompt = self._create_prompt(self.system_prompt, call)

        logger.debug("%sStarting agent run (generate): %s", self.id_prefix, call.prompt)
        with self._run_span("agent_generate", call) as run_span:
            try:
                result = self._run_generate(ctx, call, initial_prompt, run_span)
            except Exception as e:
                self._record_failure(run_span, e)
                raise
            self._record_success(run_span, result)

        self._log_trace_summary(result)
        return result

    def stream(
        self, call: AgentStreamCall, ctx: Optional[RunContext] = None
    ) -> AgentResult:
        """
        Run the agent to completion, consuming the model's event stream.

        Same step semantics and errors as ``generate``. Progress is reported
        to ``call.handler``; ``handler.on_error`` is told about the error that
        ends a failed run before it propagates.
        """
        ctx = ctx or RunContext.background()
        handler = call.handler or StreamHandler()
        call = self._prepare_call(call)
        initial_prompt = self._create_prompt(self.system_prompt, call)

        logger.debug("%sStarting agent run (stream): %s", self.id_prefix, call.prompt)
        with self._run_span("agent_stream", call) as run_span:
            try:
                result = self._run_stream(
                    ctx, call, handler, initial_prompt, run_span
                )
            except Exception as e:
                self._record_failure(run_span, e)
                handler.on_error(e)
                raise
            self._record_success(run_span, result)

        self._log_trace_summary(result)
        return result

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _run_generate(
        self,
        ctx: RunContext,
        call: AgentCall,
        initial_prompt: list[Message],
        tracer: Any,
    ) -> AgentResult:
        steps: list[StepResult] = []
        response_messages: list[Message] = []

        while True:
            step_number = len(steps)
            prepared = self._prepare_step(
                ctx, call, steps, step_number, initial_prompt, response_messages
            )
            ctx = prepared.ctx
            model_call = self._build_call(call, prepared)

            response = retry_with_backoff(
                ctx,
                lambda: self._generate_once(prepared, model_call, step_number, tracer),
                self._retry_options(call),
            )

            tool_calls = [
                validate_and_repair_tool_call(
                    ctx,
                    tool_call,
                    self.tools,
                    prepared.system_prompt,
                    prepared.messages,
                    call.repair_tool_call,
                )
                for tool_call in response.content.tool_calls()
            ]
            tool_results = execute_tools(
                ctx, self.tools, tool_calls, tracing=tracer, id_prefix=self.id_prefix
            )

            content = _substitute_tool_calls(response.content, tool_calls)
            content.extend(tool_results)
            step = self._record_step(steps, response_messages, content, response)
            logger.debug(
                "%sStep %d finished: %s, %d tool call(s)",
                self.id_prefix,
                step_number,
                step.finish_reason.value,
                len(tool_calls),
            )

            if is_stop_condition_met(call.stop_when, steps):
                logger.debug("%sStop condition met after step %d", self.id_prefix, step_number)
                break
            if not should_continue(tool_calls, response.finish_reason):
                break

        return AgentResult.from_steps(steps)

    def _run_stream(
        self,
        ctx: RunContext,
        call: AgentStreamCall,
        handler: StreamHandler,
        initial_prompt: list[Message],
        tracer: Any,
    ) -> AgentResult:
        steps: list[StepResult] = []
        response_messages: list[Message] = []

        handler.on_agent_start()

        for step_number in itertools.count():
            prepared = self._prepare_step(
                ctx, call, steps, step_number, initial_prompt, response_messages
            )
            ctx = prepared.ctx
            model_call = self._build_call(call, prepared)

            handler.on_step_start(step_number)

            # A retry starts the whole step over, stream state included.
            streamed, tool_results = retry_with_backoff(
                ctx,
                lambda: self._stream_once(
                    prepared, model_call, step_number, call, handler, tracer
                ),
                self._retry_options(call),
            )

            step = self._record_step(
                steps, response_messages, streamed.content + tool_results, streamed
            )
            handler.on_step_finish(step)
            logger.debug(
                "%sStep %d finished: %s, %d tool call(s)",
                self.id_prefix,
                step_number,
                step.finish_reason.value,
                len(streamed.tool_calls),
            )

            if is_stop_condition_met(call.stop_when, steps):
                logger.debug("%sStop condition met after step %d", self.id_prefix, step_number)
                break
            if not should_continue(streamed.tool_calls, streamed.finish_reason):
                break

        result = AgentResult.from_steps(steps)
        handler.on_finish(result)
        handler.on_agent_finish(result)
        return result

    # ------------------------------------------------------------------
    # Model calls
    # ------------------------------------------------------------------

    def _generate_once(
        self,
        prepared: _PreparedStep,
        model_call: Call,
        step_number: int,
        tracer: Any,
    ) -> Response:
        prepared.ctx.raise_if_cancelled()
        logger.debug("%sStep %d: calling model", self.id_prefix, step_number)
        with self._generation(tracer, prepared.model, model_call, step_number) as gen:
            try:
                response = prepared.model.generate(prepared.ctx, model_call)
            except Exception:
                if gen is not None:
                    gen.set_status("error")
                raise
            if gen is not None:
                gen.set_output(response.content.text()[:2000])
                gen.set_usage(response.usage)
        return response

    def _stream_once(
        self,
        prepared: _PreparedStep,
        model_call: Call,
        step_number: int,
        call: AgentCall,
        handler: StreamHandler,
        tracer: Any,
    ) -> tuple[StreamedStep, list[ToolResultContent]]:
        ctx = prepared.ctx
        ctx.raise_if_cancelled()
        logger.debug("%sStep %d: streaming model", self.id_prefix, step_number)

        reconstructor = StreamReconstructor(
            ctx,
            self.tools,
            handler=handler,
            system_prompt=prepared.system_prompt,
            messages=prepared.messages,
            repair=call.repair_tool_call,
        )
        with self._generation(tracer, prepared.model, model_call, step_number) as gen:
            try:
                streamed = reconstructor.consume(
                    prepared.model.stream(ctx, model_call)
                )
            except Exception:
                if gen is not None:
                    gen.set_status("error")
                raise
            if gen is not None:
                gen.set_output(ResponseContent(streamed.content).text()[:2000])
                gen.set_usage(streamed.usage)

        tool_results: list[ToolResultContent] = []
        if streamed.tool_calls:
            tool_results = execute_tools(
                ctx,
                self.tools,
                streamed.tool_calls,
                on_tool_result=handler.on_tool_result,
                tracing=tracer,
                id_prefix=self.id_prefix,
            )
        return streamed, tool_results

    # ------------------------------------------------------------------
    # Step preparation
    # ------------------------------------------------------------------

    def _prepare_call(self, call: AgentCall) -> AgentCall:
        """Fill unset call settings from the agent's."""

        def pick(value, default):
            return value if value is not None else default

        return replace(
            call,
            max_output_tokens=pick(call.max_output_tokens, self.max_output_tokens),
            temperature=pick(call.temperature, self.temperature),
            top_p=pick(call.top_p, self.top_p),
            top_k=pick(call.top_k, self.top_k),
            presence_penalty=pick(call.presence_penalty, self.presence_penalty),
            frequency_penalty=pick(call.frequency_penalty, self.frequency_penalty),
            max_retries=pick(call.max_retries, self.max_retries),
            on_retry=call.on_retry or self.on_retry,
            stop_when=list(call.stop_when or self.stop_when),
            prepare_step=call.prepare_step or self.prepare_step,
            repair_tool_call=call.repair_tool_call or self.repair_tool_call,
            provider_options={**self.provider_options, **(call.provider_options or {})},
            headers={**self.headers, **(call.headers or {})},
        )

    @staticmethod
    def _create_prompt(system: str, call: AgentCall) -> list[Message]:
        if not call.prompt:
            raise InvalidArgumentError("prompt", "prompt can't be empty")
        prompt: list[Message] = []
        if system:
            prompt.append(new_system_message(system))
        prompt.extend(call.messages)
        prompt.append(new_user_message(call.prompt, *call.files))
        return prompt

    def _prepare_step(
        self,
        ctx: RunContext,
        call: AgentCall,
        steps: list[StepResult],
        step_number: int,
        initial_prompt: list[Message],
        response_messages: list[Message],
    ) -> _PreparedStep:
        messages = initial_prompt + response_messages
        model = self.model
        system_prompt = self.system_prompt
        active_tools = call.active_tools
        tool_choice: str = ToolChoice.AUTO
        disable_all_tools = False

        if call.prepare_step is not None:
            prepared = call.prepare_step(
                ctx,
                PrepareStepOptions(
                    model=model,
                    steps=list(steps),
                    step_number=step_number,
                    messages=list(messages),
                ),
            )
            if prepared is not None:
                if prepared.context is not None:
                    ctx = prepared.context
                if prepared.messages is not None:
                    messages = list(prepared.messages)
                if prepared.model is not None:
                    model = prepared.model
                if prepared.system is not None:
                    system_prompt = prepared.system
                if prepared.tool_choice is not None:
                    tool_choice = prepared.tool_choice
                if prepared.active_tools:
                    active_tools = prepared.active_tools
                disable_all_tools = prepared.disable_all_tools

        if system_prompt != self.system_prompt:
            messages = _with_system_prompt(messages, system_prompt)

        return _PreparedStep(
            ctx=ctx,
            model=model,
            system_prompt=system_prompt,
            messages=messages,
            tools=self.tools.filter(active_tools, disable_all_tools),
            tool_choice=tool_choice,
        )

    @staticmethod
    def _build_call(call: AgentCall, prepared: _PreparedStep) -> Call:
        return Call(
            prompt=prepared.messages,
            max_output_tokens=call.max_output_tokens,
            temperature=call.temperature,
            top_p=call.top_p,
            top_k=call.top_k,
            presence_penalty=call.presence_penalty,
            frequency_penalty=call.frequency_penalty,
            tools=prepared.tools.to_specs(),
            tool_choice=prepared.tool_choice,
            headers=dict(call.headers),
            provider_options=dict(call.provider_options),
        )

    def _retry_options(self, call: AgentCall) -> RetryOptions:
        options = RetryOptions(
            initial_delay=self.retry_initial_delay,
            backoff_factor=self.retry_backoff_factor,
            on_retry=call.on_retry,
        )
        if call.max_retries is not None:
            options.max_retries = call.max_retries
        return options

    @staticmethod
    def _record_step(
        steps: list[StepResult],
        response_messages: list[Message],
        content: list[Content],
        outcome: Union[Response, StreamedStep],
    ) -> StepResult:
        """Append a step built from the model outcome and the final content."""
        step_messages = to_response_messages(content)
        response_messages.extend(step_messages)
        step = StepResult(
            content=content,
            finish_reason=outcome.finish_reason,
            usage=outcome.usage,
            warnings=list(outcome.warnings),
            provider_metadata=outcome.provider_metadata,
            messages=step_messages,
        )
        steps.append(step)
        return step

    # ------------------------------------------------------------------
    # Tracing and logging
    # ------------------------------------------------------------------

    def _run_span(self, name: str, call: AgentCall):
        if self.tracing_context is None:
            return nullcontext()
        return self.tracing_context.span(
            name=name,
            input={"prompt": call.prompt},
            metadata={
                "execution_id": self.execution_id,
                "model": self.model.model_id,
                "tools": self.tools.names(),
            },
        )

    @staticmethod
    def _generation(tracer: Any, model: LanguageModel, call: Call, step_number: int):
        if tracer is None:
            return nullcontext()
        return tracer.generation(
            name=f"model_call_step_{step_number}",
            model=model.model_id,
            input=call.prompt,
            model_parameters={
                "temperature": call.temperature,
                "max_tokens": call.max_output_tokens,
                "tool_choice": str(call.tool_choice),
            },
        )

    def _record_failure(self, run_span: Any, error: BaseException) -> None:
        logger.error("%sAgent run failed: %s", self.id_prefix, error)
        if run_span is not None:
            run_span.set_status("error")
            run_span.set_output({"error": str(error)})

    @staticmethod
    def _record_success(run_span: Any, result: AgentResult) -> None:
        if run_span is None:
            return
        run_span.set_output(
            {
                "steps_taken": len(result.steps),
                "final_text": result.response.content.text()[:500],
                "usage": result.total_usage.to_dict(),
            }
        )

    def _log_trace_summary(self, result: AgentResult) -> None:
        """Log a compact trace summary."""
        id_prefix = self.id_prefix
        logger.info("%s%s", id_prefix, "\u2500" * 50)
        logger.info(
            "%sTRACE SUMMARY: %d step(s), %d token(s)",
            id_prefix,
            len(result.steps),
            result.total_usage.total_tokens,
        )
        logger.info("%s%s", id_prefix, "\u2500" * 50)
        for number, step in enumerate(result.steps):
            tool_results = step.content.tool_results()
            if not tool_results:
                text = step.content.text()
                preview = text[:80] + "..." if len(text) > 80 else text
                logger.info(
                    "%sStep %d [%s]: %s",
                    id_prefix,
                    number,
                    step.finish_reason.value,
                    preview,
                )
                continue
            for tool_result in tool_results:
                output = tool_result.result
                if isinstance(output, ToolResultOutputError):
                    logger.info(
                        "%sStep %d: %s -> error: %s",
                        id_prefix,
                        number,
                        tool_result.tool_name,
                        output.message[:80],
                    )
                else:
                    logger.info(
                        "%sStep %d: %s -> ok", id_prefix, number, tool_result.tool_name
                    )
