"""Stage orchestrator for platflow requests.

Runs ``INIT -> BUILDER? -> SUMMARY? -> GENERATION -> DONE`` (or ``FAILED``)
as an explicit state machine. Progress records and annotations are written
onto a ``SwitchableStream``; for generation the stream's source is switched to
the text generator's output, which ends with the usage annotation.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import aclosing

from core.config import Settings, get_settings
from core.error_handler import structured_logger
from core.observability import get_tracer
from services.pipeline.context import (
    GenerationRequest,
    PipelineContext,
    compute_message_slice_id,
)
from services.pipeline.emitter import ProgressEmitter
from services.pipeline.exceptions import (
    PipelineError,
    PipelineSetupError,
    SummaryGenerationError,
)
from services.pipeline.interfaces import (
    BuilderService,
    GenerationFinished,
    SummaryGenerator,
    TextDelta,
    TextGenerator,
    UsageReported,
)
from services.pipeline.stages import (
    TERMINAL_STAGES,
    Continue,
    Degrade,
    Fail,
    Stage,
    Transition,
    next_stage_for,
)
from services.pipeline.usage import UsageAccumulator
from services.streaming import StreamClosedError, SwitchableStream


tracer = get_tracer(__name__)


def _error_detail(exc: BaseException) -> str:
    if isinstance(exc, PipelineError):
        return exc.message
    if isinstance(exc, TimeoutError):
        return "request timed out"
    return str(exc) or "Unknown error"


class StageOrchestrator:
    """Drives one request through the stage pipeline.

    Instances are single use: ``open()`` may be called once.
    """

    def __init__(
        self,
        *,
        builder: BuilderService,
        summary_generator: SummaryGenerator,
        text_generator: TextGenerator,
        settings: Settings | None = None,
    ) -> None:
        self.builder = builder
        self.summary_generator = summary_generator
        self.text_generator = text_generator
        self.settings = settings or get_settings()

        self.stage = Stage.INIT
        self.transitions: list[tuple[Stage, Transition]] = []
        self.usage = UsageAccumulator()
        self.summary: str | None = None

        self._context: PipelineContext | None = None
        self._emitter = ProgressEmitter()
        self._stream: SwitchableStream[str] | None = None
        self._task: asyncio.Task[None] | None = None
        self._handlers: dict[Stage, Callable[[], Awaitable[Transition]]] = {
            Stage.BUILDER: self._run_builder,
            Stage.SUMMARY: self._run_summary,
            Stage.GENERATION: self._run_generation,
        }

    @property
    def context(self) -> PipelineContext:
        if self._context is None:
            raise RuntimeError("Orchestrator has not been opened")
        return self._context

    @property
    def stream(self) -> SwitchableStream[str]:
        if self._stream is None:
            raise RuntimeError("Orchestrator has not been opened")
        return self._stream

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def open(self, context: PipelineContext) -> AsyncGenerator[str, None]:
        """Run INIT and start the pipeline; return the SSE output stream.

        Raises:
            PipelineSetupError: INIT failed; no stream was opened.
        """
        if self._context is not None:
            raise RuntimeError("Orchestrator can only be opened once")
        self._context = context
        self._emitter = ProgressEmitter(chat_id=context.chat_id)

        started = time.perf_counter()
        with tracer.start_as_current_span("platflow.stage.init") as span:
            transition = self._run_init()
            span.set_attribute("platflow.transition", type(transition).__name__)
        next_stage = self._apply(Stage.INIT, transition, started)

        if isinstance(transition, Fail):
            error = transition.error
            if isinstance(error, PipelineSetupError):
                raise error
            raise PipelineSetupError(_error_detail(error)) from error

        output, self._stream = SwitchableStream.create()
        self._task = asyncio.create_task(
            self._run(next_stage), name="platflow-stage-orchestrator"
        )
        self._stream.on_cancel(self._task.cancel)
        return output

    def _first_stage(self) -> Stage:
        if self.context.has_builder:
            return Stage.BUILDER
        return self._after_builder()

    def _after_builder(self) -> Stage:
        if self.context.wants_summary:
            return Stage.SUMMARY
        return Stage.GENERATION

    def _run_init(self) -> Transition:
        if not self.context.messages:
            return Fail(PipelineSetupError("Conversation has no messages"))
        try:
            self.text_generator.prepare(self.context)
        except Exception as e:
            structured_logger.warning(
                "Generation setup failed",
                error_type=e.__class__.__name__,
                detail=_error_detail(e),
            )
            return Fail(e)
        return Continue(self._first_stage())

    def _apply(self, stage: Stage, transition: Transition, started: float) -> Stage:
        next_stage = next_stage_for(transition)
        self.transitions.append((stage, transition))
        self.stage = next_stage

        log_data = {
            "stage": stage.value,
            "next_stage": next_stage.value,
            "outcome": type(transition).__name__.lower(),
            "elapsed_ms": round((time.perf_counter() - started) * 1000, 1),
        }
        if isinstance(transition, Degrade | Fail):
            log_data["detail"] = _error_detail(transition.error)
            structured_logger.warning("Pipeline stage transition", **log_data)
        else:
            structured_logger.info("Pipeline stage transition", **log_data)

        if self._stream is not None:
            if isinstance(transition, Fail):
                self._stream.error(transition.error)
            elif next_stage is Stage.DONE:
                self._stream.close()
        return next_stage

    async def _run(self, stage: Stage) -> None:
        try:
            while stage not in TERMINAL_STAGES:
                handler = self._handlers[stage]
                started = time.perf_counter()
                with tracer.start_as_current_span(f"platflow.stage.{stage.value}") as span:
                    span.set_attribute("platflow.message_count", len(self.context.messages))
                    transition = await handler()
                    span.set_attribute("platflow.transition", type(transition).__name__)
                stage = self._apply(stage, transition, started)
        except asyncio.CancelledError:
            structured_logger.info("Pipeline cancelled", stage=self.stage.value)
            raise
        except StreamClosedError:
            structured_logger.info("Output stream closed by client", stage=self.stage.value)
        except Exception as e:
            structured_logger.exception(
                "Pipeline failed unexpectedly",
                stage=self.stage.value,
                error_type=e.__class__.__name__,
            )
            self.stage = Stage.FAILED
            self.stream.error(e)

    async def _run_builder(self) -> Transition:
        context = self.context
        next_stage = self._after_builder()
        config = context.builder_config
        if config is None:
            return Continue(next_stage)

        self.stream.write(
            self._emitter.progress("builder", "in-progress", "Connecting to builder server")
        )

        timeout = self.settings.BUILDER_TIMEOUT_SECONDS
        try:
            async with asyncio.timeout(timeout):
                payload = await self.builder.build(config, context.messages)
        except Exception as e:
            detail = (
                f"timed out after {timeout:g}s"
                if isinstance(e, TimeoutError)
                else _error_detail(e)
            )
            structured_logger.error(
                "Error calling builder server",
                error_type=e.__class__.__name__,
                detail=detail,
            )
            self.stream.write(
                self._emitter.progress(
                    "builder", "in-progress", f"Builder server error: {detail}"
                )
            )
            return Degrade(next_stage, e)

        self.stream.write(self._emitter.builder_result(payload))
        self.stream.write(
            self._emitter.progress(
                "builder", "complete", "Builder server processing complete"
            )
        )
        return Continue(next_stage)

    async def _run_summary(self) -> Transition:
        self.stream.write(
            self._emitter.progress("summary", "in-progress", "Analysing Request")
        )

        timeout = self.settings.SUMMARY_TIMEOUT_SECONDS
        try:
            async with asyncio.timeout(timeout):
                summary = await self.summary_generator.summarize(
                    self.context, on_finish=self.usage.add
                )
        except Exception as e:
            detail = (
                f"timed out after {timeout:g}s"
                if isinstance(e, TimeoutError)
                else _error_detail(e)
            )
            structured_logger.error(
                "Summary generation failed",
                error_type=e.__class__.__name__,
                detail=detail,
            )
            self.stream.write(
                self._emitter.progress("summary", "in-progress", f"Summary error: {detail}")
            )
            error = e if isinstance(e, SummaryGenerationError) else SummaryGenerationError(detail)
            return Degrade(Stage.GENERATION, error)

        self.summary = summary
        self.stream.write(
            self._emitter.progress("summary", "complete", "Analysis Complete")
        )
        self.stream.write(self._emitter.context_summary(summary))
        return Continue(Stage.GENERATION)

    async def _run_generation(self) -> Transition:
        context = self.context
        self.stream.write(
            self._emitter.progress("response", "in-progress", "Generating Response")
        )

        request = GenerationRequest(
            messages=context.messages,
            prompt_id=context.prompt_id,
            summary=self.summary,
            message_slice_id=compute_message_slice_id(
                len(context.messages), self.settings.MESSAGE_REPLAY_WINDOW
            ),
            file_paths=context.file_paths,
        )
        await self.stream.switch_source(self._generation_source(request))
        await self.stream.wait_closed()

        if self.stream.exception is not None:
            error = self.stream.exception
            return Fail(error if isinstance(error, Exception) else RuntimeError(str(error)))
        return Continue(Stage.DONE)

    async def _generation_source(
        self, request: GenerationRequest
    ) -> AsyncGenerator[str, None]:
        max_segments = self.settings.MAX_RESPONSE_SEGMENTS
        segment = 1
        while True:
            parts: list[str] = []
            finish_reason: str | None = None
            async with aclosing(self.text_generator.stream(request)) as events:
                async for event in events:
                    if isinstance(event, TextDelta):
                        if event.text:
                            parts.append(event.text)
                            yield self._emitter.text(event.text)
                    elif isinstance(event, UsageReported):
                        self.usage.add(event.usage)
                    elif isinstance(event, GenerationFinished):
                        if event.usage is not None:
                            self.usage.add(event.usage)
                        finish_reason = event.finish_reason

            if finish_reason != "length":
                break

            continued = segment < max_segments
            structured_logger.warning(
                "Response truncated by output token limit",
                segment=segment,
                max_segments=max_segments,
                continued=continued,
            )
            yield self._emitter.truncation(segment, max_segments, continued)
            if not continued:
                break
            request = request.continued_with("".join(parts))
            segment += 1

        yield self._emitter.usage(self.usage.snapshot())
        yield self._emitter.progress("response", "complete", "Response Generated")
