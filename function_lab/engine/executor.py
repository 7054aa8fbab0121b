"""Two-phase execution of one callable with ad hoc arguments."""

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any

from function_lab.engine.arguments import shape_call, split_top_level
from function_lab.engine.heuristics import FOLLOW_UP_CHAIN, FULL_CHAIN, materialize
from function_lab.engine.sandbox import (
    DEFAULT_ALLOWED_MODULES,
    HOST_INTERRUPTS,
    EvaluationContext,
    describe_exception,
)
from function_lab.engine.serializer import PREVIEW_LENGTH, serialize
from function_lab.errors import ExecutionFailure, InvocationFailure
from function_lab.models import ArgumentSpec, ExecuteRequest, ExecutionOutcome

logger = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    IDLE = "idle"
    DEFINING = "defining"
    INVOKING = "invoking"
    FOLLOWUP_INVOKING = "followup_invoking"
    DONE = "done"
    FAILED = "failed"


class _Run:
    """Tracks the state of one execute call."""

    def __init__(self, entry_name: str):
        self.entry_name = entry_name
        self.state = ExecutionState.IDLE

    def advance(self, state: ExecutionState):
        logger.debug(f"{self.entry_name}: {self.state.value} -> {state.value}")
        self.state = state


class ExecutionEngine:
    """Define a callable's source in a fresh context, then invoke it.

    Every call gets its own EvaluationContext, discarded on return, so
    concurrent calls share no bindings. ``execute`` never raises for
    failures inside the callable or the engine; they come back as a failed
    ExecutionOutcome.
    """

    def __init__(
        self,
        allowed_modules: frozenset[str] = DEFAULT_ALLOWED_MODULES,
        preview_length: int = PREVIEW_LENGTH,
    ):
        self.allowed_modules = allowed_modules
        self.preview_length = preview_length

    async def execute(self, request: ExecuteRequest) -> ExecutionOutcome:
        """Run one request to a terminal outcome.

        Args:
            request: Source text, entry name, raw arguments and follow-up text

        Returns:
            ExecutionOutcome with the serialized value or the error message
        """
        run = _Run(request.entry_name)
        logger.info(
            f"Executing {request.entry_name} with {len(request.arguments)} arguments"
        )
        started = time.perf_counter()

        with EvaluationContext(self.allowed_modules) as context:
            try:
                result = await self._run_phases(run, context, request)
                value = serialize(result, self.preview_length)
            except ExecutionFailure as e:
                return self._failed(run, context, started, str(e), e.phase)
            except HOST_INTERRUPTS:
                raise
            except asyncio.CancelledError:
                if _host_cancelled():
                    raise
                return self._failed(
                    run, context, started, "awaitable was cancelled", run.state.value
                )
            except BaseException as e:
                # Raised outside a phase boundary, e.g. by a result's __repr__
                return self._failed(
                    run, context, started, describe_exception(e), run.state.value
                )

            run.advance(ExecutionState.DONE)
            elapsed_ms = _elapsed_ms(started)
            logger.info(f"{request.entry_name} completed in {elapsed_ms:.2f}ms")
            return ExecutionOutcome(
                success=True,
                value=value,
                elapsed_ms=elapsed_ms,
                output=list(context.output),
            )

    async def _run_phases(
        self, run: _Run, context: EvaluationContext, request: ExecuteRequest
    ) -> Any:
        run.advance(ExecutionState.DEFINING)
        context.define(request.source_text)

        run.advance(ExecutionState.INVOKING)
        values = [materialize(spec, context, FULL_CHAIN) for spec in request.arguments]
        target = context.lookup(request.entry_name)
        result = await _invoke(target, values, request.is_async, run.state)

        follow_up = (request.follow_up_arguments or "").strip()
        if callable(result) and follow_up:
            run.advance(ExecutionState.FOLLOWUP_INVOKING)
            follow_up_values = [
                materialize(ArgumentSpec(raw=piece), context, FOLLOW_UP_CHAIN)
                for piece in split_top_level(follow_up)
            ]
            logger.debug(f"Follow-up call with {len(follow_up_values)} arguments")
            result = await _invoke(result, follow_up_values, False, run.state)

        return result

    def _failed(
        self,
        run: _Run,
        context: EvaluationContext,
        started: float,
        message: str,
        phase: str,
    ) -> ExecutionOutcome:
        run.advance(ExecutionState.FAILED)
        elapsed_ms = _elapsed_ms(started)
        logger.warning(f"{run.entry_name} failed while {phase}: {message}")
        return ExecutionOutcome(
            success=False,
            error_message=message,
            elapsed_ms=elapsed_ms,
            phase=phase,
            output=list(context.output),
        )


async def _invoke(target, values: list[Any], is_async: bool, state: ExecutionState) -> Any:
    """Call target with shaped arguments, awaiting the result when needed.

    Raises:
        InvocationFailure: If the call raises or its awaitable fails
    """
    if not callable(target):
        raise InvocationFailure(
            f"'{type(target).__name__}' object is not callable", phase=state.value
        )

    args, kwargs = shape_call(target, values)
    try:
        result = target(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        elif is_async:
            logger.debug("Declared async but returned a plain value")
    except HOST_INTERRUPTS:
        raise
    except asyncio.CancelledError as e:
        if _host_cancelled():
            # Cancelled by the host, e.g. an expired wait_for
            raise
        raise InvocationFailure("awaitable was cancelled", phase=state.value) from e
    except BaseException as e:
        raise InvocationFailure(describe_exception(e), phase=state.value) from e
    return result


def _host_cancelled() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


async def execute(
    source_text: str,
    entry_name: str,
    arguments: list[ArgumentSpec] | None = None,
    is_async: bool = False,
    follow_up_arguments: str | None = None,
) -> ExecutionOutcome:
    """Execute one callable with a default engine."""
    request = ExecuteRequest(
        source_text=source_text,
        entry_name=entry_name,
        arguments=list(arguments or []),
        is_async=is_async,
        follow_up_arguments=follow_up_arguments,
    )
    return await ExecutionEngine().execute(request)


def execute_sync(
    source_text: str,
    entry_name: str,
    arguments: list[ArgumentSpec] | None = None,
    is_async: bool = False,
    follow_up_arguments: str | None = None,
) -> ExecutionOutcome:
    """Blocking wrapper around execute for hosts without an event loop."""
    return asyncio.run(
        execute(source_text, entry_name, arguments, is_async, follow_up_arguments)
    )
