"""Pipeline engine: execution contexts and asynchronous block scheduling."""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from obscope.completion import CompletionHandler, ForwardingCallback, Outcome
from obscope.expander import EnvironmentExpander, expand_environment
from obscope.store import CredentialStore

logger = logging.getLogger(__name__)

# A block receives the context it runs under and may be sync or async
Body = Callable[["StepContext"], Any]


def _new_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class StepContext:
    """Everything a step needs from the surrounding execution.

    job_id is the execution token the credential store checks access
    against. expander is the overlay already in effect (None at top level).
    """

    job_id: str
    engine: PipelineEngine
    credentials: CredentialStore
    completion: CompletionHandler
    expander: EnvironmentExpander | None = None
    base_env: Mapping[str, str] = field(default_factory=dict)
    run_id: str = field(default_factory=_new_run_id)

    def environment(self) -> dict[str, str]:
        """The working environment as seen by code running in this context."""
        return expand_environment(self.expander, self.base_env)


class PipelineEngine(Protocol):
    """What a step needs from the engine hosting it."""

    def current_ambient_overlay(self, context: StepContext) -> EnvironmentExpander | None: ...

    def start_async(
        self,
        context: StepContext,
        expander: EnvironmentExpander | None,
        body: Body,
        callback: CompletionHandler,
    ) -> None: ...

    def on_completion(self, context: StepContext) -> CompletionHandler: ...


class AsyncioEngine:
    """Runs each block as a task on the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def active_count(self) -> int:
        """Number of blocks started and not yet finished."""
        return len(self._tasks)

    def current_ambient_overlay(self, context: StepContext) -> EnvironmentExpander | None:
        return context.expander

    def on_completion(self, context: StepContext) -> CompletionHandler:
        return context.completion

    def start_async(
        self,
        context: StepContext,
        expander: EnvironmentExpander | None,
        body: Body,
        callback: CompletionHandler,
    ) -> None:
        """Schedule body under expander; callback receives its outcome once.

        A task cancelled before the body ever ran still reports
        CancelledError. Raises RuntimeError when called outside a running
        event loop.
        """
        loop = asyncio.get_running_loop()
        guarded = ForwardingCallback(callback)
        child = replace(context, expander=expander, completion=guarded)
        task = loop.create_task(
            self._run_body(body, child), name=f"obscope-block-{context.run_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        def _report_cancelled(done: asyncio.Task[None]) -> None:
            if done.cancelled() and not guarded.delivered:
                logger.debug("Block in run %s cancelled before it started", context.run_id)
                guarded.on_failure(asyncio.CancelledError())

        task.add_done_callback(_report_cancelled)

    async def _run_body(self, body: Body, context: StepContext) -> None:
        try:
            result = body(context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.debug("Block in run %s failed: %r", context.run_id, exc)
            context.completion.on_failure(exc)
        except BaseException as exc:
            # Cancellation, SystemExit and KeyboardInterrupt are reported,
            # then left to unwind the loop
            context.completion.on_failure(exc)
            raise
        else:
            context.completion.on_success(result)

    async def run(
        self,
        body: Body,
        *,
        job_id: str,
        credentials: CredentialStore,
        base_env: Mapping[str, str] | None = None,
    ) -> Any:
        """Run a top-level block and return its result (or raise its error)."""
        outcome = Outcome()
        context = StepContext(
            job_id=job_id,
            engine=self,
            credentials=credentials,
            completion=outcome,
            base_env=dict(base_env or {}),
        )
        logger.info("Starting run %s for job %s", context.run_id, job_id)
        self.start_async(context, None, body, outcome)
        return await outcome.result()

    async def close(self) -> None:
        """Cancel outstanding blocks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d outstanding block(s)", len(tasks))
