"""Detection of asynchronous work a migration started but did not await.

A migration that fires ``asyncio.create_task(doc.set(...))`` and returns
without awaiting it would let the engine record success and move on while
the write is still in flight. ``PendingWorkTracker`` runs the entry point
inside a tagged ``contextvars`` scope and installs a loop task factory that
records every task created inside that scope (tasks inherit the scope, so
tasks started by tracked tasks are tracked too). Tasks created by the engine
or by other runs on the same loop carry no tag and are ignored.

Architecture:
    ::

        tracker.run(entry, ctx)
            │
            ├── install task factory + exception handler on the loop
            ├── scope = copy_context(); scope[_SESSION] = tracker
            ├── scope.run(entry, ctx)            sync part of the entry point
            ├── await task(result, context=scope)
            │       create_task(...) inside ──► factory ──► _pending[task]
            │       task done                ──► discard(task)
            ├── settle():
            │       force_wait ─► wait until _pending is empty (no timeout)
            │       otherwise  ─► one warning listing source locations
            ├── sleep(grace_period)             late unhandled errors surface
            └── finally: uninstall factory + handler

Unhandled errors, meaning a loop callback that raised, a tracked task
that failed before the entry point returned and whose exception nobody
retrieved, or a tracked task that failed after it returned, are captured for the whole window and fail the migration. Once
captured they take precedence over force-wait.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import itertools
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fireway.logging import get_logger

logger = get_logger(__name__)

_SESSION: contextvars.ContextVar[PendingWorkTracker | None] = contextvars.ContextVar(
    "fireway_pending_work_session", default=None
)

_ids = itertools.count(1)


@dataclass(frozen=True)
class PendingHandle:
    """One in-flight task started by a migration."""

    id: int
    location: str


@dataclass
class TrackedResult:
    """Outcome of one tracked entry point invocation."""

    success: bool
    error: BaseException | None = None
    outstanding: list[PendingHandle] = field(default_factory=list)


class _LoopInstrumentation:
    """Task factory and exception handler shared by the sessions on one loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop
        self.sessions: set[PendingWorkTracker] = set()
        self._previous_factory = loop.get_task_factory()
        self._previous_handler = loop.get_exception_handler()
        loop.set_task_factory(self._task_factory)
        loop.set_exception_handler(self._exception_handler)

    def restore(self) -> None:
        self.loop.set_task_factory(self._previous_factory)
        self.loop.set_exception_handler(self._previous_handler)

    def _task_factory(self, loop: asyncio.AbstractEventLoop, coro: Any, **kwargs: Any) -> asyncio.Future:
        if self._previous_factory is not None:
            task = self._previous_factory(loop, coro, **kwargs)
        else:
            task = asyncio.Task(coro, loop=loop, **kwargs)
        session = _SESSION.get()
        if session is not None and session in self.sessions:
            session._track(task, coro)
        return task

    def _exception_handler(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        owner = self._owner_of(context)
        if owner is None:
            if self._previous_handler is not None:
                self._previous_handler(loop, context)
            else:
                loop.default_exception_handler(context)
            return
        error = context.get("exception") or RuntimeError(context.get("message", "unhandled error"))
        owner._capture(error)

    def _owner_of(self, context: dict[str, Any]) -> PendingWorkTracker | None:
        future = context.get("task") or context.get("future")
        for session in self.sessions:
            if future is not None and session._knows(future):
                return session
        if len(self.sessions) == 1:
            return next(iter(self.sessions))
        return None


_instrumented: dict[asyncio.AbstractEventLoop, _LoopInstrumentation] = {}


class PendingWorkTracker:
    """Tracks tasks started by one migration's entry point.

    Parameters
    ----------
    source
        Path of the migration file; creation sites inside it label handles.
    force_wait
        Wait for outstanding tasks instead of warning about them.
    grace_period
        Seconds to keep capturing unhandled errors after the entry point
        and any waited-for work settle.
    """

    def __init__(
        self,
        source: str | Path,
        *,
        force_wait: bool = False,
        grace_period: float = 0.01,
    ) -> None:
        self.source = str(source)
        self.force_wait = force_wait
        self.grace_period = grace_period
        self._pending: dict[asyncio.Future, PendingHandle] = {}
        self._seen: set[int] = set()
        self._failed_early: list[asyncio.Future] = []
        self._returned = False
        self._error: BaseException | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def outstanding(self) -> list[PendingHandle]:
        return list(self._pending.values())

    async def run(self, entry: Callable[..., Any], *args: Any) -> TrackedResult:
        """Invoke ``entry(*args)`` and return whether the migration succeeded."""
        self._install()
        scope = contextvars.copy_context()
        scope.run(_SESSION.set, self)
        try:
            result = scope.run(entry, *args)
            if inspect.isawaitable(result):
                await asyncio.get_running_loop().create_task(_resolve(result), context=scope)
            self._returned = True
            self._collect_unretrieved()
            outstanding = await self._settle()
            if self._error is None:
                await asyncio.sleep(self.grace_period)
            if self._error is not None:
                logger.error(
                    "migration.unhandled_error",
                    source=self.source,
                    error=repr(self._error),
                )
                return TrackedResult(success=False, error=self._error, outstanding=outstanding)
            return TrackedResult(success=True, outstanding=outstanding)
        except Exception as exc:
            logger.error("migration.error", source=self.source, exc_info=exc)
            return TrackedResult(success=False, error=exc, outstanding=self.outstanding)
        finally:
            self._uninstall()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _install(self) -> None:
        loop = asyncio.get_running_loop()
        instrumentation = _instrumented.get(loop)
        if instrumentation is None:
            instrumentation = _instrumented[loop] = _LoopInstrumentation(loop)
        instrumentation.sessions.add(self)
        self._loop = loop

    def _uninstall(self) -> None:
        if self._loop is None:
            return
        instrumentation = _instrumented.get(self._loop)
        if instrumentation is not None:
            instrumentation.sessions.discard(self)
            if not instrumentation.sessions:
                instrumentation.restore()
                del _instrumented[self._loop]
        self._loop = None

    async def _settle(self) -> list[PendingHandle]:
        if not self._pending:
            return []
        outstanding = self.outstanding
        if not self.force_wait:
            logger.warning(
                "pending_work.unawaited",
                hint="Use --force-wait if you want to wait",
                locations=[handle.location for handle in outstanding],
            )
            return outstanding

        logger.info("pending_work.waiting", count=len(outstanding))
        while self._pending and self._error is None:
            await asyncio.wait(list(self._pending), return_when=asyncio.FIRST_COMPLETED)
        return outstanding

    def _track(self, task: asyncio.Future, coro: Any) -> None:
        handle = PendingHandle(id=next(_ids), location=self._locate(coro))
        self._pending[task] = handle
        self._seen.add(id(task))
        task.add_done_callback(self._discard)

    def _discard(self, task: asyncio.Future) -> None:
        self._pending.pop(task, None)
        if task.cancelled() or self._loop is None:
            return
        if not self._returned:
            # The entry point may still await it; decided once it returns.
            self._failed_early.append(task)
            return
        error = task.exception()
        if error is not None:
            self._capture(error)

    def _collect_unretrieved(self) -> None:
        failed, self._failed_early = self._failed_early, []
        for task in failed:
            # Cleared by asyncio once anything reads the result or exception.
            if getattr(task, "_log_traceback", False):
                self._capture(task.exception())

    def _knows(self, future: asyncio.Future) -> bool:
        return id(future) in self._seen

    def _capture(self, error: BaseException) -> None:
        if self._error is None:
            self._error = error

    def _locate(self, coro: Any) -> str:
        for frame in reversed(traceback.extract_stack()):
            if frame.filename == self.source:
                return f"{frame.filename}:{frame.lineno}"
        code = getattr(coro, "cr_code", None) or getattr(coro, "gi_code", None)
        if code is not None:
            return f"{code.co_filename}:{code.co_firstlineno}"
        return repr(coro)


async def _resolve(awaitable: Any) -> Any:
    return await awaitable


__all__ = ["PendingHandle", "PendingWorkTracker", "TrackedResult"]
