"""Migration execution pipeline.

Scans a migrations directory, compares it with the history collection and
applies the migrations newer than the latest recorded one, in version
order, one at a time. Each attempt is recorded; the run stops at the first
failure, and a failed record blocks every later run until an operator
repairs the target.

Phases::

    SCANNING → AUTHENTICATING → READING_HISTORY
        → (PREPARING → RUNNING → RECORDING)*  → FINISHED
    any phase ─────────────────────────────────→ ABORTED

Example::

    import asyncio
    from fireway import migrate

    stats = asyncio.run(migrate("./migrations", project_id="my-project", dry_run=True))
    print(stats.summary())
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from fireway.clients import Collaborators, create_collaborators
from fireway.context import MigrationContext
from fireway.errors import (
    ConfigError,
    CorruptedHistoryError,
    CredentialError,
    FirewayError,
    InterceptionError,
    MigrationFailedError,
    UnreadableHistoryError,
)
from fireway.history import HistoryRecord, HistoryStore
from fireway.interceptor import InterceptedClient, RunRegistry, RunState
from fireway.loader import load_migration, load_plugin
from fireway.logging import LogContext, get_logger
from fireway.scanner import MigrationFile, scan_directory
from fireway.settings import FirewaySettings, get_settings
from fireway.stats import RunStats
from fireway.tracker import PendingWorkTracker
from fireway.versioning import coerce_version

logger = get_logger(__name__)

CollaboratorFactory = Callable[..., Awaitable[Collaborators]]


class RunPhase(str, Enum):
    SCANNING = "scanning"
    AUTHENTICATING = "authenticating"
    READING_HISTORY = "reading_history"
    PREPARING = "preparing"
    RUNNING = "running"
    RECORDING = "recording"
    FINISHED = "finished"
    ABORTED = "aborted"


def select_pending(
    files: Iterable[MigrationFile], latest: HistoryRecord | None
) -> list[MigrationFile]:
    """Migrations newer than *latest*, sorted by version.

    Raises:
        UnreadableHistoryError: *latest* carries a version that does not coerce
    """
    pending = list(files)
    if latest is not None:
        applied = coerce_version(latest.version)
        if applied is None:
            raise UnreadableHistoryError(latest.version, latest.script)
        pending = [file for file in pending if file.version > applied]
    return sorted(pending, key=lambda file: file.version)


class MigrationPipeline:
    """Applies pending migrations from a directory.

    Parameters
    ----------
    path
        Migrations directory; relative paths resolve against the cwd.
    project_id
        Target project. Required unless ``collaborators`` is given.
    dry_run
        Count and log writes without sending them.
    debug
        Log discovery, every intercepted write and the summary.
    force_wait
        Wait for tasks a migration left running instead of warning.
    require
        Module path or dotted name to load before anything else.
    collaborators
        Pre-built clients. The pipeline never closes these.
    app
        Firebase app to reuse when the pipeline builds its own clients.
    settings
        Overrides ``get_settings()``.
    collaborator_factory
        Builds clients when ``collaborators`` is not given.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        project_id: str | None = None,
        dry_run: bool = False,
        debug: bool = False,
        force_wait: bool = False,
        require: str | None = None,
        collaborators: Collaborators | None = None,
        app: Any = None,
        settings: FirewaySettings | None = None,
        collaborator_factory: CollaboratorFactory = create_collaborators,
    ) -> None:
        self.path = path
        self.project_id = project_id
        self.dry_run = dry_run
        self.debug = debug
        self.force_wait = force_wait
        self.require = require
        self.settings = settings or get_settings()
        self.stats = RunStats()
        self.phase: RunPhase | None = None
        self.phases: list[RunPhase] = []
        self._collaborators = collaborators
        self._app = app
        self._collaborator_factory = collaborator_factory

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> RunStats:
        """Apply all pending migrations and return the run's counters.

        Raises:
            FirewayError: the run aborted; see ``fireway.errors``
        """
        async with LogContext(project_id=self.project_id, dry_run=self.dry_run):
            try:
                return await self._run()
            except BaseException as exc:
                self._enter(RunPhase.ABORTED)
                if isinstance(exc, FirewayError):
                    logger.error("migration.aborted", **exc.to_dict())
                raise

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self) -> RunStats:
        if self.require:
            load_plugin(self.require)

        self._enter(RunPhase.SCANNING)
        files = scan_directory(self.path, verbose=self.debug)
        self.stats.scanned_files = len(files)
        self._verbose("migration.scanned", count=self.stats.scanned_files)

        self._enter(RunPhase.AUTHENTICATING)
        collaborators, owned = await self._connect()
        try:
            registry = RunRegistry()
            client = self._intercept(collaborators, registry)
            try:
                await self._apply(files, client, collaborators)
            finally:
                registry.release(client.key)
        finally:
            if owned:
                await collaborators.aclose()

        self._enter(RunPhase.FINISHED)
        self._verbose("migration.finished", **self.stats.to_dict())
        return self.stats

    async def _connect(self) -> tuple[Collaborators, bool]:
        if self._collaborators is not None:
            return self._collaborators, False
        if not self.project_id:
            raise ConfigError("A project id is required to connect to Firestore")
        try:
            collaborators = await self._collaborator_factory(
                self.project_id, self.settings, app=self._app
            )
        except Exception as exc:
            raise CredentialError(
                f"Could not acquire credentials for {self.project_id}: {exc}", cause=exc
            ).with_context(project_id=self.project_id) from exc
        return collaborators, True

    def _intercept(self, collaborators: Collaborators, registry: RunRegistry) -> InterceptedClient:
        try:
            client = InterceptedClient(collaborators.firestore, registry)
            registry.register(
                client.key,
                RunState(stats=self.stats, dry_run=self.dry_run, verbose=self.debug),
            )
        except InterceptionError:
            raise
        except Exception as exc:
            raise InterceptionError(f"Could not intercept Firestore writes: {exc}", cause=exc) from exc
        if self.dry_run:
            self._verbose("firestore.read_only")
        return client

    async def _apply(
        self,
        files: list[MigrationFile],
        client: InterceptedClient,
        collaborators: Collaborators,
    ) -> None:
        self._enter(RunPhase.READING_HISTORY)
        history = HistoryStore(client, self.settings.history_collection)
        latest = await history.get_latest()
        if latest is not None and not latest.success:
            raise CorruptedHistoryError(latest.version, latest.script)

        pending = select_pending(files, latest)
        installed_rank = latest.installed_rank if latest is not None else -1
        self._verbose("migration.pending", count=len(pending))

        context = MigrationContext(
            firestore=client,
            search=collaborators.search,
            secrets=collaborators.secrets,
            project_id=self.project_id,
            auth=collaborators.auth,
            dry_run=self.dry_run,
        )

        for file in pending:
            self.stats.executed_files += 1
            self._verbose("migration.running", filename=file.filename)

            self._enter(RunPhase.PREPARING)
            entry = load_migration(file)

            self._enter(RunPhase.RUNNING)
            tracker = PendingWorkTracker(
                file.path,
                force_wait=self.force_wait,
                grace_period=self.settings.grace_period,
            )
            started = datetime.now(UTC)
            outcome = await tracker.run(entry, context)
            finished = datetime.now(UTC)

            self._enter(RunPhase.RECORDING)
            self._verbose("migration.recording", filename=file.filename)
            installed_rank += 1
            record = HistoryRecord.for_file(
                file,
                installed_rank=installed_rank,
                started=started,
                finished=finished,
                success=outcome.success,
            )
            with self.stats.freeze():
                await history.append(record)

            if not outcome.success:
                raise MigrationFailedError(cause=outcome.error).with_context(
                    filename=file.filename, version=str(file.version)
                )

    def _enter(self, phase: RunPhase) -> None:
        self.phase = phase
        self.phases.append(phase)
        logger.debug("pipeline.phase", phase=phase.value)

    def _verbose(self, event: str, **fields: Any) -> None:
        if self.debug:
            logger.info(event, **fields)


async def migrate(
    path: str | Path,
    *,
    project_id: str | None = None,
    dry_run: bool = False,
    debug: bool = False,
    force_wait: bool = False,
    require: str | None = None,
    collaborators: Collaborators | None = None,
    app: Any = None,
    settings: FirewaySettings | None = None,
) -> RunStats:
    """Apply pending migrations in *path*; see ``MigrationPipeline``."""
    pipeline = MigrationPipeline(
        path,
        project_id=project_id,
        dry_run=dry_run,
        debug=debug,
        force_wait=force_wait,
        require=require,
        collaborators=collaborators,
        app=app,
        settings=settings,
    )
    return await pipeline.run()


__all__ = ["MigrationPipeline", "RunPhase", "migrate", "select_pending"]
