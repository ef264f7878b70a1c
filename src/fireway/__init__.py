"""
fireway - versioned data migrations for Firestore.

Migration scripts named ``<version>__<description>.py`` are applied in
version order, each one recorded in a history collection. Dry runs count
and log every write without sending it.

    >>> import asyncio
    >>> from fireway import migrate
    >>> stats = asyncio.run(migrate("./migrations", project_id="my-project"))
"""

__version__ = "1.1.0"

from fireway.errors import FirewayError
from fireway.pipeline import MigrationPipeline, RunPhase, migrate
from fireway.stats import RunStats

__all__ = [
    "FirewayError",
    "MigrationPipeline",
    "RunPhase",
    "RunStats",
    "__version__",
    "migrate",
]
