"""The object passed to every migration's ``migrate(ctx)`` entry point.

Example migration (``v1.1.0__backfill_roles.py``)::

    async def migrate(ctx):
        users = ctx.firestore.collection("users")
        async for snapshot in users.where("role", "==", None).stream():
            await snapshot.reference.update({
                "role": "member",
                "updated_at": ctx.SERVER_TIMESTAMP,
            })
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from google.api_core.datetime_helpers import DatetimeWithNanoseconds
from google.cloud.firestore import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    Increment,
)
from google.cloud.firestore_v1.field_path import FieldPath

from fireway.interceptor import InterceptedClient


@dataclass(frozen=True)
class MigrationContext:
    """Collaborators and helpers available to migration code.

    Attributes:
        firestore: Intercepted Firestore client; writes are counted and
            suppressed during a dry run
        search: Search index client
        secrets: Secret Manager client
        project_id: Target project
        auth: Firebase Auth client of the target project
        dry_run: True when writes are simulated
    """

    firestore: InterceptedClient
    search: Any
    secrets: Any
    project_id: str | None
    auth: Any
    dry_run: bool

    DELETE_FIELD: ClassVar[Any] = DELETE_FIELD
    SERVER_TIMESTAMP: ClassVar[Any] = SERVER_TIMESTAMP
    FieldPath: ClassVar[type] = FieldPath
    Increment: ClassVar[type] = Increment
    ArrayUnion: ClassVar[type] = ArrayUnion
    ArrayRemove: ClassVar[type] = ArrayRemove
    Timestamp: ClassVar[type] = DatetimeWithNanoseconds


__all__ = ["MigrationContext"]
