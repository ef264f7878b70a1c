"""History collection access.

The history is a Firestore collection with one document per attempted
migration, keyed ``<installed_rank>-<version>-<description>`` so the console lists
documents in the order they were applied.

The store reads and writes; deciding what to run and which rank comes next
is the pipeline's job.
"""

from __future__ import annotations

import getpass
import hashlib
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from fireway.logging import get_logger
from fireway.scanner import MigrationFile

logger = get_logger(__name__)


@dataclass(frozen=True)
class HistoryRecord:
    """Record of a single attempted migration."""

    installed_rank: int
    version: str
    description: str
    script: str
    type: str
    checksum: str
    installed_by: str
    installed_on: datetime
    execution_time: int
    success: bool

    @property
    def document_id(self) -> str:
        return f"{self.installed_rank}-{self.version}-{self.description}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryRecord:
        return cls(
            installed_rank=int(data["installed_rank"]),
            version=str(data["version"]),
            description=data.get("description", ""),
            script=data.get("script", ""),
            type=data.get("type", ""),
            checksum=data.get("checksum", ""),
            installed_by=data.get("installed_by", ""),
            installed_on=data.get("installed_on"),
            execution_time=int(data.get("execution_time") or 0),
            success=bool(data.get("success")),
        )

    @classmethod
    def for_file(
        cls,
        file: MigrationFile,
        *,
        installed_rank: int,
        started: datetime,
        finished: datetime,
        success: bool,
    ) -> HistoryRecord:
        """Build the record for *file* after it ran from *started* to *finished*."""
        return cls(
            installed_rank=installed_rank,
            version=str(file.version),
            description=file.description,
            script=file.filename,
            type=file.type,
            checksum=checksum(file.read_bytes()),
            installed_by=getpass.getuser(),
            installed_on=started,
            execution_time=int((finished - started).total_seconds() * 1000),
            success=success,
        )


def checksum(content: bytes) -> str:
    """MD5 hex digest of a migration file's raw bytes."""
    return hashlib.md5(content).hexdigest()


class HistoryStore:
    """Reads and appends history records.

    Parameters
    ----------
    client
        Firestore client (normally the run's ``InterceptedClient`` so that
        dry runs never persist history).
    collection
        Name of the history collection.
    """

    def __init__(self, client: Any, collection: str = "fireway") -> None:
        self._client = client
        self._collection = collection

    @property
    def collection(self) -> str:
        return self._collection

    async def get_latest(self) -> HistoryRecord | None:
        """Return the record with the greatest ``installed_rank``, if any."""
        snapshots = await (
            self._client.collection(self._collection)
            .order_by("installed_rank", direction="DESCENDING")
            .limit(1)
            .get()
        )
        for snapshot in snapshots:
            return HistoryRecord.from_dict(snapshot.to_dict())
        return None

    async def append(self, record: HistoryRecord) -> None:
        """Write *record* under its document id."""
        await (
            self._client.collection(self._collection)
            .document(record.document_id)
            .set(record.to_dict())
        )
        logger.debug(
            "history.appended",
            document_id=record.document_id,
            success=record.success,
        )


__all__ = ["HistoryRecord", "HistoryStore", "checksum"]
