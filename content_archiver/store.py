"""Archive persistence: in-memory and JSON-file stores.

Both stores expose :meth:`ArchiveStore.atomic`, the unit of work the
archiver uses to persist field updates and a state transition together.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .models import ArchiveRecord, utc_now

logger = logging.getLogger(__name__)


class ArchiveStore:
    """Base class for archive persistence."""

    def get(self, archive_id: str) -> ArchiveRecord:
        raise NotImplementedError

    def save(self, record: ArchiveRecord) -> None:
        raise NotImplementedError

    def all(self) -> List[ArchiveRecord]:
        raise NotImplementedError

    def find_by_link(self, link_id: str) -> Optional[ArchiveRecord]:
        for record in self.all():
            if record.link_id == link_id:
                return record
        return None

    @contextmanager
    def atomic(self, record: ArchiveRecord) -> Iterator[ArchiveRecord]:
        """Persist all changes made to *record* inside the block, or none.

        On any exception the in-memory record is restored to its state at
        entry and nothing is written.
        """
        snapshot = record.model_copy(deep=True)
        try:
            yield record
            record.updated_at = utc_now()
            self.save(record)
        except BaseException:
            for name in type(record).model_fields:
                setattr(record, name, getattr(snapshot, name))
            raise


class InMemoryArchiveStore(ArchiveStore):
    """Keeps deep copies of records in a dict."""

    def __init__(self) -> None:
        self._records: Dict[str, ArchiveRecord] = {}

    def get(self, archive_id: str) -> ArchiveRecord:
        try:
            return self._records[archive_id].model_copy(deep=True)
        except KeyError:
            raise KeyError(f"Archive not found: {archive_id}") from None

    def save(self, record: ArchiveRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)

    def all(self) -> List[ArchiveRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]


def _write_json_atomic(path: Path, payload: str) -> None:
    """Write text atomically via tmp-file rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(payload, encoding="utf-8")
    tmp.replace(path)


class JsonArchiveStore(ArchiveStore):
    """One ``<archive_id>.json`` file per archive under *root*."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, archive_id: str) -> Path:
        if not archive_id or "/" in archive_id or "\\" in archive_id or archive_id.startswith("."):
            raise KeyError(f"Archive not found: {archive_id}")
        return self.root / f"{archive_id}.json"

    def get(self, archive_id: str) -> ArchiveRecord:
        path = self._path(archive_id)
        if not path.exists():
            raise KeyError(f"Archive not found: {archive_id}")
        return ArchiveRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def save(self, record: ArchiveRecord) -> None:
        path = self._path(record.id)
        _write_json_atomic(path, record.model_dump_json(indent=2))
        logger.debug("Saved archive %s to %s", record.id, path)

    def all(self) -> List[ArchiveRecord]:
        if not self.root.exists():
            return []
        records = []
        for path in sorted(self.root.glob("*.json")):
            try:
                records.append(ArchiveRecord.model_validate_json(path.read_text(encoding="utf-8")))
            except (ValueError, json.JSONDecodeError) as exc:
                logger.error("Skipping unreadable archive file %s: %s", path, exc)
        return records
