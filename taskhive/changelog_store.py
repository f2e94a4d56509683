"""
ChangeLog Event Log

Append-only persistence for status-change and review records.

CRITICAL CONSTRAINTS:
- APPEND-ONLY: records are never modified once written
- FSYNC: every write is fsync'd before append() returns
- NO BUSINESS VALIDATION: beyond a required actor (user_id)
- UNSORTED READS: list() returns file order; callers order by created_at
  with ties broken by sequence (insertion order)

The only removal path is purge_subject(), used when the task or project a
record describes is itself deleted.
"""

import asyncio
import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import StoreError, TaskhiveError, ValidationError
from .timeutil import isoformat, parse_datetime, utcnow

logger = logging.getLogger("changelog_store")

# task_id value marking a record as project-level rather than task-level
PROJECT_LEVEL_TASK_ID = 0

DEFAULT_LOG_FILE = Path(os.getenv("TASKHIVE_DATA_DIR", "data/taskhive")) / "changelogs.jsonl"


# -----------------------------------------------------------------------------
# ChangeLog Record (Frozen - Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ChangeLogRecord:
    """
    Immutable record of one meaningful change.

    old_status/new_status are free-text snapshots, not validated enums.
    remark carries review feedback in either the structured (JSON) or the
    legacy plain-text encoding.
    """
    user_id: Optional[int]
    description: str = ""
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    remark: Optional[str] = None
    project_id: Optional[int] = None
    task_id: Optional[int] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    sequence: Optional[int] = None

    @property
    def is_project_level(self) -> bool:
        return self.task_id == PROJECT_LEVEL_TASK_ID and self.project_id is not None

    def sort_key(self) -> Tuple[datetime, int, str]:
        """Total order for records of one subject: created_at, then insertion order."""
        created = self.created_at or datetime.min.replace(tzinfo=timezone.utc)
        sequence = self.sequence if _is_int(self.sequence) else -1
        return created, sequence, str(self.id) if self.id is not None else ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = isoformat(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeLogRecord":
        """
        Rebuild a stored record.

        Rows written by other tools are coerced to the record's field types:
        a garbled created_at or a non-integer sequence becomes None, an
        object remark is re-encoded as JSON text, and any other non-text
        field becomes empty.
        """
        try:
            created_at = parse_datetime(data.get("created_at"), "created_at")
        except ValidationError:
            created_at = None
        remark = data.get("remark")
        if isinstance(remark, (dict, list)):
            remark = json.dumps(remark)
        record_id = data.get("id")
        sequence = data.get("sequence")
        return cls(
            user_id=data.get("user_id"),
            description=_text(data.get("description")) or "",
            old_status=_text(data.get("old_status")),
            new_status=_text(data.get("new_status")),
            remark=_text(remark),
            project_id=data.get("project_id"),
            task_id=data.get("task_id"),
            id=str(record_id) if record_id is not None else None,
            created_at=created_at,
            sequence=sequence if _is_int(sequence) else None,
        )


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def build_record(
    user_id: Optional[int],
    description: Optional[str] = None,
    remark: Optional[str] = None,
    old_status: Optional[str] = None,
    new_status: Optional[str] = None,
    project_id: Optional[int] = None,
    task_id: Optional[int] = None,
) -> ChangeLogRecord:
    """Build an unsaved record. description falls back to remark."""
    return ChangeLogRecord(
        user_id=user_id,
        description=description or remark or "",
        old_status=old_status,
        new_status=new_status,
        remark=remark or None,
        project_id=project_id,
        task_id=task_id,
    )


# -----------------------------------------------------------------------------
# Routine Event Records
# -----------------------------------------------------------------------------
def task_created_record(task_id: int, project_id: int, user_id: int, task_name: str) -> ChangeLogRecord:
    return build_record(user_id, description=f'Task "{task_name}" created',
                        project_id=project_id, task_id=task_id)


def task_status_change_record(
    task_id: int, project_id: int, user_id: int, old_status: str, new_status: str
) -> ChangeLogRecord:
    return build_record(
        user_id,
        description=f"Task status changed from {old_status} to {new_status}",
        old_status=old_status,
        new_status=new_status,
        project_id=project_id,
        task_id=task_id,
    )


def task_updated_record(task_id: int, project_id: int, user_id: int, changes: str) -> ChangeLogRecord:
    return build_record(user_id, description=f"Task updated: {changes}",
                        project_id=project_id, task_id=task_id)


def task_moved_record(task_id: int, from_project_id: int, to_project_id: int, user_id: int) -> ChangeLogRecord:
    return build_record(
        user_id,
        description=f"Task moved from project {from_project_id} to project {to_project_id}",
        project_id=to_project_id,
        task_id=task_id,
    )


def project_created_record(project_id: int, user_id: int, project_name: str) -> ChangeLogRecord:
    return build_record(user_id, description=f'Project "{project_name}" created', project_id=project_id)


def project_status_change_record(
    project_id: int, user_id: int, old_status: str, new_status: str
) -> ChangeLogRecord:
    return build_record(
        user_id,
        description=f"Project status changed from {old_status} to {new_status}",
        old_status=old_status,
        new_status=new_status,
        project_id=project_id,
    )


# -----------------------------------------------------------------------------
# ChangeLog Store (Append-Only Persistence)
# -----------------------------------------------------------------------------
class ChangeLogStore:
    """
    JSONL-backed event store.

    Appends are serialised by an asyncio.Lock so sequence numbers are unique
    and append_if_absent() is atomic with respect to other appends made
    through the same store instance.
    """

    def __init__(self, log_file: Optional[Path] = None):
        self._log_file = Path(log_file) if log_file else DEFAULT_LOG_FILE
        self._lock = asyncio.Lock()
        self._next_sequence: Optional[int] = None

    @property
    def log_file(self) -> Path:
        return self._log_file

    # -------------------------------------------------------------------------
    # Write Operations (Append-Only)
    # -------------------------------------------------------------------------

    async def append(self, record: ChangeLogRecord) -> ChangeLogRecord:
        """Persist a record, assigning id, created_at and sequence."""
        async with self._lock:
            return self._append_locked(record)

    async def append_if_absent(
        self,
        record: ChangeLogRecord,
        predicate: Callable[[ChangeLogRecord], bool],
    ) -> Tuple[ChangeLogRecord, bool]:
        """
        Guarded append: write `record` only if no stored record matches `predicate`.

        Returns (record, created). When a match exists the earliest matching
        stored record is returned with created=False.
        """
        async with self._lock:
            matches = [r for r in self._load_records() if predicate(r)]
            if matches:
                existing = min(matches, key=ChangeLogRecord.sort_key)
                logger.info(f"Guarded append skipped: record {existing.id} already present")
                return existing, False
            return self._append_locked(record), True

    async def purge_subject(self, task_ids: Iterable[int] = (), project_id: Optional[int] = None) -> int:
        """
        Remove every record of deleted subjects.

        Drops records whose task_id is in `task_ids`, and the project-level
        records (no task) of `project_id`. History of a task moved to another
        project survives deletion of its old project. Returns the number of
        records removed.
        """
        doomed_tasks = set(task_ids)
        async with self._lock:
            records = self._load_records()
            kept = [
                r for r in records
                if r.task_id not in doomed_tasks
                and not (
                    project_id is not None
                    and r.project_id == project_id
                    and r.task_id in (None, PROJECT_LEVEL_TASK_ID)
                )
            ]
            removed = len(records) - len(kept)
            if removed:
                self._rewrite(kept)
                logger.info(f"Purged {removed} changelog record(s)")
            return removed

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def list(
        self,
        task_id: Optional[int] = None,
        project_id: Optional[int] = None,
        user_id: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[ChangeLogRecord]:
        """Records matching every given filter, in file order (unsorted)."""
        results = []
        for record in self._load_records():
            if task_id is not None and record.task_id != task_id:
                continue
            if project_id is not None and record.project_id != project_id:
                continue
            if user_id is not None and record.user_id != user_id:
                continue
            if since is not None and (record.created_at is None or record.created_at < since):
                continue
            if until is not None and (record.created_at is None or record.created_at > until):
                continue
            results.append(record)
        return results

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _append_locked(self, record: ChangeLogRecord) -> ChangeLogRecord:
        if record.user_id is None:
            raise ValidationError("user_id", "Changelog records require an actor (user_id)")

        if self._next_sequence is None:
            existing = [r.sequence for r in self._load_records() if r.sequence is not None]
            self._next_sequence = max(existing, default=0) + 1

        now = utcnow()
        stored = replace(
            record,
            id=record.id or f"chg-{now.strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}",
            created_at=record.created_at or now,
            sequence=self._next_sequence,
        )

        try:
            self._append_line(stored.to_dict())
        except OSError as e:
            logger.error(f"Failed to append changelog record: {e}")
            raise StoreError("append_changelog", e)

        self._next_sequence += 1
        logger.info(
            f"Changelog {stored.id}: task={stored.task_id} project={stored.project_id} "
            f"{stored.old_status} -> {stored.new_status}"
        )
        return stored

    def _append_line(self, data: Dict[str, Any]) -> None:
        self._log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self._log_file, "a") as f:
            f.write(json.dumps(data) + "\n")
            f.flush()
            os.fsync(f.fileno())

    def _rewrite(self, records: List[ChangeLogRecord]) -> None:
        temp_file = self._log_file.with_suffix(".tmp")
        try:
            with open(temp_file, "w") as f:
                for record in records:
                    f.write(json.dumps(record.to_dict()) + "\n")
                f.flush()
                os.fsync(f.fileno())
            temp_file.replace(self._log_file)
        except OSError as e:
            logger.error(f"Failed to rewrite changelog: {e}")
            raise StoreError("purge_changelog", e)

    def _load_records(self) -> List[ChangeLogRecord]:
        if not self._log_file.exists():
            return []

        records = []
        try:
            with open(self._log_file, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(ChangeLogRecord.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, RecursionError, TypeError, AttributeError, TaskhiveError):
                        logger.warning(f"Skipping malformed changelog line in {self._log_file}")
                        continue
        except OSError as e:
            raise StoreError("read_changelog", e)
        return records
