"""
Session Recording
Live serve-session state, immutable session records, and the JSON-file
persistence sink they are written to.
"""

import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from config import get_thresholds
from exceptions import SessionNotFound, SessionPersistenceError, ValidationError
from .metric_extractor import MetricVector, MetricsHistory

logger = logging.getLogger(__name__)


SESSION_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class ServeSession:
    """Mutable per-session state the pipeline updates every accepted tick"""
    metrics: MetricVector = field(default_factory=MetricVector)
    similarity: int = 0
    phase: str = "preparation"
    history: MetricsHistory = field(default_factory=MetricsHistory)

    def reset(self) -> None:
        self.metrics = MetricVector()
        self.similarity = 0
        self.phase = "preparation"
        self.history.clear()


@dataclass(frozen=True)
class SessionRecord:
    """Snapshot of a session at save time. Never modified afterwards."""
    timestamp: str  # ISO 8601, UTC
    final_metrics: MetricVector
    final_similarity: int
    history_snapshot: Tuple[MetricVector, ...]
    analysis_type: str
    approximate_duration_seconds: float
    phase: str = "preparation"

    @property
    def created_at_ms(self) -> int:
        return int(datetime.fromisoformat(self.timestamp).timestamp() * 1000)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "final_metrics": self.final_metrics.to_dict(),
            "final_similarity": self.final_similarity,
            "history_snapshot": [v.to_dict() for v in self.history_snapshot],
            "analysis_type": self.analysis_type,
            "approximate_duration_seconds": self.approximate_duration_seconds,
            "phase": self.phase,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "SessionRecord":
        return cls(
            timestamp=data["timestamp"],
            final_metrics=MetricVector.from_dict(data["final_metrics"]),
            final_similarity=int(data["final_similarity"]),
            history_snapshot=tuple(MetricVector.from_dict(v) for v in data["history_snapshot"]),
            analysis_type=data["analysis_type"],
            approximate_duration_seconds=float(data["approximate_duration_seconds"]),
            phase=data.get("phase", "preparation"),
        )


# =============================================================================
# Persistence
# =============================================================================

class SessionStore(ABC):
    """
    Output boundary for session records.

    `save` must be idempotent: saving the same record twice yields the same
    key and a single index entry.
    """

    @abstractmethod
    def save(self, record: SessionRecord) -> str:
        """Persist a record and its index entry. Returns the session key."""

    @abstractmethod
    def load(self, key: str) -> SessionRecord:
        pass

    @abstractmethod
    def list_index(self) -> List[Dict]:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class JSONSessionStore(SessionStore):
    """
    One JSON file per session plus a lightweight index file:

        <dir>/serve-session-<ms>.json
        <dir>/serve-sessions.json   [{key, timestamp, similarity, phase}, ...]
    """

    def __init__(self, directory: str):
        cfg = get_thresholds().session
        self.directory = Path(directory)
        self.key_prefix = cfg.key_prefix
        self.index_path = self.directory / cfg.index_name
        # Serializes key resolution and the index read-modify-write
        self._lock = threading.Lock()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SessionPersistenceError(f"Cannot create session directory: {e}")

    def _record_path(self, key: str) -> Path:
        if not SESSION_KEY_PATTERN.match(key):
            raise ValidationError(f"Invalid session key: {key}", field="key")
        return self.directory / f"{key}.json"

    def _write_json(self, path: Path, data, key: Optional[str] = None) -> None:
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self.directory, prefix=f".{path.stem}-", suffix=".tmp", delete=False
            ) as f:
                tmp_path = f.name
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise SessionPersistenceError(f"Failed to write {path.name}: {e}", session_key=key)

    def _read_index(self) -> List[Dict]:
        if not self.index_path.exists():
            return []
        try:
            with open(self.index_path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SessionPersistenceError(f"Failed to read session index: {e}")

    def _resolve_key(self, record: SessionRecord, data: Dict) -> str:
        base = f"{self.key_prefix}{record.created_at_ms}"
        key, suffix = base, 0
        # Distinct records saved within the same millisecond get a suffix
        while True:
            path = self._record_path(key)
            if not path.exists():
                return key
            try:
                with open(path) as f:
                    if json.load(f) == data:
                        return key
            except (OSError, json.JSONDecodeError) as e:
                raise SessionPersistenceError(f"Failed to read {path.name}: {e}", session_key=key)
            suffix += 1
            key = f"{base}-{suffix}"

    def save(self, record: SessionRecord) -> str:
        data = record.to_dict()
        with self._lock:
            key = self._resolve_key(record, data)
            self._write_json(self._record_path(key), data, key)

            index = self._read_index()
            if not any(entry.get("key") == key for entry in index):
                index.append({
                    "key": key,
                    "timestamp": record.timestamp,
                    "similarity": record.final_similarity,
                    "phase": record.phase,
                })
                self._write_json(self.index_path, index, key)

        logger.info(f"Session saved: {key}", extra={"similarity": record.final_similarity})
        return key

    def load(self, key: str) -> SessionRecord:
        path = self._record_path(key)
        if not path.exists():
            raise SessionNotFound(key)
        try:
            with open(path) as f:
                return SessionRecord.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError) as e:
            raise SessionPersistenceError(f"Failed to read session: {e}", session_key=key)

    def list_index(self) -> List[Dict]:
        with self._lock:
            return self._read_index()

    def delete(self, key: str) -> None:
        path = self._record_path(key)
        with self._lock:
            if not path.exists():
                raise SessionNotFound(key)
            try:
                path.unlink()
            except OSError as e:
                raise SessionPersistenceError(f"Failed to delete session: {e}", session_key=key)

            index = [entry for entry in self._read_index() if entry.get("key") != key]
            self._write_json(self.index_path, index, key)
        logger.info(f"Session deleted: {key}")


# =============================================================================
# Recorder
# =============================================================================

def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecorder:
    """
    Snapshots a ServeSession on demand and hands it to a SessionStore.

    Persistence errors propagate to the caller so a save can be retried.
    """

    def __init__(
        self,
        session: ServeSession,
        store: SessionStore,
        now: Callable[[], datetime] = _utc_now
    ):
        cfg = get_thresholds()
        self.session = session
        self.store = store
        self._now = now
        self.snapshot_size = cfg.history.snapshot_size
        self.analysis_type = cfg.session.analysis_type
        self.seconds_per_sample = cfg.session.seconds_per_sample
        self.last_key: Optional[str] = None

    def build_record(self) -> SessionRecord:
        history = self.session.history
        return SessionRecord(
            timestamp=self._now().isoformat(),
            final_metrics=replace(self.session.metrics),
            final_similarity=self.session.similarity,
            history_snapshot=tuple(replace(v) for v in history.snapshot(self.snapshot_size)),
            analysis_type=self.analysis_type,
            # Derived from the extraction interval, not wall-clock time
            approximate_duration_seconds=round(len(history) * self.seconds_per_sample, 3),
            phase=self.session.phase,
        )

    def save(self) -> SessionRecord:
        record = self.build_record()
        self.last_key = self.store.save(record)
        return record

    def reset(self) -> None:
        self.session.reset()
        self.last_key = None
