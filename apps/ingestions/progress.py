"""
Import progress snapshots keyed by an opaque session id.

The last snapshot of each session lives in the Django cache so that web and
worker processes see the same state. While an import runs the snapshot is kept
for PROGRESS_ACTIVE_TIMEOUT_SECONDS; once it reaches a terminal status it is
kept for PROGRESS_RETENTION_SECONDS and then expires.
"""
import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from django.core.cache import cache as default_cache

from apps.ingestions.conf import import_setting

logger = logging.getLogger(__name__)

STATUS_PROCESSING = 'processing'
STATUS_COMPLETED = 'completed'
STATUS_ERROR = 'error'
TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_ERROR}

CACHE_KEY_PREFIX = 'product-import-progress'


def new_session_id() -> str:
    return secrets.token_hex(16)


@dataclass
class ImportProgress:
    processed: int = 0
    total: int = 0
    success_count: int = 0
    failed_count: int = 0
    percentage: int = 0
    status: str = STATUS_PROCESSING
    message: str = ''
    failed_rows: List[Dict] = field(default_factory=list)
    summary: Optional[Dict] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'ImportProgress':
        return cls(**data)


class ProgressTracker:
    """Publishes and replays import progress snapshots."""

    def __init__(self, cache=None, retention_seconds: int = 300, active_timeout_seconds: int = 3600):
        self.cache = cache if cache is not None else default_cache
        self.retention_seconds = retention_seconds
        self.active_timeout_seconds = active_timeout_seconds

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{CACHE_KEY_PREFIX}:{session_id}"

    def start(self, session_id: str, message: str = 'Import started') -> ImportProgress:
        progress = ImportProgress(message=message)
        self.publish(session_id, progress)
        return progress

    def publish(self, session_id: str, progress: ImportProgress) -> None:
        timeout = self.retention_seconds if progress.is_terminal else self.active_timeout_seconds
        self.cache.set(self._key(session_id), progress.to_dict(), timeout=timeout)
        if progress.is_terminal:
            logger.info(f"Import {session_id} {progress.status}: {progress.message}")

    def snapshot(self, session_id: str) -> Optional[ImportProgress]:
        data = self.cache.get(self._key(session_id))
        if data is None:
            return None
        return ImportProgress.from_dict(data)

    def subscribe(self, session_id: str, poll_interval: float = 0.5,
                  sleep: Callable[[float], None] = time.sleep) -> Iterator[ImportProgress]:
        """
        Yield the last known snapshot immediately, then every change, and stop
        after a terminal snapshot. Stops too if the session expires or never existed.
        """
        last = None
        while True:
            current = self.snapshot(session_id)
            if current is None:
                return
            data = current.to_dict()
            if data != last:
                last = data
                yield current
            if current.is_terminal:
                return
            sleep(poll_interval)

    def stream_events(self, session_id: str, poll_interval: float = 0.5,
                      sleep: Callable[[float], None] = time.sleep) -> Iterator[str]:
        """Server-sent events rendering of subscribe()."""
        found = False
        for progress in self.subscribe(session_id, poll_interval=poll_interval, sleep=sleep):
            found = True
            payload = progress.to_dict()
            yield f"event: progress\ndata: {json.dumps(payload)}\n\n"
        if not found:
            yield f"event: error\ndata: {json.dumps({'error': 'Import session not found or expired'})}\n\n"


def configured_tracker() -> ProgressTracker:
    """Tracker with the PRODUCT_IMPORT progress timeouts."""
    return ProgressTracker(
        retention_seconds=import_setting('PROGRESS_RETENTION_SECONDS'),
        active_timeout_seconds=import_setting('PROGRESS_ACTIVE_TIMEOUT_SECONDS'),
    )
