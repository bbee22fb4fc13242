"""
Structured JSON event log: append-only, one object per line (.jsonl).

Usage:
    from modules.observability.logger import StructuredLogger

    events = StructuredLogger()
    events.log("pipeline", "CANDIDATES_BUILT", {"count": 24, "degraded": False})

Events are written to  logs/<stream>.jsonl  relative to the backend/ root
(or STRUCTURED_LOGS_DIR).  Streams in use: "pipeline", "refresh".
Diagnostics go through stdlib logging; this is for replayable events.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import config

# logs/ directory lives alongside backend/main.py
_LOGS_DIR: Path = Path(__file__).resolve().parents[2] / "logs"


class StructuredLogger:
    """Thread-safe, append-only JSONL event writer."""

    def __init__(self, logs_dir: Path | str | None = None, enabled: Optional[bool] = None) -> None:
        self._logs_dir = Path(logs_dir or config.STRUCTURED_LOGS_DIR or _LOGS_DIR)
        self._enabled = config.STRUCTURED_LOGS_ENABLED if enabled is None else enabled
        self._lock = threading.Lock()
        self._handles: dict[str, Any] = {}  # stream -> file handle

    # ── public API ────────────────────────────────────────────────────────

    def log(self, stream: str, event_type: str, payload: dict) -> None:
        """Append one structured JSON record to ``<stream>.jsonl``."""
        if not self._enabled:
            return
        record = {
            "timestamp":  datetime.now(timezone.utc).isoformat(),
            "stream":     stream,
            "event_type": event_type,
            "payload":    payload,
        }
        line = json.dumps(record, default=str, ensure_ascii=False) + "\n"

        with self._lock:
            fh = self._handles.get(stream)
            if fh is None:
                fh = self._open(stream)
            fh.write(line)
            fh.flush()

    def read(self, stream: str, event_type: Optional[str] = None) -> list[dict]:
        """Return the records of one stream, optionally filtered by event type."""
        path = self._logs_dir / f"{stream}.jsonl"
        if not path.exists():
            return []
        with self._lock, open(path, "r", encoding="utf-8") as fh:
            records = [json.loads(line) for line in fh if line.strip()]
        if event_type:
            records = [r for r in records if r.get("event_type") == event_type]
        return records

    def close(self, stream: str | None = None) -> None:
        """Close one or all open file handles."""
        with self._lock:
            if stream:
                fh = self._handles.pop(stream, None)
                if fh:
                    fh.close()
            else:
                for fh in self._handles.values():
                    fh.close()
                self._handles.clear()

    # ── internals ─────────────────────────────────────────────────────────

    def _open(self, stream: str):  # noqa: ANN202
        os.makedirs(self._logs_dir, exist_ok=True)
        path = self._logs_dir / f"{stream}.jsonl"
        fh = open(path, "a", encoding="utf-8")  # noqa: SIM115
        self._handles[stream] = fh
        return fh
