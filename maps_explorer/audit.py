from __future__ import annotations

import json
import time
from collections.abc import Iterable
from pathlib import Path
from queue import Empty, Full, Queue
from threading import Lock, Thread
from typing import Any

REDACTED = "[redacted]"

DEFAULT_REDACT_KEYS = frozenset(
    {
        "access_token",
        "api_key",
        "apikey",
        "authorization",
        "client_secret",
        "subscription-key",
        "token",
    }
)

_STOP = object()


class JsonlAuditLogger:
    """Writes proxy events to a JSON-lines file from a background thread.

    ``log`` never blocks the request path. When the pending queue is full the
    event is counted instead of written, and the writer emits an
    ``audit_logger_dropped_records`` line the next time it catches up.
    Values stored under any of ``redact_keys`` (matched case-insensitively, at
    any depth) are replaced before the event is queued.
    """

    def __init__(
        self,
        path: str,
        *,
        enabled: bool = True,
        max_pending: int = 4096,
        redact_keys: Iterable[str] = DEFAULT_REDACT_KEYS,
    ) -> None:
        self.path = Path(path)
        self.enabled = enabled
        self.redact_keys = frozenset(key.lower() for key in redact_keys)
        self._pending: Queue[Any] = Queue(maxsize=max_pending)
        self._dropped = 0
        self._dropped_lock = Lock()
        self._writer: Thread | None = None
        if enabled:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._writer = Thread(target=self._run, name="maps-audit-writer", daemon=True)
            self._writer.start()

    @property
    def dropped_records(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def redact(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                key: REDACTED if str(key).lower() in self.redact_keys else self.redact(item)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self.redact(item) for item in value]
        return value

    def encode(self, event: dict[str, Any]) -> str:
        record = {"ts": int(time.time()), **self.redact(event)}
        return json.dumps(record, ensure_ascii=True, separators=(",", ":"), default=str)

    def log(self, event: dict[str, Any]) -> None:
        if self._writer is None:
            return
        try:
            self._pending.put_nowait(self.encode(event))
        except Full:
            with self._dropped_lock:
                self._dropped += 1

    def close(self) -> None:
        writer = self._writer
        if writer is None:
            return
        self._writer = None
        self._pending.put(_STOP)
        writer.join(timeout=2.0)

    def _take_dropped(self) -> int:
        with self._dropped_lock:
            dropped, self._dropped = self._dropped, 0
        return dropped

    def _next_batch(self) -> tuple[list[str], bool]:
        # Block for one item, then take whatever else is already pending.
        items = [self._pending.get()]
        while True:
            try:
                items.append(self._pending.get_nowait())
            except Empty:
                break
        stopping = any(item is _STOP for item in items)
        return [item for item in items if item is not _STOP], stopping

    def _run(self) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            stopping = False
            while not stopping:
                lines, stopping = self._next_batch()
                dropped = self._take_dropped()
                if dropped:
                    notice = {"event": "audit_logger_dropped_records", "dropped_count": dropped}
                    lines.append(self.encode(notice))
                if lines:
                    handle.write("\n".join(lines) + "\n")
                    handle.flush()
