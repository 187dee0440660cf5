"""Append-only JSONL audit trail for order transitions."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping


class JsonlStore:
    """Appends one JSON object per line to a single file."""

    def __init__(self, path: str | Path = "var/audit.jsonl") -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, record: Mapping[str, Any]) -> None:
        payload = {"recorded_at": datetime.now(timezone.utc).isoformat(), **record}
        line = json.dumps(payload, default=str)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read(self) -> Iterator[Dict[str, Any]]:
        if not self.path.exists():
            return iter(())
        with self.path.open("r", encoding="utf-8") as f:
            lines = [line for line in f if line.strip()]
        return (json.loads(line) for line in lines)


__all__ = ["JsonlStore"]
