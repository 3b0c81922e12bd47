from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .schemas import PipelineResult


class OpsLogger:
    """JSONL metrics for discovery runs, one object per line.

    Two record kinds are written, both tagged ``cf_ops=1`` with a UTC ``ts``:

    - link records (``link_result``): final page, terminal state, number of
      hints tried, contact counts and the link's wall time
    - summary records (``run_summary``): stage counts of one run and its
      wall time, marked ``summary=true``

    Link workers share one instance, so writes go through a lock. Metrics are
    advisory; a failed write is dropped.
    """

    def __init__(self, file_path: Path, also_stdout: bool = False) -> None:
        self.file_path = Path(file_path)
        self.also_stdout = bool(also_stdout)
        self._lock = threading.Lock()
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            pass

    def link_result(self, result: "PipelineResult", duration_s: float) -> None:
        self.emit({
            "url": result.link.url,
            "page": result.page,
            "state": "error" if result.error else "resolved",
            "hints_tried": len(result.hints_tried or []),
            "counts": {
                "emails": len(result.contacts.emails),
                "phones": len(result.contacts.phones),
                "socials": len(result.contacts.socials),
            },
            "durations": {"total_s": round(duration_s, 4)},
        })

    def run_summary(self, query: str, *, wall_s: float, **counts: int) -> None:
        self.emit({"summary": True, "query": query, **counts, "durations": {"wall_s": round(wall_s, 2)}})

    def emit(self, record: Dict[str, Any]) -> None:
        record = {"cf_ops": 1, "ts": _now_iso(), **record}
        try:
            line = json.dumps(record, ensure_ascii=False)
        except (TypeError, ValueError):
            line = json.dumps({"cf_ops": 1, "ts": record["ts"], "_serialization_error": True, "record_str": str(record)})
        try:
            with self._lock:
                with self.file_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError:
            pass
        if self.also_stdout:
            print(line)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RunLog:
    """Append-only narrative log of one run or one link.

    Lines look like ``[2025-11-05T10:00:00.000Z] [https://x.ru/] message``.
    Each worker appends only to its own RunLog, so no locking is needed.
    """

    def __init__(self, scope: Optional[str] = None, *, echo: bool = True) -> None:
        self.scope = scope
        self.echo = bool(echo)
        self._lines: List[str] = []

    def __call__(self, message: str) -> str:
        return self.log(message)

    def log(self, message: str) -> str:
        prefix = f"[{_now_iso()}]"
        if self.scope:
            prefix += f" [{self.scope}]"
        line = f"{prefix} {message}"
        self._lines.append(line)
        if self.echo:
            print(line)
        return line

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)
