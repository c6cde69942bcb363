"""Structured logging and observability helpers."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO


@dataclass(slots=True)
class StructuredLogger:
    """Keeps structured records and echoes a readable line for each.

    ``stream=None`` keeps records only, which is what tests use.
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    stream: TextIO | None = None

    @classmethod
    def to_stderr(cls) -> StructuredLogger:
        return cls(stream=sys.stderr)

    def log(
        self,
        *,
        operation: str,
        target: str | None,
        phase: str | None,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "target": target,
            "phase": phase,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        self.records.append(record)
        if self.stream is not None:
            self.stream.write(_render(record))
            self.stream.flush()

    def records_for_target(self, target: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("target") == target]

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path


def _render(record: dict[str, Any]) -> str:
    prefix = "ERR" if record["level"] == "error" else record["level"].upper()
    lines = [f"{prefix}: {record['message']}"]
    for key, value in (record.get("extra") or {}).items():
        lines.append(f"      ...{key}: {value}")
    return "\n".join(lines) + "\n"
