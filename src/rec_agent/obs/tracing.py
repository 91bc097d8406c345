"""Per-turn tracing and summary metrics."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rec_agent.types import StageTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TurnRecord:
    trace_id: str
    timestamp_utc: str
    token: str
    user_text: str
    intent: str | None
    reply: str
    item_kind: str | None
    item_count: int
    is_exact_match: bool | None
    event_count: int
    output_tokens: int
    latency_ms: float
    error_code: str | None = None
    stage_traces: list[StageTrace] = field(default_factory=list)


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: dict[str, TurnRecord] = {}
        self._max_records = max_records

    def create_record(
        self,
        *,
        token: str,
        user_text: str,
        intent: str | None,
        reply: str,
        item_kind: str | None,
        item_count: int,
        is_exact_match: bool | None,
        event_count: int,
        latency_ms: float,
        error_code: str | None = None,
        stage_traces: list[StageTrace] | None = None,
    ) -> TurnRecord:
        trace_id = str(uuid.uuid4())
        record = TurnRecord(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            token=token,
            user_text=user_text,
            intent=intent,
            reply=reply,
            item_kind=item_kind,
            item_count=item_count,
            is_exact_match=is_exact_match,
            event_count=event_count,
            output_tokens=estimate_token_count(reply),
            latency_ms=latency_ms,
            error_code=error_code,
            stage_traces=list(stage_traces or []),
        )
        self._records[trace_id] = record
        while len(self._records) > self._max_records:
            self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> TurnRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnRecord]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "error_count": 0,
                "total_output_tokens": 0,
                "exact_match_rate": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        item_turns = [record for record in records if record.is_exact_match is not None]
        exact = sum(1 for record in item_turns if record.is_exact_match)

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "error_count": sum(1 for record in records if record.error_code),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "exact_match_rate": exact / len(item_turns) if item_turns else 0.0,
        }


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
