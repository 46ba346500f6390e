"""
Stream-level checks and summaries over wire records.

check_stream validates every record against the schema and verifies that
each user's #time never goes backwards; summarize gives event counts, user
count and the covered time range.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .errors import SchemaViolation, ViolationCode
from .validator import validate_record


@dataclass
class StreamReport:
    total_events: int
    total_users: int
    type_counts: Dict[str, int]
    event_counts: Dict[str, int]
    time_start: Optional[pd.Timestamp]
    time_end: Optional[pd.Timestamp]
    violations: List[Tuple[int, SchemaViolation]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


def to_frame(records: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    df = pd.DataFrame.from_records(list(records))
    if df.empty:
        return df
    df["#time"] = pd.to_datetime(df["#time"], utc=True, errors="coerce")
    return df


def check_stream(records: Iterable[Mapping[str, Any]]) -> List[Tuple[int, SchemaViolation]]:
    """(record index, violation) for every invalid record and every per-user time regression."""
    problems: List[Tuple[int, SchemaViolation]] = []
    last_seen: Dict[Tuple[Any, Any], pd.Timestamp] = {}
    for i, record in enumerate(records):
        try:
            event = validate_record(record)
        except SchemaViolation as violation:
            problems.append((i, violation))
            continue
        prev = last_seen.get(event.user_id)
        if prev is not None and event.time < prev:
            problems.append((i, SchemaViolation(
                ViolationCode.TIME_ORDER, "#time", f"{event.user_id} went back in time: {event.time} < {prev}"
            )))
        else:
            last_seen[event.user_id] = event.time
    return problems


def summarize(records: Iterable[Mapping[str, Any]]) -> StreamReport:
    records = list(records)
    violations = check_stream(records)
    df = to_frame(records)
    if df.empty:
        return StreamReport(0, 0, {}, {}, None, None, violations)

    type_counts = df.groupby("#type").size().to_dict()
    event_counts: Dict[str, int] = {}
    if "#event_name" in df.columns:
        event_counts = df.dropna(subset=["#event_name"]).groupby("#event_name").size().to_dict()
    users = df[["#account_id", "#distinct_id"]].drop_duplicates()

    return StreamReport(
        total_events=len(df),
        total_users=len(users),
        type_counts={str(k): int(v) for k, v in type_counts.items()},
        event_counts={str(k): int(v) for k, v in event_counts.items()},
        time_start=df["#time"].min(),
        time_end=df["#time"].max(),
        violations=violations,
    )
