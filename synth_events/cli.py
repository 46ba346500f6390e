"""
Command line entry point.

Examples:
    synth-events --n_users 100 --events_per_user 20 --out data/events.jsonl
    synth-events --config session.yaml --shards 4 --summary
    synth-events --config session.json --ingest_url http://localhost:8080/ingest
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from .config import SessionConfig, TrackEventSpec, load_config
from .errors import GenerationConfigError, SynthEventsError
from .report import summarize
from .session import GenerationSession, run_sharded
from .sinks import BatchSink, HttpSink, JsonlSink, Sink

logger = logging.getLogger(__name__)


# -----------------------------
# Built-in demo session
# -----------------------------

DEMO_TRACK_EVENTS = {
    "app_start": TrackEventSpec(weight=2.0),
    "stage_clear": TrackEventSpec(weight=3.0, properties={
        "stage": {"kind": "int", "min": 1, "max": 50},
        "duration_sec": {"kind": "int", "min": 10, "max": 600},
        "mode": {"kind": "choice", "values": ["Normal", "Hard", "Expert"], "weights": [0.6, 0.3, 0.1]},
    }),
    "purchase": TrackEventSpec(weight=0.5, requires=["stage_clear"], properties={
        "item_price": {"kind": "int", "min": 100, "max": 5000},
        "currency": {"kind": "geo", "values": {"JP": {"kind": "constant", "value": "JPY"},
                                               "KR": {"kind": "constant", "value": "KRW"}},
                     "default": {"kind": "constant", "value": "USD"}},
    }),
}

DEMO_PROPERTY_SPECS = {
    "user_set": {
        "user_name": {"kind": "faker", "provider": "name"},
        "tier": {"kind": "choice", "values": ["Bronze", "Silver", "Gold", "Platinum", "Diamond"],
                 "weights": [0.4, 0.3, 0.15, 0.1, 0.05]},
        "level": {"kind": "int", "min": 1, "max": 100},
    },
    "user_add": {
        "total_sessions": {"kind": "constant", "value": 1},
        "gold": {"kind": "normal", "mean": 200, "std": 150, "decimals": 0, "signed": True},
    },
}


def _demo_config(args: argparse.Namespace) -> SessionConfig:
    return SessionConfig(
        user_count=args.n_users or 100,
        time_range_start=args.start_date or "2025-01-01",
        time_range_end=args.end_date or "2025-01-31",
        events_per_user=args.events_per_user if args.event_rate is None else None,
        event_rate=args.event_rate,
        custom_property_specs=DEMO_PROPERTY_SPECS,
        track_events=dict(DEMO_TRACK_EVENTS),
        seed=args.seed if args.seed is not None else 42,
    )


def build_config(args: argparse.Namespace) -> SessionConfig:
    if not args.config:
        if args.events_per_user is None and args.event_rate is None:
            args.events_per_user = 20
        return _demo_config(args)

    config = load_config(args.config)
    overrides = {}
    if args.n_users is not None:
        overrides["user_count"] = args.n_users
    if args.start_date is not None:
        overrides["time_range_start"] = args.start_date
    if args.end_date is not None:
        overrides["time_range_end"] = args.end_date
    if args.events_per_user is not None:
        overrides.update(events_per_user=args.events_per_user, event_rate=None)
    if args.event_rate is not None:
        overrides.update(event_rate=args.event_rate, events_per_user=None)
    if args.seed is not None:
        overrides["seed"] = args.seed
    return config.with_overrides(**overrides) if overrides else config


# -----------------------------
# Main
# -----------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Generate synthetic track / user_set / user_add ingestion events")
    ap.add_argument("--config", help="Session config (.json, .yaml, .yml)")
    ap.add_argument("--out", default="-", help="Output file, '-' for stdout")
    ap.add_argument("--format", choices=["jsonl", "json"], default="jsonl", help="One record per line or one array")
    ap.add_argument("--n_users", type=int)
    ap.add_argument("--events_per_user", type=int)
    ap.add_argument("--event_rate", type=float, help="Events per user per day (instead of --events_per_user)")
    ap.add_argument("--start_date", type=str)
    ap.add_argument("--end_date", type=str)
    ap.add_argument("--seed", type=int)
    ap.add_argument("--shards", type=int, default=1, help="Partition users across worker processes")
    ap.add_argument("--workers", type=int, default=None)
    ap.add_argument("--ingest_url", help="POST batches to this ingestion endpoint instead of writing a file")
    ap.add_argument("--batch_size", type=int, default=500)
    ap.add_argument("--progress", action="store_true")
    ap.add_argument("--summary", action="store_true", help="Print a stream summary at the end")
    ap.add_argument("--log_level", default="INFO")
    return ap.parse_args(argv)


def _open_sink(args: argparse.Namespace) -> Sink:
    if args.ingest_url:
        return HttpSink(args.ingest_url, batch_size=args.batch_size)
    if args.format == "json":
        return BatchSink()
    if args.out == "-":
        return JsonlSink(sys.stdout)
    out_dir = os.path.dirname(args.out)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    return JsonlSink.open(args.out)


def _write_batch(sink: BatchSink, out: str) -> None:
    text = sink.to_json(indent=2)
    if out == "-":
        sys.stdout.write(text + "\n")
        return
    out_dir = os.path.dirname(out)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        f.write(text + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = build_config(args)
    except (OSError, SynthEventsError) as exc:
        logger.error("invalid configuration: %s", exc)
        return 2

    print("== Synthetic ingestion event generator ==", file=sys.stderr)
    print(f"Users: {config.user_count}", file=sys.stderr)
    if config.events_per_user is not None:
        print(f"Events per user: {config.events_per_user}", file=sys.stderr)
    else:
        print(f"Event rate: {config.event_rate}/user/day", file=sys.stderr)
    print(f"Time range: {config.time_range_start} to {config.time_range_end}", file=sys.stderr)
    print(f"Output: {args.ingest_url or args.out}\n", file=sys.stderr)

    collector = BatchSink() if args.summary else None
    try:
        with _open_sink(args) as sink:
            targets = [sink] if collector is None else [sink, collector]
            tee = _Tee(targets)
            if args.shards > 1:
                _, stats = run_sharded(config, args.shards, sink=tee, max_workers=args.workers)
            else:
                with GenerationSession(config, progress=args.progress) as session:
                    stats = session.run(tee)
            if isinstance(sink, BatchSink):
                _write_batch(sink, args.out)
    except GenerationConfigError as exc:
        logger.error("invalid configuration: %s", exc)
        return 2
    except SynthEventsError as exc:
        logger.error("generation aborted: %s", exc)
        return 1

    print(f"Generated {stats.total_emitted:,} events ({dict(stats.emitted)}), "
          f"{stats.discarded} discarded candidates", file=sys.stderr)

    if collector is not None:
        report = summarize(collector.records)
        print(f"Users: {report.total_users}  Events: {report.total_events}", file=sys.stderr)
        print(f"Types: {report.type_counts}", file=sys.stderr)
        print(f"Track events: {report.event_counts}", file=sys.stderr)
        print(f"Time span: {report.time_start} .. {report.time_end}", file=sys.stderr)
        print(f"Violations: {len(report.violations)}", file=sys.stderr)
        if not report.ok:
            return 1

    print("\nDone.", file=sys.stderr)
    return 0


class _Tee(Sink):
    def __init__(self, sinks: List[Sink]):
        self.sinks = sinks

    def write(self, record) -> None:
        for sink in self.sinks:
            sink.write(record)


if __name__ == "__main__":
    sys.exit(main())
