"""
Synthetic ingestion event generator.

Outputs (synthetic):
- JSON lines (default) or a JSON array of wire records
- or batches POSTed to an ingestion endpoint (--ingest_url)

Design goals:
- track / user_set / user_add events sharing one reserved `#` envelope
- per-user monotonic #time, counters and profile snapshots kept consistent
- event mix and custom properties driven entirely by the session config

NOTE: This data is synthetic, for seeding and load-testing.
"""

import sys

from synth_events.cli import main


if __name__ == "__main__":
    sys.exit(main())
