"""
Generation sessions.

A GenerationSession owns every piece of mutable generator state (rng, Faker
instances, registry, sequencer) for one run. It is created at session start,
takes an already validated config, and discards all user state
on close. Independent sessions never share state, so they can run side by
side; run_sharded uses that to split a population across worker processes.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ProcessPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .config import SessionConfig
from .events import Event
from .profiles import FakerPool, ProfileSampler
from .properties import PropertyGenerator
from .registry import UserRegistry, UserSnapshot
from .sequencer import EventSequencer, GenerationStats
from .validator import serialize

logger = logging.getLogger(__name__)


class GenerationSession:
    def __init__(
        self,
        config: SessionConfig,
        cancel_event: Optional[threading.Event] = None,
        progress: bool = False,
    ):
        self.config = config
        self.rng = np.random.default_rng(config.seed)
        self.fakers = FakerPool(config.seed)
        self.registry = UserRegistry(config.account_id_prefix)
        self.profiles = ProfileSampler(config.preset_profile_pool, self.rng, self.fakers)
        self.properties = PropertyGenerator(self.rng, self.fakers)
        self.cancel_event = cancel_event or threading.Event()
        self.sequencer = EventSequencer(
            config,
            self.registry,
            self.properties,
            self.profiles,
            self.rng,
            cancel_event=self.cancel_event,
            progress=progress,
        )
        self.closed = False
        self._started = False
        logger.info(
            "session start: %d users, %s .. %s, seed=%s",
            config.user_count, config.time_range_start, config.time_range_end, config.seed,
        )

    @property
    def stats(self) -> GenerationStats:
        return self.sequencer.stats

    def events(self) -> Iterator[Event]:
        if self.closed:
            raise RuntimeError("session is closed")
        if self._started:
            raise RuntimeError("a session generates its stream only once")
        self._started = True
        return iter(self.sequencer)

    def records(self) -> Iterator[Dict[str, Any]]:
        for event in self.events():
            yield serialize(event)

    def run(self, sink) -> GenerationStats:
        """Write every generated record to sink and return the session stats."""
        for record in self.records():
            sink.write(record)
        return self.stats

    def cancel(self) -> None:
        self.cancel_event.set()

    def snapshot(self, user_key: int) -> UserSnapshot:
        user = self.registry.get(user_key)
        if user is None:
            raise KeyError(user_key)
        return self.registry.snapshot(user)

    def close(self) -> None:
        if self.closed:
            return
        stats = self.stats
        logger.info(
            "session end: %d events (%s), %d users, %d discarded candidates%s",
            stats.total_emitted,
            ", ".join(f"{k}={v}" for k, v in sorted(stats.emitted.items())),
            stats.users_created,
            stats.discarded,
            " [cancelled]" if stats.cancelled else "",
        )
        self.registry.teardown()
        self.closed = True

    def __enter__(self) -> "GenerationSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def generate(config: SessionConfig) -> List[Dict[str, Any]]:
    """Run one session to completion and return its wire records as a batch."""
    with GenerationSession(config) as session:
        return list(session.records())


# -----------------------------
# Sharded runs
# -----------------------------

def shard_configs(config: SessionConfig, shards: int) -> List[SessionConfig]:
    """Split the user population into disjoint key ranges, one seed per shard."""
    shards = max(1, min(shards, config.user_count))
    base, extra = divmod(config.user_count, shards)
    out: List[SessionConfig] = []
    first = config.first_user_key
    for i in range(shards):
        n = base + (1 if i < extra else 0)
        out.append(config.with_overrides(user_count=n, first_user_key=first, seed=config.seed + i))
        first += n
    return out


def _run_shard(config: SessionConfig) -> Tuple[List[Dict[str, Any]], GenerationStats]:
    with GenerationSession(config) as session:
        records = list(session.records())
        return records, session.stats


def run_sharded(
    config: SessionConfig,
    shards: int,
    sink=None,
    max_workers: Optional[int] = None,
    executor_factory: Callable[..., Executor] = ProcessPoolExecutor,
) -> Tuple[Optional[List[Dict[str, Any]]], GenerationStats]:
    """Generate with users partitioned across workers.

    Records are merged in shard completion order; per-user ordering holds,
    global ordering does not. With a sink the records are written as they
    arrive and None is returned in their place.
    """
    parts = shard_configs(config, shards)
    total = GenerationStats()
    collected: Optional[List[Dict[str, Any]]] = None if sink is not None else []

    with executor_factory(max_workers=max_workers) as pool:
        futures = [pool.submit(_run_shard, part) for part in parts]
        for fut in as_completed(futures):
            records, stats = fut.result()
            total.merge(stats)
            if sink is not None:
                for record in records:
                    sink.write(record)
            else:
                collected.extend(records)
            logger.info("shard done: %d events", stats.total_emitted)

    return collected, total
