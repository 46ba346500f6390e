"""
Event sequencer: merges per-user arrival processes into one time-ordered stream.

A heap holds each user's next event time. The minimum is popped, an event is
generated and validated for that user at that time, applied to the registry,
and the user is re-queued at its next arrival until its budget or the session
window runs out (or, with per-user caps on track events, until nothing is
left for it to emit). Per-user times never decrease; across users the stream is
ordered by time as well, with ties broken by user key.
"""

from __future__ import annotations

import heapq
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from .config import SessionConfig
from .errors import GenerationConfigError, GenerationFailure, SchemaViolation
from .events import Event
from .profiles import ProfileSampler, random_uuid, weighted_index
from .properties import PropertyGenerator
from .registry import SyntheticUser, UserRegistry
from .schema import EventType
from .validator import find_violations

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000
MS_PER_DAY = 86_400_000


@dataclass
class GenerationStats:
    emitted: Counter = field(default_factory=Counter)
    discarded: int = 0
    regenerated: int = 0
    users_created: int = 0
    profile_rotations: int = 0
    users_exhausted: int = 0
    violations: Counter = field(default_factory=Counter)
    cancelled: bool = False

    @property
    def total_emitted(self) -> int:
        return sum(self.emitted.values())

    def merge(self, other: "GenerationStats") -> None:
        self.emitted.update(other.emitted)
        self.discarded += other.discarded
        self.regenerated += other.regenerated
        self.users_created += other.users_created
        self.profile_rotations += other.profile_rotations
        self.users_exhausted += other.users_exhausted
        self.violations.update(other.violations)
        self.cancelled = self.cancelled or other.cancelled


def _to_ms(ts: pd.Timestamp) -> int:
    return int(ts.value // 1_000_000)


def _normalised(weights: Optional[List[float]], n: int) -> np.ndarray:
    if weights is None:
        return np.ones(n)
    w = np.asarray(weights, dtype=float)
    return w / w.mean()


class ActivityClock:
    """Piecewise-linear map between wall time (epoch ms) and cumulative activity.

    Every UTC hour inside the window weighs hourly[hour] * weekday[day], each
    table normalised to a mean of 1, so a week of activity lasts as long as a
    week of wall time. Arrivals drawn evenly in activity and mapped back land
    in heavy hours more often and never in zero-weight ones.
    """

    def __init__(
        self,
        start_ms: int,
        end_ms: int,
        hourly: Optional[List[float]] = None,
        weekday: Optional[List[float]] = None,  # Monday first
    ):
        first = (start_ms // MS_PER_HOUR + 1) * MS_PER_HOUR
        edges = np.concatenate([
            [start_ms],
            np.arange(first, end_ms, MS_PER_HOUR, dtype=np.int64),
            [end_ms],
        ]).astype(np.int64)
        starts = edges[:-1]
        hour = (starts // MS_PER_HOUR) % 24
        day = (starts // MS_PER_DAY + 3) % 7  # 1970-01-01 was a Thursday
        self.edges = edges
        self.weights = _normalised(hourly, 24)[hour] * _normalised(weekday, 7)[day]
        self.cum = np.concatenate([[0.0], np.cumsum(self.weights * np.diff(edges))])
        self.total = float(self.cum[-1])

    def _bin(self, i: int) -> int:
        return min(max(i, 0), len(self.weights) - 1)

    def to_activity(self, t_ms: int) -> float:
        i = self._bin(int(np.searchsorted(self.edges, t_ms, side="right")) - 1)
        return float(self.cum[i] + self.weights[i] * (t_ms - self.edges[i]))

    def to_time(self, activity: float) -> int:
        if activity >= self.total:
            return int(self.edges[-1])
        # the bin with cum[i] <= activity < cum[i + 1] always has positive weight
        i = self._bin(int(np.searchsorted(self.cum, activity, side="right")) - 1)
        return int(self.edges[i] + (activity - self.cum[i]) / self.weights[i])


class EventSequencer:
    def __init__(
        self,
        config: SessionConfig,
        registry: UserRegistry,
        properties: PropertyGenerator,
        profiles: ProfileSampler,
        rng: np.random.Generator,
        cancel_event: Optional[threading.Event] = None,
        progress: bool = False,
    ):
        self.config = config
        self.registry = registry
        self.properties = properties
        self.profiles = profiles
        self.rng = rng
        self.cancel_event = cancel_event or threading.Event()
        self.progress = progress
        self.stats = GenerationStats()

        self._start_ms = _to_ms(config.time_range_start)
        self._end_ms = _to_ms(config.time_range_end)
        self._last_ms: Dict[int, int] = {}
        self._count: Dict[int, int] = {}
        self._seen: Dict[int, Counter] = {}  # track event names per user

        self._clock: Optional[ActivityClock] = None
        weighted = config.hourly_weights is not None or config.weekday_multipliers is not None
        if weighted and self._end_ms > self._start_ms:
            self._clock = ActivityClock(
                self._start_ms, self._end_ms, config.hourly_weights, config.weekday_multipliers
            )
            if self._clock.total <= 0:
                raise GenerationConfigError(
                    "hourlyWeights / weekdayMultipliers leave no active hour inside the time range"
                )

        weights = config.effective_type_weights()
        self._types: List[EventType] = [t for t, w in weights.items() if w > 0]
        self._type_weights = [weights[t] for t in self._types]
        self._track_names = [name for name, spec in config.track_events.items() if spec.weight > 0]
        self._track_weights = [config.track_events[n].weight for n in self._track_names]

    # -----------------------------
    # Arrival processes
    # -----------------------------

    def _budget(self) -> Optional[int]:
        if self.config.events_per_user is not None:
            return self.config.events_per_user
        return self.config.max_events_per_user

    def _next_time(self, user_key: int) -> Optional[int]:
        """Next event time (epoch ms) for a user, or None once it is done."""
        done = self._count.get(user_key, 0)
        budget = self._budget()
        if budget is not None and done >= budget:
            return None
        prev = self._last_ms.get(user_key)
        t = self._start_ms if prev is None else prev
        clock = self._clock
        lo = t if clock is None else clock.to_activity(t)
        hi = self._end_ms if clock is None else clock.total

        if self.config.events_per_user is not None:
            # next of the remaining uniform order statistics over [lo, hi]
            remaining = budget - done
            u = self.rng.random()
            a = lo + (hi - lo) * (1.0 - u ** (1.0 / remaining))
        else:
            a = lo + self.rng.exponential(MS_PER_DAY / self.config.event_rate)
            if a > hi:
                return None
        candidate = int(a) if clock is None else clock.to_time(a)

        if prev is not None and candidate <= prev:
            candidate = prev + 1 if prev + 1 <= self._end_ms else prev
        return candidate

    def _expected_total(self) -> Optional[int]:
        if self.config.events_per_user is not None:
            return self.config.user_count * self.config.events_per_user
        return None

    # -----------------------------
    # Candidate construction
    # -----------------------------

    def _open_tracks(self, user_key: int) -> List[int]:
        """Indexes of track events the user may emit next (prerequisites met, cap not reached)."""
        seen = self._seen.get(user_key) or Counter()
        out = []
        for i, name in enumerate(self._track_names):
            spec = self.config.track_events[name]
            if spec.max_per_user is not None and seen[name] >= spec.max_per_user:
                continue
            if any(seen[r] == 0 for r in spec.requires):
                continue
            out.append(i)
        return out

    def _draw_type(self, tracks_open: bool) -> Optional[EventType]:
        weights = [
            w if tracks_open or t is not EventType.TRACK else 0.0
            for t, w in zip(self._types, self._type_weights)
        ]
        if sum(weights) <= 0:
            return None
        return self._types[weighted_index(self.rng, weights, "event type mix")]

    def _build(self, user: SyntheticUser, ts: pd.Timestamp) -> Optional[Event]:
        """A candidate event, or None when nothing is left for this user to do."""
        snapshot = self.registry.snapshot(user)
        open_tracks = self._open_tracks(user.key)
        event_type = self._draw_type(bool(open_tracks))
        if event_type is None:
            return None
        event_name = None
        if event_type is EventType.TRACK:
            pick_from = [self._track_weights[i] for i in open_tracks]
            event_name = self._track_names[open_tracks[weighted_index(self.rng, pick_from, "track events")]]
            specs = {
                **self.config.property_specs(EventType.TRACK),
                **self.config.track_events[event_name].properties,
            }
            preset = snapshot.profile.to_preset()
        else:
            specs = self.config.property_specs(event_type)
            preset = snapshot.profile.to_preset(("ip",))
        if self.config.include_uuid:
            preset["uuid"] = random_uuid(self.rng)

        return Event(
            type=event_type,
            account_id=user.account_id,
            distinct_id=user.distinct_id,
            time=ts,
            event_name=event_name,
            preset=preset,
            properties=self.properties.generate(event_type, specs, snapshot),
        )

    def _emit(self, user: SyntheticUser, ts: pd.Timestamp) -> Optional[Event]:
        """Build, validate and apply one event; one fresh retry, then GenerationFailure."""
        rejected: List[SchemaViolation] = []
        for attempt in range(2):
            candidate = self._build(user, ts)
            if candidate is None:
                return None
            violations = find_violations(candidate)
            if not violations:
                self.registry.apply(user, candidate)
                self.stats.emitted[candidate.type.value] += 1
                if candidate.event_name is not None:
                    self._seen.setdefault(user.key, Counter())[candidate.event_name] += 1
                return candidate
            self.stats.discarded += 1
            self.stats.violations.update(v.code.value for v in violations)
            rejected.extend(violations)
            logger.warning(
                "discarded %s candidate for user %s at %s: %s",
                candidate.type.value, user.key, ts, violations[0].message,
            )
            if attempt == 0:
                self.stats.regenerated += 1
        raise GenerationFailure(user.key, ts, rejected)

    # -----------------------------
    # Main loop
    # -----------------------------

    def _seed_heap(self) -> List[Tuple[int, int]]:
        heap: List[Tuple[int, int]] = []
        first = self.config.first_user_key
        for key in range(first, first + self.config.user_count):
            t = self._next_time(key)
            if t is not None:
                heap.append((t, key))
        heapq.heapify(heap)
        return heap

    def __iter__(self) -> Iterator[Event]:
        heap = self._seed_heap()
        rotation = self.config.profile_rotation_rate
        with tqdm(total=self._expected_total(), desc="Generating events", disable=not self.progress) as bar:
            while heap:
                if self.cancel_event.is_set():
                    self.stats.cancelled = True
                    logger.info("generation cancelled after %d events", self.stats.total_emitted)
                    break
                t_ms, key = heapq.heappop(heap)

                is_new = self.registry.get(key) is None
                user = self.registry.get_or_create(key, self.profiles.sample, lambda: random_uuid(self.rng))
                if is_new:
                    self.stats.users_created += 1
                elif rotation > 0 and self.rng.random() < rotation:
                    self.registry.rotate_profile(user, self.profiles.sample)
                    self.stats.profile_rotations += 1

                event = self._emit(user, pd.Timestamp(t_ms, unit="ms", tz="UTC"))
                if event is None:
                    # every track event is capped or blocked and no other type is drawable
                    self.stats.users_exhausted += 1
                    logger.debug("user %s has no eligible events left after %d", key, self._count.get(key, 0))
                    continue
                self._last_ms[key] = t_ms
                self._count[key] = self._count.get(key, 0) + 1
                bar.update(1)
                yield event

                t_next = self._next_time(key)
                if t_next is not None:
                    heapq.heappush(heap, (t_next, key))
