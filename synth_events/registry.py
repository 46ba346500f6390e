"""
Identity & session registry: per-user state for one generation session.

Users are created lazily on first reference and only mutated through
accepted events. Each user has its own lock so that work partitioned by user
can run concurrently while events for the same user stay serialised.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

import pandas as pd

from .errors import SchemaViolation, ViolationCode
from .events import Event
from .profiles import PresetProfile
from .schema import EventType

logger = logging.getLogger(__name__)


@dataclass
class SyntheticUser:
    key: int
    account_id: str
    distinct_id: str
    profile: PresetProfile
    properties: Dict[str, Any] = field(default_factory=dict)
    counters: Dict[str, float] = field(default_factory=dict)
    last_event_time: Optional[pd.Timestamp] = None
    event_count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


@dataclass(frozen=True)
class UserSnapshot:
    account_id: str
    distinct_id: str
    profile: PresetProfile
    properties: Mapping[str, Any]
    counters: Mapping[str, float]
    last_event_time: Optional[pd.Timestamp]


class UserRegistry:
    """Session-scoped store of SyntheticUser objects keyed by user index."""

    def __init__(self, account_id_prefix: str = "u_"):
        self.account_id_prefix = account_id_prefix
        self._users: Dict[int, SyntheticUser] = {}
        self._identities: Dict[tuple, int] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._users)

    def __iter__(self) -> Iterator[SyntheticUser]:
        return iter(list(self._users.values()))

    def get(self, user_key: int) -> Optional[SyntheticUser]:
        return self._users.get(user_key)

    def make_account_id(self, user_key: int) -> str:
        return f"{self.account_id_prefix}{user_key:06d}"

    def get_or_create(
        self,
        user_key: int,
        profile_sampler: Callable[[], PresetProfile],
        distinct_id_factory: Callable[[], str],
    ) -> SyntheticUser:
        """Existing user for user_key, or a new one with a freshly sampled profile."""
        with self._lock:
            user = self._users.get(user_key)
            if user is not None:
                return user
            account_id = self.make_account_id(user_key)
            distinct_id = distinct_id_factory()
            if (account_id, distinct_id) in self._identities:
                raise ValueError(f"identity collision for {(account_id, distinct_id)}")
            user = SyntheticUser(
                key=user_key,
                account_id=account_id,
                distinct_id=distinct_id,
                profile=profile_sampler(),
            )
            self._users[user_key] = user
            self._identities[(account_id, distinct_id)] = user_key
            logger.debug("created user %s (%s, %s)", user_key, account_id, distinct_id)
            return user

    def apply(self, user: SyntheticUser, event: Event) -> None:
        """Fold an accepted event into the user's state.

        user_set overwrites snapshot entries, user_add accumulates counters,
        track only advances the time watermark. The new state is computed in
        full before being swapped in.
        """
        with user.lock:
            if event.user_id != (user.account_id, user.distinct_id):
                raise ValueError(f"event for {event.user_id} applied to user {user.key}")
            if user.last_event_time is not None and event.time < user.last_event_time:
                raise SchemaViolation(
                    ViolationCode.TIME_ORDER,
                    "#time",
                    f"event at {event.time} precedes user {user.key}'s last event at {user.last_event_time}",
                )

            properties = user.properties
            counters = user.counters
            if event.type is EventType.USER_SET:
                properties = {**user.properties, **event.properties}
            elif event.type is EventType.USER_ADD:
                counters = dict(user.counters)
                for name, delta in event.properties.items():
                    counters[name] = counters.get(name, 0) + delta

            user.properties = properties
            user.counters = counters
            user.last_event_time = event.time
            user.event_count += 1

    def snapshot(self, user: SyntheticUser) -> UserSnapshot:
        with user.lock:
            return UserSnapshot(
                account_id=user.account_id,
                distinct_id=user.distinct_id,
                profile=user.profile,
                properties=MappingProxyType(dict(user.properties)),
                counters=MappingProxyType(dict(user.counters)),
                last_event_time=user.last_event_time,
            )

    def rotate_profile(self, user: SyntheticUser, profile_sampler: Callable[[], PresetProfile]) -> PresetProfile:
        """Replace a user's preset profile (only used when profile rotation is enabled)."""
        profile = profile_sampler()
        with user.lock:
            user.profile = profile
        logger.debug("rotated profile of user %s", user.key)
        return profile

    def teardown(self) -> None:
        with self._lock:
            n = len(self._users)
            self._users.clear()
            self._identities.clear()
        logger.debug("registry teardown: discarded %d users", n)
