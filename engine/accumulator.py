"""
Boost Accumulator - earn-rate multipliers built from named boosts.

Every (subject, resource kind) pair has a set of named boosts, each an
additive delta on top of the 1.0 baseline. Timed boosts are expired by the
scheduler, and any expired record met while computing a multiplier is
evicted on the spot in case a timer was missed.

The accumulator keeps no player state of its own beyond pending timer
tokens: boosts live in the profile store, peer counts come from the
presence directory, and time comes from the scheduler.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Hashable, Optional

from pydantic import ValidationError
from PySide6.QtCore import QObject, Signal

from engine.bonuses import BonusRules
from engine.scheduler import Scheduler
from models.boost import BoostRecord
from services.profile_store import BOOSTS_KEY, REBIRTHS_KEY

logger = logging.getLogger(__name__)

BoostKey = tuple[Hashable, str, str]


class InvalidArgument(ValueError):
    """A boost or currency call was given a value it can never accept."""


def to_number(value, name: str) -> float:
    if isinstance(value, bool):
        raise InvalidArgument(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{name} must be a number, got {value!r}") from None


def read_rebirths(subject_id: Hashable, profile: dict) -> int:
    """Rebirth counter of a profile; unreadable values count as 0."""
    try:
        return max(0, int(profile.get(REBIRTHS_KEY, 0)))
    except (TypeError, ValueError, OverflowError):
        logger.warning("Unreadable rebirth count for %s; counting 0", subject_id)
        return 0


@dataclass
class MultiplierBreakdown:
    """Term-by-term view of a computed multiplier."""
    resource_kind: str
    boosts: float = 0.0
    peer_bonus: float = 0.0
    rebirth_bonus: float = 0.0
    total: float = 1.0
    active_boost_count: int = 0
    peer_count: int = 0
    rebirths: int = 0


class BoostAccumulator(QObject):
    """
    Registers, removes and expires boosts and computes multipliers.

    Mutations for one subject are expected to be serialized by the host;
    different subjects never share state.

    Usage:
        accumulator = BoostAccumulator(profiles, presence, scheduler, rules)
        accumulator.on_subject_attached(player_id)
        accumulator.register_boost(player_id, "Cash", "Weekend", 1.0, 3600)
        multiplier = accumulator.compute_multiplier(player_id, "Cash")
    """

    # Signals
    boost_registered = Signal(object)   # {subject_id, resource_kind, boost_id, magnitude, expires_at}
    boost_removed = Signal(object)      # same payload, explicit removal
    boost_expired = Signal(object)      # same payload, timer or lazy eviction
    subject_attached = Signal(object)   # subject_id
    subject_detached = Signal(object)   # subject_id

    BASELINE = 1.0

    def __init__(self, profiles, presence, scheduler: Scheduler,
                 rules: Optional[BonusRules] = None, parent: Optional[QObject] = None):
        """
        Args:
            profiles: Profile store (get / mutate_boosts / load / release)
            presence: Presence directory (peer_count)
            scheduler: Timer service (now / after / cancel)
            rules: Per-peer and rebirth bonus configuration
        """
        super().__init__(parent)
        self._profiles = profiles
        self._presence = presence
        self._scheduler = scheduler
        self._rules = rules or BonusRules()

        # Armed expiry timers: key -> (token, expires_at the timer was armed for)
        self._pending: dict[BoostKey, tuple[int, datetime]] = {}

    @property
    def rules(self) -> BonusRules:
        return self._rules

    @property
    def pending_expiries(self) -> int:
        return len(self._pending)

    # ============ Registration ============

    def register_boost(self, subject_id: Hashable, resource_kind: str, boost_id: str,
                       magnitude: float, duration_seconds: Optional[float] = None) -> bool:
        """
        Insert or replace a boost.

        Args:
            subject_id: Owner of the boost
            resource_kind: Resource the boost applies to (e.g. "Cash")
            boost_id: Name of the boost; reusing it replaces the old record
            magnitude: Additive delta, 1.0 meaning "+100%"
            duration_seconds: Lifetime of a timed boost; omit for permanent

        Returns:
            True if stored, False if the subject has no loaded profile

        Raises:
            InvalidArgument: magnitude is negative or not finite, or the
                duration is not a positive finite number
        """
        magnitude = to_number(magnitude, "magnitude")
        if not math.isfinite(magnitude) or magnitude < 0:
            raise InvalidArgument(f"Boost magnitude must be >= 0, got {magnitude}")
        if duration_seconds is not None:
            duration_seconds = to_number(duration_seconds, "duration")
            if not math.isfinite(duration_seconds) or duration_seconds <= 0:
                raise InvalidArgument(
                    f"Boost duration must be a positive number of seconds, got {duration_seconds}"
                )

        now = self._scheduler.now()
        expires_at = None
        if duration_seconds is not None:
            try:
                expires_at = now + timedelta(seconds=duration_seconds)
            except OverflowError:
                raise InvalidArgument(
                    f"Boost duration of {duration_seconds:g}s is out of range"
                ) from None

        try:
            record = BoostRecord(
                id=boost_id,
                resource_kind=resource_kind,
                magnitude=magnitude,
                expires_at=expires_at,
                created_at=now,
                last_update=now,
            )
        except ValidationError as e:
            raise InvalidArgument(str(e)) from e

        def store(boosts: dict) -> None:
            boosts[boost_id] = record.to_raw()

        if not self._profiles.mutate_boosts(subject_id, resource_kind, store):
            logger.debug("No profile loaded for %s; boost %s/%s not registered",
                         subject_id, resource_kind, boost_id)
            return False

        key = (subject_id, resource_kind, boost_id)
        self._cancel_pending(key)
        if expires_at is not None:
            self._arm_expiry(key, expires_at, duration_seconds)

        logger.info("Registered boost %s/%s for %s (+%.3f, %s)", resource_kind, boost_id,
                    subject_id, magnitude,
                    f"{duration_seconds:g}s" if duration_seconds is not None else "permanent")
        self.boost_registered.emit(self._payload(subject_id, record))
        return True

    def remove_boost(self, subject_id: Hashable, resource_kind: str, boost_id: str) -> None:
        """Delete a boost. Unknown ids and unloaded subjects are ignored."""
        removed = []

        def drop(boosts: dict) -> None:
            raw = boosts.pop(boost_id, None)
            if raw is not None:
                removed.append(raw)

        self._profiles.mutate_boosts(subject_id, resource_kind, drop)
        self._cancel_pending((subject_id, resource_kind, boost_id))

        if removed:
            record = self._parse(subject_id, boost_id, removed[0])
            logger.info("Removed boost %s/%s for %s", resource_kind, boost_id, subject_id)
            self.boost_removed.emit(self._payload(subject_id, record, resource_kind, boost_id))

    # ============ Queries ============

    def compute_multiplier(self, subject_id: Hashable, resource_kind: str) -> float:
        """
        Aggregate multiplier for a resource kind, never below 1.0.

        1.0 + active boost deltas + per-peer bonus + rebirth bonus.
        """
        return self.explain_multiplier(subject_id, resource_kind).total

    def explain_multiplier(self, subject_id: Hashable, resource_kind: str) -> MultiplierBreakdown:
        """Compute the multiplier and report each of its terms."""
        breakdown = MultiplierBreakdown(resource_kind=resource_kind)
        now = self._scheduler.now()
        profile = self._safe_profile(subject_id)

        active, expired = self._partition(subject_id, resource_kind, profile, now)
        if expired:
            self._evict(subject_id, resource_kind, expired, now)

        breakdown.active_boost_count = len(active)
        breakdown.boosts = sum(record.magnitude for record in active)

        if self._rules.has_peer_bonus(resource_kind):
            breakdown.peer_count = self._safe_peer_count(subject_id)
            breakdown.peer_bonus = self._rules.peer_bonus(resource_kind, breakdown.peer_count)

        if self._rules.has_rebirth_bonus(resource_kind):
            breakdown.rebirths = self._rebirths_from(subject_id, profile)
            breakdown.rebirth_bonus = self._rules.rebirth_bonus(resource_kind, breakdown.rebirths)

        total = self.BASELINE + breakdown.boosts + breakdown.peer_bonus + breakdown.rebirth_bonus
        breakdown.total = max(self.BASELINE, total)
        return breakdown

    def active_boosts(self, subject_id: Hashable,
                      resource_kind: Optional[str] = None) -> list[BoostRecord]:
        """Unexpired boosts of a subject, for one resource kind or all of them."""
        profile = self._safe_profile(subject_id)
        if profile is None:
            return []

        now = self._scheduler.now()
        kinds = [resource_kind] if resource_kind is not None else list(profile.get(BOOSTS_KEY, {}))
        result = []
        for kind in kinds:
            active, _ = self._partition(subject_id, kind, profile, now)
            result.extend(active)
        return result

    # ============ Subject Lifecycle ============

    def on_subject_attached(self, subject_id: Hashable, data: Optional[dict] = None) -> int:
        """
        Bring a subject online.

        Loads the profile unless it is already loaded, drops boosts that ran
        out while the subject was away, and arms timers for the rest.

        Args:
            subject_id: The subject that joined
            data: Saved profile data to load from

        Returns:
            Number of expiry timers armed
        """
        if data is not None or not self._profiles.is_loaded(subject_id):
            self._profiles.load(subject_id, data)

        profile = self._profiles.get(subject_id) or {}
        now = self._scheduler.now()
        armed = 0

        for kind in list(profile.get(BOOSTS_KEY, {})):
            active, expired = self._partition(subject_id, kind, profile, now)
            if expired:
                self._evict(subject_id, kind, expired, now)
            for record in active:
                if record.expires_at is None:
                    continue
                key = (subject_id, kind, record.id)
                self._cancel_pending(key)
                self._arm_expiry(key, record.expires_at, record.remaining_seconds(now))
                armed += 1

        logger.info("Subject %s attached (%d timed boosts armed)", subject_id, armed)
        self.subject_attached.emit(subject_id)
        return armed

    def on_subject_detached(self, subject_id: Hashable) -> Optional[dict]:
        """
        Take a subject offline.

        Cancels its timers and releases the profile. Timers that still fire
        afterwards find no profile and do nothing.

        Returns:
            The released profile so the host can save it, or None
        """
        for key in [k for k in self._pending if k[0] == subject_id]:
            self._cancel_pending(key)

        profile = self._profiles.release(subject_id)
        logger.info("Subject %s detached", subject_id)
        self.subject_detached.emit(subject_id)
        return profile

    # ============ Expiry ============

    def _arm_expiry(self, key: BoostKey, expires_at: datetime, delay: float) -> None:
        token = self._scheduler.after(delay, lambda: self._on_expiry(key, expires_at))
        self._pending[key] = (token, expires_at)

    def _cancel_pending(self, key: BoostKey) -> None:
        pending = self._pending.pop(key, None)
        if pending is not None:
            self._scheduler.cancel(pending[0])

    def _on_expiry(self, key: BoostKey, expires_at: datetime) -> None:
        """
        Timer callback for one boost.

        Only removes the record it was armed for: a replacement carries a
        different expires_at and survives a late callback.
        """
        subject_id, resource_kind, boost_id = key
        pending = self._pending.get(key)
        if pending is not None and pending[1] == expires_at:
            del self._pending[key]

        now = self._scheduler.now()
        outcome = {}

        def expire(boosts: dict) -> None:
            raw = boosts.get(boost_id)
            if raw is None:
                outcome["state"] = "missing"
                return
            record = self._parse(subject_id, boost_id, raw)
            if record is None or record.expires_at != expires_at:
                outcome["state"] = "stale"
                return
            if now < expires_at:
                outcome["state"] = "early"
                return
            del boosts[boost_id]
            outcome["state"] = "expired"
            outcome["record"] = record

        if not self._profiles.mutate_boosts(subject_id, resource_kind, expire):
            logger.debug("Expiry for %s/%s dropped; %s is not loaded",
                         resource_kind, boost_id, subject_id)
            return

        state = outcome.get("state")
        if state == "expired":
            logger.info("Boost %s/%s expired for %s", resource_kind, boost_id, subject_id)
            self.boost_expired.emit(self._payload(subject_id, outcome["record"]))
        elif state == "early":
            remaining = (expires_at - now).total_seconds()
            logger.debug("Expiry for %s/%s fired %.3fs early; re-arming",
                         resource_kind, boost_id, remaining)
            self._arm_expiry(key, expires_at, remaining)
        else:
            logger.debug("Dropped stale expiry for %s/%s (%s)", resource_kind, boost_id, state)

    def _evict(self, subject_id: Hashable, resource_kind: str,
               expired: list[BoostRecord], now: datetime) -> None:
        """Remove records that are past their expiry but still stored."""
        evicted = []

        def drop(boosts: dict) -> None:
            for record in expired:
                raw = boosts.get(record.id)
                if raw is None:
                    continue
                current = self._parse(subject_id, record.id, raw)
                if current is not None and current.is_expired(now):
                    del boosts[record.id]
                    evicted.append(current)

        self._profiles.mutate_boosts(subject_id, resource_kind, drop)
        for record in evicted:
            self._cancel_pending((subject_id, resource_kind, record.id))
            logger.info("Evicted expired boost %s/%s for %s", resource_kind, record.id, subject_id)
            self.boost_expired.emit(self._payload(subject_id, record))

    # ============ Helpers ============

    def _partition(self, subject_id: Hashable, resource_kind: str, profile: Optional[dict],
                   now: datetime) -> tuple[list[BoostRecord], list[BoostRecord]]:
        """Split a profile's boosts for one kind into (active, expired)."""
        if profile is None:
            return [], []

        active, expired = [], []
        raw_boosts = profile.get(BOOSTS_KEY, {}).get(resource_kind, {})
        for boost_id, raw in raw_boosts.items():
            record = self._parse(subject_id, boost_id, raw)
            if record is None:
                continue
            if record.is_expired(now):
                expired.append(record)
            else:
                active.append(record)
        return active, expired

    def _parse(self, subject_id: Hashable, boost_id: str, raw) -> Optional[BoostRecord]:
        try:
            return BoostRecord.from_raw(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Skipping malformed boost %s for %s: %s", boost_id, subject_id, e)
            return None

    def _safe_profile(self, subject_id: Hashable) -> Optional[dict]:
        try:
            return self._profiles.get(subject_id)
        except Exception:
            logger.warning("Profile lookup failed for %s; treating as empty",
                           subject_id, exc_info=True)
            return None

    def _safe_peer_count(self, subject_id: Hashable) -> int:
        try:
            return max(0, int(self._presence.peer_count(subject_id)))
        except Exception:
            logger.warning("Peer count lookup failed for %s; counting 0 peers",
                           subject_id, exc_info=True)
            return 0

    def _rebirths_from(self, subject_id: Hashable, profile: Optional[dict]) -> int:
        if profile is None:
            return 0
        return read_rebirths(subject_id, profile)

    @staticmethod
    def _payload(subject_id: Hashable, record: Optional[BoostRecord],
                 resource_kind: Optional[str] = None, boost_id: Optional[str] = None) -> dict:
        if record is None:
            return {
                "subject_id": subject_id,
                "resource_kind": resource_kind,
                "boost_id": boost_id,
                "magnitude": None,
                "expires_at": None,
            }
        return {
            "subject_id": subject_id,
            "resource_kind": record.resource_kind,
            "boost_id": record.id,
            "magnitude": record.magnitude,
            "expires_at": record.expires_at,
        }
