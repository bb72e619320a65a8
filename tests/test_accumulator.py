"""
Unit tests for the BoostAccumulator.

Tests cover registration, replacement, timed expiry, lazy eviction,
per-peer and rebirth bonuses, and the subject lifecycle.
"""

import json
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from engine.accumulator import BoostAccumulator, InvalidArgument
from engine.bonuses import BonusRules
from engine.scheduler import ManualScheduler
from models.bonus import BonusTable, PerPeerBonusConfig, RebirthBonusConfig
from services.presence import InMemoryPresenceDirectory
from services.profile_store import BOOSTS_KEY, InMemoryProfileStore


class StubbornScheduler(ManualScheduler):
    """Ignores cancellation, so every armed callback eventually fires."""

    def cancel(self, token: int) -> None:
        pass


class SilentScheduler(ManualScheduler):
    """Accepts callbacks but never runs them."""

    def after(self, seconds, callback) -> int:
        return super().after(seconds, lambda: None)


def bonus_table(per_peer: float = 0.1, per_rebirth: float = 0.25) -> BonusTable:
    return BonusTable(
        per_peer=[PerPeerBonusConfig(resource_kind="Cash", per_peer_magnitude=per_peer)],
        rebirth=[RebirthBonusConfig(resource_kind="Cash", per_rebirth_magnitude=per_rebirth)],
    )


class AccumulatorTestBase:

    scheduler_class = ManualScheduler

    def setup_method(self):
        """Set up a fresh accumulator with one loaded subject."""
        self.scheduler = self.scheduler_class()
        self.profiles = InMemoryProfileStore()
        self.presence = InMemoryPresenceDirectory()
        self.accumulator = BoostAccumulator(
            self.profiles, self.presence, self.scheduler, BonusRules(bonus_table())
        )
        self.accumulator.on_subject_attached("s")

    def multiplier(self, kind: str = "Cash") -> float:
        return self.accumulator.compute_multiplier("s", kind)


class TestRegistration(AccumulatorTestBase):
    """Tests for registering and removing boosts."""

    def test_no_boosts_is_exactly_baseline(self):
        """A subject with no boosts, peers or rebirths has multiplier 1.0."""
        assert self.multiplier() == 1.0

    def test_distinct_boosts_add_up(self):
        """Distinct permanent boosts sum on top of 1.0."""
        magnitudes = [0.5, 1.0, 0.25, 2.0]
        for i, magnitude in enumerate(magnitudes):
            assert self.accumulator.register_boost("s", "Cash", f"B{i}", magnitude)

        assert self.multiplier() == pytest.approx(1.0 + sum(magnitudes))

    def test_same_id_replaces_instead_of_stacking(self):
        """Registering the same id twice keeps only the second magnitude."""
        self.accumulator.register_boost("s", "Cash", "X", 1.0)
        self.accumulator.register_boost("s", "Cash", "X", 3.0)

        assert self.multiplier() == pytest.approx(4.0)

    def test_boosts_only_apply_to_their_resource(self):
        """A Gems boost does not change the Cash multiplier."""
        self.accumulator.register_boost("s", "Gems", "G", 2.0)

        assert self.multiplier("Cash") == 1.0
        assert self.multiplier("Gems") == pytest.approx(3.0)

    def test_zero_magnitude_is_allowed(self):
        """Magnitude 0 is valid and contributes nothing."""
        assert self.accumulator.register_boost("s", "Cash", "Zero", 0.0)
        assert self.multiplier() == 1.0

    def test_negative_magnitude_rejected(self):
        """Negative magnitude raises and leaves the multiplier unchanged."""
        self.accumulator.register_boost("s", "Cash", "Good", 0.5)

        with pytest.raises(InvalidArgument):
            self.accumulator.register_boost("s", "Cash", "Bad", -1.0)

        assert self.multiplier() == pytest.approx(1.5)
        assert [b.id for b in self.accumulator.active_boosts("s", "Cash")] == ["Good"]

    def test_negative_replacement_keeps_original(self):
        """A rejected replacement does not touch the existing record."""
        self.accumulator.register_boost("s", "Cash", "X", 1.0)

        with pytest.raises(InvalidArgument):
            self.accumulator.register_boost("s", "Cash", "X", -2.0)

        assert self.multiplier() == pytest.approx(2.0)

    @pytest.mark.parametrize("magnitude", [float("nan"), float("inf"), "lots", True])
    def test_non_numeric_magnitude_rejected(self, magnitude):
        """NaN, infinity and non-numbers are invalid magnitudes."""
        with pytest.raises(InvalidArgument):
            self.accumulator.register_boost("s", "Cash", "Bad", magnitude)

    @pytest.mark.parametrize("duration", [0, -5, float("inf")])
    def test_invalid_duration_rejected(self, duration):
        """Durations must be positive and finite."""
        with pytest.raises(InvalidArgument):
            self.accumulator.register_boost("s", "Cash", "Bad", 1.0, duration)

        assert self.accumulator.pending_expiries == 0

    def test_out_of_range_duration_rejected(self):
        """A finite duration too large for a timestamp is an invalid argument."""
        with pytest.raises(InvalidArgument):
            self.accumulator.register_boost("s", "Cash", "Long", 1.0, 1e12)

        assert self.accumulator.pending_expiries == 0
        assert self.multiplier() == 1.0

    def test_invalid_argument_is_value_error(self):
        """Callers catching ValueError also catch InvalidArgument."""
        with pytest.raises(ValueError):
            self.accumulator.register_boost("s", "Cash", "Bad", -0.1)

    def test_register_without_profile_returns_false(self):
        """Registering for an unloaded subject is a quiet no-op."""
        assert self.accumulator.register_boost("ghost", "Cash", "X", 1.0, 10) is False
        assert self.accumulator.pending_expiries == 0
        assert self.accumulator.compute_multiplier("ghost", "Cash") == 1.0

    def test_remove_boost(self):
        """Removing a boost drops its contribution."""
        self.accumulator.register_boost("s", "Cash", "A", 1.0)
        self.accumulator.register_boost("s", "Cash", "B", 0.5)

        self.accumulator.remove_boost("s", "Cash", "A")

        assert self.multiplier() == pytest.approx(1.5)

    def test_remove_nonexistent_is_noop(self):
        """Removing an unknown id changes nothing and does not raise."""
        self.accumulator.register_boost("s", "Cash", "A", 1.0)

        self.accumulator.remove_boost("s", "Cash", "Missing")
        self.accumulator.remove_boost("ghost", "Cash", "A")

        assert self.multiplier() == pytest.approx(2.0)

    def test_remove_cancels_expiry_timer(self):
        """Removing a timed boost cancels its pending expiry."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 30)
        assert self.scheduler.pending_count == 1

        self.accumulator.remove_boost("s", "Cash", "T")

        assert self.scheduler.pending_count == 0
        assert self.accumulator.pending_expiries == 0

    def test_record_timestamps(self):
        """Timed records carry created_at, last_update and expires_at."""
        now = self.scheduler.now()
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 60)

        record = self.accumulator.active_boosts("s", "Cash")[0]
        assert record.created_at == now
        assert record.last_update == now
        assert record.expires_at == now + timedelta(seconds=60)

    def test_permanent_record_has_no_expiry(self):
        """Permanent boosts have no expires_at and no timer."""
        self.accumulator.register_boost("s", "Cash", "P", 1.0)

        record = self.accumulator.active_boosts("s", "Cash")[0]
        assert record.is_permanent
        assert self.scheduler.pending_count == 0

    def test_active_boosts_across_kinds(self):
        """active_boosts without a kind lists every resource."""
        self.accumulator.register_boost("s", "Cash", "A", 1.0)
        self.accumulator.register_boost("s", "Gems", "B", 1.0)

        ids = sorted(b.id for b in self.accumulator.active_boosts("s"))
        assert ids == ["A", "B"]


class TestTimedExpiry(AccumulatorTestBase):
    """Tests for scheduled expiry of timed boosts."""

    def test_contributes_before_duration(self):
        """A timed boost counts until its duration has elapsed."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 30)

        self.scheduler.advance(29.9)

        assert self.multiplier() == pytest.approx(2.0)

    def test_stops_contributing_at_duration(self):
        """At exactly D seconds the boost is gone."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 30)

        self.scheduler.advance(30)

        assert self.multiplier() == 1.0
        assert self.accumulator.active_boosts("s", "Cash") == []

    def test_stays_gone_after_duration(self):
        """Long after expiry the boost still does not count."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 30)

        self.scheduler.advance(3600)

        assert self.multiplier() == 1.0

    def test_expiry_removes_record_from_profile(self):
        """The expiry callback deletes the stored record."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 5)

        self.scheduler.advance(5)

        assert "Cash" not in self.profiles.get("s")[BOOSTS_KEY]

    def test_permanent_boost_survives_timed_expiry(self):
        """Expiring one boost leaves others alone."""
        self.accumulator.register_boost("s", "Cash", "P", 0.5)
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 10)

        self.scheduler.advance(10)

        assert self.multiplier() == pytest.approx(1.5)

    def test_replacement_restarts_timer(self):
        """Re-registering a timed boost arms a fresh, single timer."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 10)
        self.scheduler.advance(8)
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 10)

        assert self.scheduler.pending_count == 1

        self.scheduler.advance(5)   # t=13, first timer would have fired at 10
        assert self.multiplier() == pytest.approx(2.0)

        self.scheduler.advance(5)   # t=18
        assert self.multiplier() == 1.0

    def test_timed_replaced_by_permanent(self):
        """Replacing a timed boost with a permanent one cancels expiry."""
        self.accumulator.register_boost("s", "Cash", "X", 1.0, 10)
        self.accumulator.register_boost("s", "Cash", "X", 2.0)

        self.scheduler.advance(60)

        assert self.multiplier() == pytest.approx(3.0)

    def test_late_original_callback_does_not_remove_replacement(self):
        """A stale callback firing after replacement leaves the new record."""
        self.accumulator.register_boost("s", "Cash", "X", 1.0, 10)
        original_token = self.accumulator._pending[("s", "Cash", "X")][0]
        original_callback = self.scheduler.callback_for(original_token)

        self.scheduler.advance(5)
        self.accumulator.register_boost("s", "Cash", "X", 3.0, 10)   # expires at t=15

        self.scheduler.advance(6)   # t=11
        original_callback()

        assert self.multiplier() == pytest.approx(4.0)
        assert self.accumulator.pending_expiries == 1

        self.scheduler.advance(4)   # t=15
        assert self.multiplier() == 1.0

    def test_expired_signal_emitted(self):
        """boost_expired carries the expired boost's identity."""
        expired = MagicMock()
        self.accumulator.boost_expired.connect(expired)
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 5)

        self.scheduler.advance(5)

        expired.assert_called_once()
        payload = expired.call_args[0][0]
        assert payload["subject_id"] == "s"
        assert payload["resource_kind"] == "Cash"
        assert payload["boost_id"] == "T"

    def test_early_fire_rearms(self):
        """A callback that fires before expires_at re-arms for the remainder."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 10)
        key = ("s", "Cash", "T")
        expires_at = self.accumulator._pending[key][1]

        self.scheduler.advance(4)
        self.accumulator._on_expiry(key, expires_at)

        assert self.multiplier() == pytest.approx(2.0)
        self.scheduler.advance(6)
        assert self.multiplier() == 1.0


class TestUncancellableScheduler(AccumulatorTestBase):
    """Correctness must not depend on the scheduler honouring cancel()."""

    scheduler_class = StubbornScheduler

    def test_replacement_survives_original_timer(self):
        """The original timer fires at t=10 but the replacement lives to t=15."""
        self.accumulator.register_boost("s", "Cash", "X", 1.0, 10)
        self.scheduler.advance(5)
        self.accumulator.register_boost("s", "Cash", "X", 3.0, 10)

        self.scheduler.advance(5)   # t=10: stale callback fires
        assert self.multiplier() == pytest.approx(4.0)

        self.scheduler.advance(5)   # t=15
        assert self.multiplier() == 1.0

    def test_removed_then_reregistered_permanent(self):
        """An old timer cannot remove a later permanent boost with the same id."""
        self.accumulator.register_boost("s", "Cash", "X", 1.0, 10)
        self.accumulator.remove_boost("s", "Cash", "X")
        self.accumulator.register_boost("s", "Cash", "X", 0.5)

        self.scheduler.advance(20)

        assert self.multiplier() == pytest.approx(1.5)


class TestLazyEviction(AccumulatorTestBase):
    """Expired records are evicted during multiplier computation."""

    scheduler_class = SilentScheduler

    def test_expired_boost_ignored_without_timer(self):
        """Even if the timer never fires, the boost stops counting on time."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 10)

        self.scheduler.advance(10)

        assert self.multiplier() == 1.0

    def test_compute_evicts_expired_record(self):
        """Computing the multiplier deletes the stale record and signals it."""
        expired = MagicMock()
        self.accumulator.boost_expired.connect(expired)
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 10)
        self.accumulator.register_boost("s", "Cash", "P", 0.5)

        self.scheduler.advance(11)
        self.multiplier()

        stored = self.profiles.get("s")[BOOSTS_KEY]["Cash"]
        assert list(stored) == ["P"]
        expired.assert_called_once()
        assert self.accumulator.pending_expiries == 0


class TestBonuses(AccumulatorTestBase):
    """Tests for per-peer and rebirth bonuses."""

    def add_present_peers(self, count: int) -> None:
        self.presence.join("s")
        for i in range(count):
            peer = f"peer{i}"
            self.presence.add_peer("s", peer)
            self.presence.join(peer)

    def test_peer_bonus(self):
        """Each present peer adds the per-peer magnitude."""
        self.add_present_peers(2)

        assert self.multiplier() == pytest.approx(1.2)

    def test_absent_peers_do_not_count(self):
        """Peers who are not present add nothing."""
        self.presence.add_peer("s", "offline")

        assert self.multiplier() == 1.0

    def test_rebirth_bonus(self):
        """Each rebirth adds the per-rebirth magnitude."""
        self.profiles.mutate("s", lambda p: p.update(Rebirths=3))

        assert self.multiplier() == pytest.approx(1.75)

    def test_unconfigured_kind_gets_no_bonus(self):
        """Peer and rebirth bonuses only apply to configured kinds."""
        self.add_present_peers(3)
        self.profiles.mutate("s", lambda p: p.update(Rebirths=2))

        assert self.multiplier("Gems") == 1.0

    def test_combined_scenario(self):
        """0.5 boost + 3 peers x 0.1 + 2 rebirths x 0.25 = 2.3."""
        self.add_present_peers(3)
        self.profiles.mutate("s", lambda p: p.update(Rebirths=2))
        self.accumulator.register_boost("s", "Cash", "Perm", 0.5)

        assert self.multiplier() == pytest.approx(2.3)

    def test_breakdown_reports_terms(self):
        """explain_multiplier exposes each term of the sum."""
        self.add_present_peers(3)
        self.profiles.mutate("s", lambda p: p.update(Rebirths=2))
        self.accumulator.register_boost("s", "Cash", "Perm", 0.5)

        breakdown = self.accumulator.explain_multiplier("s", "Cash")

        assert breakdown.boosts == pytest.approx(0.5)
        assert breakdown.peer_bonus == pytest.approx(0.3)
        assert breakdown.rebirth_bonus == pytest.approx(0.5)
        assert breakdown.total == pytest.approx(2.3)
        assert breakdown.peer_count == 3
        assert breakdown.rebirths == 2
        assert breakdown.active_boost_count == 1

    def test_presence_failure_counts_as_zero(self):
        """A failing presence lookup contributes nothing but does not abort."""
        presence = MagicMock()
        presence.peer_count.side_effect = RuntimeError("directory unreachable")
        accumulator = BoostAccumulator(self.profiles, presence, self.scheduler,
                                       BonusRules(bonus_table()))
        accumulator.register_boost("s", "Cash", "Perm", 0.5)

        assert accumulator.compute_multiplier("s", "Cash") == pytest.approx(1.5)

    def test_profile_failure_counts_as_zero(self):
        """A failing profile read yields the baseline."""
        profiles = MagicMock()
        profiles.get.side_effect = ConnectionError("store offline")
        accumulator = BoostAccumulator(profiles, self.presence, self.scheduler,
                                       BonusRules(bonus_table()))

        assert accumulator.compute_multiplier("s", "Cash") == 1.0

    @pytest.mark.parametrize("rebirths", ["many", float("inf"), float("nan"), None])
    def test_garbage_rebirth_count_counts_as_zero(self, rebirths):
        """An unreadable rebirth counter is treated as 0."""
        self.profiles.mutate("s", lambda p: p.update(Rebirths=rebirths))

        assert self.multiplier() == 1.0

    def test_malformed_record_is_skipped(self):
        """Unparseable raw records are ignored during aggregation."""
        self.accumulator.register_boost("s", "Cash", "Good", 1.0)
        self.profiles.mutate_boosts("s", "Cash", lambda b: b.update(Broken={"magnitude": -4}))

        assert self.multiplier() == pytest.approx(2.0)


class TestSubjectLifecycle(AccumulatorTestBase):
    """Tests for attaching and detaching subjects."""

    def test_detach_cancels_timers(self):
        """Detaching cancels the subject's pending expiries."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 10)

        self.accumulator.on_subject_detached("s")

        assert self.accumulator.pending_expiries == 0
        assert self.scheduler.pending_count == 0

    def test_detach_returns_profile(self):
        """The released profile still holds the boosts for saving."""
        self.accumulator.register_boost("s", "Cash", "P", 1.0)

        profile = self.accumulator.on_subject_detached("s")

        assert "P" in profile[BOOSTS_KEY]["Cash"]
        assert self.accumulator.register_boost("s", "Cash", "Q", 1.0) is False

    def test_late_callback_after_detach_is_dropped(self):
        """A timer firing for a departed subject does nothing."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 10)
        token = self.accumulator._pending[("s", "Cash", "T")][0]
        callback = self.scheduler.callback_for(token)
        self.accumulator.on_subject_detached("s")

        self.scheduler.advance(10)
        callback()

        assert not self.profiles.is_loaded("s")

    def test_reattach_rearms_timed_boosts(self):
        """Saved timed boosts resume counting down after re-attaching."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 30)
        self.accumulator.register_boost("s", "Cash", "P", 0.5)
        saved = self.accumulator.on_subject_detached("s")

        self.scheduler.advance(10)
        armed = self.accumulator.on_subject_attached("s", saved)

        assert armed == 1
        assert self.multiplier() == pytest.approx(2.5)
        self.scheduler.advance(20)
        assert self.multiplier() == pytest.approx(1.5)

    def test_saved_profile_survives_json(self):
        """A detached profile goes through json and comes back with working timers."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 30)
        self.accumulator.register_boost("s", "Cash", "P", 0.5)
        saved = json.loads(json.dumps(self.accumulator.on_subject_detached("s")))

        self.scheduler.advance(10)
        armed = self.accumulator.on_subject_attached("s", saved)

        assert armed == 1
        assert self.multiplier() == pytest.approx(2.5)
        self.scheduler.advance(20)
        assert self.multiplier() == pytest.approx(1.5)
        assert list(self.profiles.get("s")[BOOSTS_KEY]["Cash"]) == ["P"]

    def test_reattach_drops_boosts_expired_while_away(self):
        """Boosts that ran out while detached are evicted on attach."""
        self.accumulator.register_boost("s", "Cash", "T", 1.0, 30)
        saved = self.accumulator.on_subject_detached("s")

        self.scheduler.advance(60)
        armed = self.accumulator.on_subject_attached("s", saved)

        assert armed == 0
        assert "Cash" not in self.profiles.get("s")[BOOSTS_KEY]

    def test_attach_keeps_already_loaded_profile(self):
        """Attaching twice without data keeps existing boosts."""
        self.accumulator.register_boost("s", "Cash", "P", 1.0)

        self.accumulator.on_subject_attached("s")

        assert self.multiplier() == pytest.approx(2.0)

    def test_lifecycle_signals(self):
        """Attach and detach are announced."""
        attached = MagicMock()
        detached = MagicMock()
        self.accumulator.subject_attached.connect(attached)
        self.accumulator.subject_detached.connect(detached)

        self.accumulator.on_subject_attached("t")
        self.accumulator.on_subject_detached("t")

        attached.assert_called_once_with("t")
        detached.assert_called_once_with("t")


class TestAccumulatorSignals(AccumulatorTestBase):
    """Tests for registration and removal signals."""

    def test_registered_signal(self):
        """boost_registered fires with the stored magnitude."""
        registered = MagicMock()
        self.accumulator.boost_registered.connect(registered)

        self.accumulator.register_boost("s", "Cash", "A", 0.75)

        payload = registered.call_args[0][0]
        assert payload["boost_id"] == "A"
        assert payload["magnitude"] == 0.75
        assert payload["expires_at"] is None

    def test_removed_signal_only_when_present(self):
        """boost_removed fires only for boosts that existed."""
        removed = MagicMock()
        self.accumulator.boost_removed.connect(removed)

        self.accumulator.remove_boost("s", "Cash", "Missing")
        removed.assert_not_called()

        self.accumulator.register_boost("s", "Cash", "A", 1.0)
        self.accumulator.remove_boost("s", "Cash", "A")
        removed.assert_called_once()
