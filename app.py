"""
BoostLedger Application Controller

Top-level controller that wires together all application components.
"""

from pathlib import Path
from typing import Hashable, Optional

from PySide6.QtCore import QObject

from config import PATHS, load_bonus_table
from engine.accumulator import BoostAccumulator
from engine.bonuses import BonusRules
from engine.currency import CurrencyEngine
from engine.scheduler import QtScheduler, Scheduler
from models.bonus import BonusTable
from services.event_bus import EventBus
from services.export import BoostReportExporter
from services.presence import InMemoryPresenceDirectory
from services.profile_store import InMemoryProfileStore


class BoostLedgerApp(QObject):
    """
    Top-level application controller.

    The host calls on_subject_attached / on_subject_detached from its
    join and leave events, and everything else through the engines.
    """

    def __init__(self, scheduler: Optional[Scheduler] = None,
                 bonus_table: Optional[BonusTable] = None):
        """
        Args:
            scheduler: Timer service (default: QtScheduler on the current thread)
            bonus_table: Bonus configuration (default: read from settings.json)
        """
        super().__init__()

        # Core services
        self.event_bus = EventBus()
        self.scheduler = scheduler if scheduler is not None else QtScheduler(self)
        self.profiles = InMemoryProfileStore()
        self.presence = InMemoryPresenceDirectory()
        self.rules = BonusRules(bonus_table if bonus_table is not None else load_bonus_table())

        # Engines
        self.accumulator = BoostAccumulator(self.profiles, self.presence,
                                            self.scheduler, self.rules, parent=self)
        self.currency = CurrencyEngine(self.profiles, self.accumulator, parent=self)
        self.exporter = BoostReportExporter(self.accumulator, now_fn=self.scheduler.now)

        self._connect_signals()

    def _connect_signals(self) -> None:
        """Relay engine signals onto the event bus."""
        self.accumulator.subject_attached.connect(self.event_bus.subject_attached)
        self.accumulator.subject_detached.connect(self.event_bus.subject_detached)
        self.accumulator.boost_registered.connect(self.event_bus.boost_registered)
        self.accumulator.boost_removed.connect(self.event_bus.boost_removed)
        self.accumulator.boost_expired.connect(self.event_bus.boost_expired)
        self.currency.balance_changed.connect(self.event_bus.balance_changed)
        self.currency.rebirth_completed.connect(self.event_bus.rebirth_completed)

    # ============ Host Events ============

    def on_subject_attached(self, subject_id: Hashable, data: Optional[dict] = None) -> int:
        """Subject joined: mark present and load its profile."""
        self.presence.join(subject_id)
        return self.accumulator.on_subject_attached(subject_id, data)

    def on_subject_detached(self, subject_id: Hashable) -> Optional[dict]:
        """Subject left: release its profile and return it for saving."""
        self.presence.leave(subject_id)
        return self.accumulator.on_subject_detached(subject_id)

    def reload_bonuses(self, path: Optional[Path] = None) -> BonusTable:
        """Re-read the bonus table from settings.json."""
        table = load_bonus_table(path)
        self.rules.reload(table)
        self.event_bus.emit_message("info", "Bonus table reloaded")
        return table

    def export_report(self, filepath: Optional[Path] = None) -> Optional[Path]:
        """
        Write a CSV boost report for all attached subjects.

        Returns:
            The written path, or None if the export failed
        """
        if filepath is None:
            stamp = self.scheduler.now().strftime("%Y%m%d-%H%M%S")
            filepath = PATHS.exports / f"boosts-{stamp}.csv"
            filepath.parent.mkdir(parents=True, exist_ok=True)

        if self.exporter.export_csv(self.profiles.subjects(), filepath,
                                    resource_kinds=[self.rules.rebirth_resource]):
            self.event_bus.emit_message("info", f"Boost report exported to {filepath}")
            return filepath

        self.event_bus.emit_message("error", "Boost report export failed")
        return None
