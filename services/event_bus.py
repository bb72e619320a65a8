"""
Event Bus - Central signal hub for inter-module communication.

Hosts connect here rather than to the accumulator and currency engine
directly, so nametags, leaderboards or sound cues can react to boost
and currency changes without knowing who produced them.
"""

from PySide6.QtCore import QObject, Signal


class EventBus(QObject):
    """
    Central signal hub for BoostLedger.

    Usage:
        bus.boost_expired.connect(self._on_boost_expired)
        bus.balance_changed.connect(self._refresh_leaderstats)
    """

    # ============ Subject Lifecycle ============
    subject_attached = Signal(object)   # subject_id
    subject_detached = Signal(object)   # subject_id

    # ============ Boost Events ============
    boost_registered = Signal(object)   # {subject_id, resource_kind, boost_id, magnitude, expires_at}
    boost_removed = Signal(object)
    boost_expired = Signal(object)

    # ============ Currency Events ============
    balance_changed = Signal(object)    # {subject_id, resource_kind, balance, delta, multiplier}
    rebirth_completed = Signal(object)  # {subject_id, rebirths, cost}

    # ============ System Events ============
    system_message = Signal(str, str)   # (level, message) - e.g., ("info", "Report exported")

    def __init__(self):
        super().__init__()

    def emit_message(self, level: str, message: str) -> None:
        """Emit a system message (info, warning, error)."""
        self.system_message.emit(level, message)
