"""
Currency Engine - balances, boosted earnings and rebirths.

Earnings are scaled by the accumulator's multiplier at the moment they
are awarded. A rebirth trades the configured amount of one currency for
a permanent step up in that currency's rebirth bonus.
"""

import logging
import math
from typing import Hashable, Optional

from PySide6.QtCore import QObject, Signal

from engine.accumulator import BoostAccumulator, InvalidArgument, read_rebirths, to_number
from services.profile_store import CURRENCIES_KEY, REBIRTHS_KEY

logger = logging.getLogger(__name__)


def _check_amount(amount: float, name: str = "amount") -> float:
    amount = to_number(amount, name)
    if not math.isfinite(amount) or amount < 0:
        raise InvalidArgument(f"{name} must be >= 0, got {amount}")
    return amount


class CurrencyEngine(QObject):
    """
    Reads and writes currency balances in the profile store.

    Like the accumulator, it reports a missing profile with a
    False / None return instead of raising.
    """

    # Signals
    balance_changed = Signal(object)    # {subject_id, resource_kind, balance, delta, multiplier}
    rebirth_completed = Signal(object)  # {subject_id, rebirths, cost}

    def __init__(self, profiles, accumulator: BoostAccumulator,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self._profiles = profiles
        self._accumulator = accumulator

    def balance(self, subject_id: Hashable, resource_kind: str) -> float:
        """Current balance; 0.0 when the subject or currency is unknown."""
        profile = self._profiles.get(subject_id)
        if profile is None:
            return 0.0
        return float(profile.get(CURRENCIES_KEY, {}).get(resource_kind, 0.0))

    def rebirths(self, subject_id: Hashable) -> int:
        profile = self._profiles.get(subject_id)
        if profile is None:
            return 0
        return read_rebirths(subject_id, profile)

    def award(self, subject_id: Hashable, resource_kind: str,
              base_amount: float) -> Optional[float]:
        """
        Credit base_amount scaled by the subject's current multiplier.

        Returns:
            The amount actually credited, or None if no profile is loaded
        """
        base_amount = _check_amount(base_amount, "base_amount")
        if not self._profiles.is_loaded(subject_id):
            return None

        multiplier = self._accumulator.compute_multiplier(subject_id, resource_kind)
        credited = base_amount * multiplier
        balance = self._add(subject_id, resource_kind, credited)
        if balance is None:
            return None

        self.balance_changed.emit({
            "subject_id": subject_id,
            "resource_kind": resource_kind,
            "balance": balance,
            "delta": credited,
            "multiplier": multiplier,
        })
        return credited

    def spend(self, subject_id: Hashable, resource_kind: str, amount: float) -> bool:
        """
        Debit amount if the balance covers it.

        Returns:
            False for insufficient funds or no loaded profile; nothing is debited
        """
        amount = _check_amount(amount)
        result = {}

        def debit(profile: dict) -> None:
            currencies = profile.setdefault(CURRENCIES_KEY, {})
            current = float(currencies.get(resource_kind, 0.0))
            if current < amount:
                return
            currencies[resource_kind] = current - amount
            result["balance"] = currencies[resource_kind]

        if not self._profiles.mutate(subject_id, debit) or "balance" not in result:
            logger.debug("Spend of %.2f %s refused for %s", amount, resource_kind, subject_id)
            return False

        self.balance_changed.emit({
            "subject_id": subject_id,
            "resource_kind": resource_kind,
            "balance": result["balance"],
            "delta": -amount,
            "multiplier": None,
        })
        return True

    def rebirth_cost(self, subject_id: Hashable) -> float:
        """Price of the subject's next rebirth."""
        return self._accumulator.rules.rebirth_cost(self.rebirths(subject_id))

    def rebirth(self, subject_id: Hashable) -> bool:
        """
        Perform a rebirth if the subject can afford it.

        Resets the paying currency to zero and increments the rebirth counter.

        Returns:
            False when the profile is not loaded or the balance is short
        """
        rules = self._accumulator.rules
        resource_kind = rules.rebirth_resource
        result = {}

        def reborn(profile: dict) -> None:
            rebirths = read_rebirths(subject_id, profile)
            cost = rules.rebirth_cost(rebirths)
            currencies = profile.setdefault(CURRENCIES_KEY, {})
            if float(currencies.get(resource_kind, 0.0)) < cost:
                return
            currencies[resource_kind] = 0.0
            profile[REBIRTHS_KEY] = rebirths + 1
            result["rebirths"] = rebirths + 1
            result["cost"] = cost

        if not self._profiles.mutate(subject_id, reborn) or not result:
            return False

        logger.info("Subject %s reached rebirth %d", subject_id, result["rebirths"])
        self.rebirth_completed.emit({"subject_id": subject_id, **result})
        return True

    def _add(self, subject_id: Hashable, resource_kind: str, amount: float) -> Optional[float]:
        result = {}

        def credit(profile: dict) -> None:
            currencies = profile.setdefault(CURRENCIES_KEY, {})
            currencies[resource_kind] = float(currencies.get(resource_kind, 0.0)) + amount
            result["balance"] = currencies[resource_kind]

        if not self._profiles.mutate(subject_id, credit):
            return None
        return result["balance"]
