"""
BoostLedger Engine

Multiplier and currency logic. Talks to the host only through the
profile store, presence directory and scheduler it is given.
"""

from engine.accumulator import BoostAccumulator, InvalidArgument, MultiplierBreakdown
from engine.bonuses import BonusRules
from engine.currency import CurrencyEngine
from engine.scheduler import ManualScheduler, QtScheduler, Scheduler

__all__ = [
    "BoostAccumulator",
    "InvalidArgument",
    "MultiplierBreakdown",
    "BonusRules",
    "CurrencyEngine",
    "ManualScheduler",
    "QtScheduler",
    "Scheduler",
]
