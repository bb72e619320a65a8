"""
BoostLedger Data Models

Pydantic models for boost records and bonus configuration tables.
"""

from models.boost import BoostRecord, utcnow
from models.bonus import (
    BonusTable,
    PerPeerBonusConfig,
    RebirthBonusConfig,
    RebirthSettings,
)

__all__ = [
    "BoostRecord",
    "utcnow",
    "BonusTable",
    "PerPeerBonusConfig",
    "RebirthBonusConfig",
    "RebirthSettings",
]
