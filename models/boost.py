"""
Boost records - named additive bonuses on a resource's earn-rate multiplier.
"""

import math
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class BoostRecord(BaseModel):
    """
    A single boost owned by a subject's profile.

    Magnitudes are deltas on top of the 1.0 baseline:
    a magnitude of 1.0 means "+100%", 0.5 means "+50%".
    A record without expires_at is permanent.
    """
    id: str = Field(..., min_length=1)
    resource_kind: str = Field(..., min_length=1)
    magnitude: float = Field(..., ge=0.0)
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_update: datetime = Field(default_factory=utcnow)

    @field_validator("magnitude")
    @classmethod
    def magnitude_is_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("Magnitude must be a finite number")
        return v

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: datetime) -> bool:
        """Check whether the boost has run out at the given time."""
        return self.expires_at is not None and now >= self.expires_at

    def remaining_seconds(self, now: datetime) -> Optional[float]:
        """Seconds left before expiry, or None for permanent boosts."""
        if self.expires_at is None:
            return None
        return max(0.0, (self.expires_at - now).total_seconds())

    def to_raw(self) -> dict:
        """Serialize into the JSON-safe dict form kept in a profile."""
        return self.model_dump(mode="json")

    @classmethod
    def from_raw(cls, raw: dict) -> "BoostRecord":
        return cls.model_validate(raw)
