"""
Bonus configuration tables for per-peer and rebirth multiplier bonuses.
"""

from typing import Optional

from pydantic import BaseModel, Field, model_validator


def _factor_to_delta(entry, field_name: str) -> dict:
    if isinstance(entry, BaseModel):
        entry = entry.model_dump()
    entry = dict(entry)
    if field_name in entry:
        entry[field_name] = entry[field_name] - 1.0
    return entry


class PerPeerBonusConfig(BaseModel):
    """Bonus added once per concurrently present peer (e.g. friends in the server)."""
    resource_kind: str = Field(..., min_length=1)
    per_peer_magnitude: float = Field(..., ge=0.0)

    @classmethod
    def from_factor(cls, resource_kind: str, factor: float) -> "PerPeerBonusConfig":
        """Build from a legacy "1.1 means x1.1" factor by converting it to a delta."""
        return cls(resource_kind=resource_kind, per_peer_magnitude=factor - 1.0)


class RebirthBonusConfig(BaseModel):
    """Bonus added once per completed rebirth milestone."""
    resource_kind: str = Field(..., min_length=1)
    per_rebirth_magnitude: float = Field(..., ge=0.0)

    @classmethod
    def from_factor(cls, resource_kind: str, factor: float) -> "RebirthBonusConfig":
        """Build from a legacy "1.1 means x1.1" factor by converting it to a delta."""
        return cls(resource_kind=resource_kind, per_rebirth_magnitude=factor - 1.0)


class RebirthSettings(BaseModel):
    """What a rebirth costs and which resource pays for it."""
    resource_kind: str = Field(default="Cash", min_length=1)
    cost: float = Field(default=1000.0, gt=0.0)
    cost_scaling: float = Field(default=0.0, ge=0.0)

    def cost_for(self, rebirths: int) -> float:
        """Cost of the next rebirth after `rebirths` completed ones."""
        return self.cost + self.cost_scaling * rebirths


class BonusTable(BaseModel):
    """
    Configuration table read from settings.json.

    When legacy_factors is set, peer and rebirth values were written as
    multiplier factors (1.1 meaning x1.1) and are converted to deltas by
    subtracting 1.0 during validation.
    """
    legacy_factors: bool = Field(default=False, alias="legacyFactors")
    per_peer: list[PerPeerBonusConfig] = Field(default_factory=list, alias="perPeer")
    rebirth: list[RebirthBonusConfig] = Field(default_factory=list)
    rebirth_settings: RebirthSettings = Field(
        default_factory=RebirthSettings, alias="rebirthSettings"
    )

    model_config = {"populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def convert_legacy_factors(cls, data):
        if not isinstance(data, dict):
            return data
        if not (data.get("legacyFactors") or data.get("legacy_factors")):
            return data

        data = dict(data)
        for keys, field_name in ((("perPeer", "per_peer"), "per_peer_magnitude"),
                                 (("rebirth",), "per_rebirth_magnitude")):
            for key in keys:
                if key in data:
                    data[key] = [_factor_to_delta(entry, field_name) for entry in data[key]]

        # Converted values are deltas now; re-validating must not convert twice
        data.pop("legacy_factors", None)
        data["legacyFactors"] = False
        return data

    def per_peer_for(self, resource_kind: str) -> Optional[PerPeerBonusConfig]:
        for entry in self.per_peer:
            if entry.resource_kind == resource_kind:
                return entry
        return None

    def rebirth_for(self, resource_kind: str) -> Optional[RebirthBonusConfig]:
        for entry in self.rebirth:
            if entry.resource_kind == resource_kind:
                return entry
        return None
