"""
Bonus Rules - per-peer and rebirth contributions to a multiplier.
"""

from typing import Optional

from models.bonus import BonusTable, PerPeerBonusConfig, RebirthBonusConfig


class BonusRules:
    """
    Looks up the configured bonus for a resource kind and turns
    peer / rebirth counts into additive multiplier deltas.

    A resource kind without a config entry gets no bonus of that type.
    """

    def __init__(self, table: Optional[BonusTable] = None):
        self._table = table or BonusTable()

    @property
    def table(self) -> BonusTable:
        return self._table

    def reload(self, table: BonusTable) -> None:
        """Swap in a new bonus table."""
        self._table = table

    def per_peer(self, resource_kind: str) -> Optional[PerPeerBonusConfig]:
        return self._table.per_peer_for(resource_kind)

    def per_rebirth(self, resource_kind: str) -> Optional[RebirthBonusConfig]:
        return self._table.rebirth_for(resource_kind)

    def has_peer_bonus(self, resource_kind: str) -> bool:
        return self.per_peer(resource_kind) is not None

    def has_rebirth_bonus(self, resource_kind: str) -> bool:
        return self.per_rebirth(resource_kind) is not None

    def peer_bonus(self, resource_kind: str, peer_count: int) -> float:
        """
        Delta from present peers.

        2 friends at 0.1 each is +0.2.
        """
        config = self.per_peer(resource_kind)
        if config is None or peer_count <= 0:
            return 0.0
        return config.per_peer_magnitude * peer_count

    def rebirth_bonus(self, resource_kind: str, rebirths: int) -> float:
        """Delta from completed rebirths."""
        config = self.per_rebirth(resource_kind)
        if config is None or rebirths <= 0:
            return 0.0
        return config.per_rebirth_magnitude * rebirths

    def rebirth_cost(self, rebirths: int) -> float:
        """Cost of the next rebirth after `rebirths` completed ones."""
        return self._table.rebirth_settings.cost_for(rebirths)

    @property
    def rebirth_resource(self) -> str:
        return self._table.rebirth_settings.resource_kind
