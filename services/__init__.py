"""
BoostLedger Services

Event hub, in-memory collaborators and report export.
"""

from services.event_bus import EventBus
from services.presence import InMemoryPresenceDirectory
from services.profile_store import InMemoryProfileStore

__all__ = ["EventBus", "InMemoryPresenceDirectory", "InMemoryProfileStore"]
