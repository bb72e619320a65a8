"""
In-memory Profile Store.

Holds one nested dict per loaded subject:

    {
        "Currencies": {"Cash": 120.0},
        "Rebirths": 2,
        "Boosts": {"Cash": {"Weekend": {...raw BoostRecord...}}},
    }

Profiles exist only while a subject is loaded. Saving them anywhere
durable is the host's job.
"""

import copy
import logging
from typing import Callable, Hashable, Iterator, Optional

logger = logging.getLogger(__name__)

CURRENCIES_KEY = "Currencies"
REBIRTHS_KEY = "Rebirths"
BOOSTS_KEY = "Boosts"

Profile = dict
BoostMap = dict


def new_profile() -> Profile:
    """Template for a subject seen for the first time."""
    return {
        CURRENCIES_KEY: {},
        REBIRTHS_KEY: 0,
        BOOSTS_KEY: {},
    }


class InMemoryProfileStore:
    """
    Profile store keyed by subject id.

    get() hands out a deep copy so readers can never mutate stored state;
    all writes go through mutate() / mutate_boosts().
    """

    def __init__(self):
        self._profiles: dict[Hashable, Profile] = {}

    def load(self, subject_id: Hashable, data: Optional[Profile] = None) -> Profile:
        """
        Make a subject's profile available.

        Args:
            subject_id: The subject being loaded
            data: Previously saved profile data; a fresh template when omitted

        Returns:
            A copy of the loaded profile
        """
        profile = new_profile()
        if data:
            profile.update(copy.deepcopy(data))
        self._profiles[subject_id] = profile
        logger.debug("Loaded profile for %s", subject_id)
        return copy.deepcopy(profile)

    def release(self, subject_id: Hashable) -> Optional[Profile]:
        """Drop a subject's profile, returning its final contents."""
        profile = self._profiles.pop(subject_id, None)
        if profile is not None:
            logger.debug("Released profile for %s", subject_id)
        return profile

    def is_loaded(self, subject_id: Hashable) -> bool:
        return subject_id in self._profiles

    def subjects(self) -> Iterator[Hashable]:
        return iter(list(self._profiles))

    def get(self, subject_id: Hashable) -> Optional[Profile]:
        """Snapshot of a profile, or None if it is not loaded."""
        profile = self._profiles.get(subject_id)
        if profile is None:
            return None
        return copy.deepcopy(profile)

    def mutate(self, subject_id: Hashable, fn: Callable[[Profile], None]) -> bool:
        """
        Apply fn to the stored profile in place.

        Returns:
            False when the profile is not loaded (fn is not called)
        """
        profile = self._profiles.get(subject_id)
        if profile is None:
            return False
        fn(profile)
        return True

    def mutate_boosts(self, subject_id: Hashable, resource_kind: str,
                      fn: Callable[[BoostMap], None]) -> bool:
        """Apply fn to the {boost_id: raw_record} map for one resource kind."""
        def apply(profile: Profile) -> None:
            boosts = profile.setdefault(BOOSTS_KEY, {})
            kind_boosts = boosts.setdefault(resource_kind, {})
            fn(kind_boosts)
            if not kind_boosts:
                boosts.pop(resource_kind, None)

        return self.mutate(subject_id, apply)
