"""Preference bag reset and default seeding for the demo account.

The backend replaces the whole preference bag on every update, so both the
reset and each seeding pass write a complete object.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Protocol

from ..models.reports import SeedOutcome
from .backend import Account, Users, is_rate_limited
from .throttle import Throttle

logger = logging.getLogger(__name__)

BASELINE_PREFERENCES: dict[str, Any] = {
    "followedAssociations": [],
    "theme": "light",
}

DEMO_BIO = "This is a demo account exploring VoxCampus. Any changes made will be reset when I log out."

ENHANCED_PREFERENCES: dict[str, Any] = {
    "notifications": {
        "enabled": True,
        "academicUpdates": True,
    },
    "profile": {
        "bio": DEMO_BIO,
        "interests": ["Technology", "Education"],
    },
}


class PreferenceStore(Protocol):
    async def get_prefs(self) -> dict: ...

    async def update_prefs(self, prefs: dict[str, Any]) -> dict: ...


class AccountPrefs:
    """Preferences of the identity behind a session or JWT."""

    def __init__(self, account: Account) -> None:
        self._account = account

    async def get_prefs(self) -> dict:
        return await self._account.get_prefs()

    async def update_prefs(self, prefs: dict[str, Any]) -> dict:
        return await self._account.update_prefs(prefs)


class UserPrefs:
    """Preferences of a specific user, written with the admin key."""

    def __init__(self, users: Users, user_id: str) -> None:
        self._users = users
        self.user_id = user_id

    async def get_prefs(self) -> dict:
        return await self._users.get_prefs(self.user_id)

    async def update_prefs(self, prefs: dict[str, Any]) -> dict:
        return await self._users.update_prefs(self.user_id, prefs)


def _log_failure(action: str, exc: Exception) -> None:
    if is_rate_limited(exc):
        logger.warning("Rate limit hit while %s: %s", action, exc)
    else:
        logger.error("Error while %s: %s", action, exc)


class PreferenceResetExecutor:
    """Overwrite the demo preference bag with the baseline. Idempotent."""

    def __init__(self, store: PreferenceStore, baseline: dict[str, Any] | None = None) -> None:
        self.store = store
        self.baseline = baseline if baseline is not None else BASELINE_PREFERENCES

    async def reset_preferences(self) -> bool:
        """Full replace, not a merge: accumulated keys must not survive."""
        try:
            await self.store.update_prefs(copy.deepcopy(self.baseline))
        except Exception as exc:
            _log_failure("resetting demo preferences", exc)
            return False
        logger.info("Demo preferences reset to baseline")
        return True


class DefaultPreferenceSeeder:
    """Seed a fresh demo session with a realistic, non-empty preference bag.

    Two passes keep each payload small: the essentials land first, and the
    enhanced block is layered on afterwards. Losing the second pass to a rate
    limit still leaves a usable session.
    """

    def __init__(self, store: PreferenceStore, throttle: Throttle, *, default_association_id: str) -> None:
        self.store = store
        self.throttle = throttle
        self.default_association_id = default_association_id

    def essential_preferences(self) -> dict[str, Any]:
        return {
            "followedAssociations": [self.default_association_id],
            "theme": BASELINE_PREFERENCES["theme"],
        }

    def enhanced_preferences(self) -> dict[str, Any]:
        return {**self.essential_preferences(), **copy.deepcopy(ENHANCED_PREFERENCES)}

    async def setup_demo_default_preferences(self) -> SeedOutcome:
        logger.info("Setting up default preferences for demo user (association %s)", self.default_association_id)
        try:
            await self.store.update_prefs(self.essential_preferences())
        except Exception as exc:
            _log_failure("setting essential demo preferences", exc)
            return SeedOutcome.FAILED
        logger.info("Essential demo preferences in place")

        await self.throttle.pause("between_seed_passes")

        try:
            await self.store.update_prefs(self.enhanced_preferences())
        except Exception as exc:
            _log_failure("setting enhanced demo preferences", exc)
            logger.info("Continuing with essential demo preferences only")
            return SeedOutcome.ESSENTIAL
        logger.info("Enhanced demo preferences in place")
        return SeedOutcome.ENHANCED
