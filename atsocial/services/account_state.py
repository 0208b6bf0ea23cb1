from __future__ import annotations

import logging
from typing import Any, Dict

from atsocial.core.errors import Conflict
from atsocial.core.time import now_iso
from atsocial.models import Profile
from atsocial.services.profiles import ProfileStore

logger = logging.getLogger(__name__)

DEFAULT_STATE = {
    "status": "active",
    "updated_at": None,
    "suspended_at": None,
    "deleted_at": None,
}

# deleted is terminal
TRANSITIONS = {
    "active": {"suspended", "deleted"},
    "suspended": {"active", "deleted"},
    "deleted": set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


class AccountStates:
    def __init__(self, profiles: ProfileStore) -> None:
        self.profiles = profiles

    def get_account_state(self, did: str) -> Dict[str, Any]:
        profile = self.profiles.get_profile(did)
        if not profile:
            return dict(DEFAULT_STATE)
        return {
            "status": profile.account_status,
            "updated_at": profile.updated_at,
            "suspended_at": profile.suspended_at,
            "deleted_at": profile.deleted_at,
        }

    def _transition(self, did: str, target: str, **extra: Any) -> Profile:
        current = self.profiles.require_profile(did).account_status
        if not can_transition(current, target):
            raise Conflict(f"Cannot move account from {current} to {target}")
        logger.info("account %s: %s -> %s", did, current, target)
        return self.profiles.set_status(did, target, **extra)

    def suspend(self, did: str) -> Profile:
        return self._transition(did, "suspended", suspendedAt=now_iso())

    def reactivate(self, did: str) -> Profile:
        return self._transition(did, "active")
