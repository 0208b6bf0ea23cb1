from __future__ import annotations

import logging
from typing import Optional

import requests

from atsocial.core.settings import S, Settings
from atsocial.models import ExternalDeletionResult

logger = logging.getLogger(__name__)

DELETE_ACCOUNT_NSID = "com.atproto.server.deleteAccount"


class PdsAccountDeleter:
    """Deletes the hosted account on the user's PDS over XRPC."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        self.settings = settings or S
        self.session = session or requests.Session()

    def delete_account(self, identity: str, recovered_secret: Optional[str], access_token: str) -> ExternalDeletionResult:
        base = self.settings.pds_base_url
        if not base:
            return ExternalDeletionResult(attempted=False, success=False, error="PDS_BASE_URL not set")
        url = f"{base}/xrpc/{DELETE_ACCOUNT_NSID}"
        body = {"did": identity, "password": recovered_secret or "", "token": access_token}
        try:
            r = self.session.post(url, json=body, timeout=self.settings.pds_timeout_seconds)
        except requests.RequestException as exc:
            logger.warning("pds delete for %s failed: %s", identity, exc)
            return ExternalDeletionResult(attempted=True, success=False, error=str(exc))
        if r.status_code != 200:
            try:
                error = r.json().get("message") or r.json().get("error")
            except ValueError:
                error = None
            error = error or f"HTTP {r.status_code}"
            logger.warning("pds delete for %s rejected: %s", identity, error)
            return ExternalDeletionResult(attempted=True, success=False, error=error)
        return ExternalDeletionResult(attempted=True, success=True)
