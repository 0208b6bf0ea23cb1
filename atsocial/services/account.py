from __future__ import annotations

import logging
from typing import Optional, Protocol

from atsocial.core.errors import PartialFailure
from atsocial.metrics import record_account_deletion
from atsocial.models import AccountDeletionResult, ExternalDeletionResult, LocalDeletionResult
from atsocial.services.identity import IdentityLinkStore
from atsocial.services.profiles import ProfileStore

logger = logging.getLogger(__name__)


class ExternalAccountDeleter(Protocol):
    def delete_account(
        self, identity: str, recovered_secret: Optional[str], access_token: str
    ) -> ExternalDeletionResult: ...


class SecretDecrypter(Protocol):
    def decrypt(self, ciphertext: str) -> str: ...


class AccountLifecycle:
    """Two-phase account deletion: local soft delete, then the hosted account.

    The local phase always commits first. A failure in the external phase
    raises :class:`PartialFailure` whose ``result`` shows the local phase
    done and the external phase not, so nobody mistakes it for a clean
    deletion. Posts, likes and follows are left in place.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        identity: IdentityLinkStore,
        deleter: Optional[ExternalAccountDeleter] = None,
        decrypter: Optional[SecretDecrypter] = None,
    ) -> None:
        self.profiles = profiles
        self.identity = identity
        self.deleter = deleter
        self.decrypter = decrypter

    def _fail(self, step: str, reason: str, result: AccountDeletionResult) -> PartialFailure:
        record_account_deletion("partial")
        logger.warning("account %s deleted locally, %s failed: %s", result.local.did, step, reason)
        return PartialFailure(step, reason, result=result)

    def delete_account(self, did: str) -> AccountDeletionResult:
        profile = self.profiles.soft_delete_profile(did)
        result = AccountDeletionResult(
            local=LocalDeletionResult(did=did, status=profile.account_status, deleted_at=profile.deleted_at)
        )

        link = self.identity.find_email_link(did, with_provider_token=True)
        if not link or not link.provider_access_token:
            raise self._fail("external_lookup", "no provider access token on file", result)

        secret: Optional[str] = None
        if link.provider_secret_ciphertext:
            if self.decrypter is None:
                raise self._fail("secret_recovery", "no secret decrypter configured", result)
            try:
                secret = self.decrypter.decrypt(link.provider_secret_ciphertext)
            except Exception as exc:
                raise self._fail("secret_recovery", str(exc) or type(exc).__name__, result) from exc

        if self.deleter is None:
            raise self._fail("external_delete", "no external account deleter configured", result)
        try:
            result.external = self.deleter.delete_account(did, secret, link.provider_access_token)
        except Exception as exc:
            result.external = ExternalDeletionResult(attempted=True, success=False, error=str(exc))
            raise self._fail("external_delete", str(exc) or type(exc).__name__, result) from exc
        if not result.external.success:
            raise self._fail("external_delete", result.external.error or "unknown error", result)

        record_account_deletion("complete")
        logger.info("account %s fully deleted", did)
        return result
