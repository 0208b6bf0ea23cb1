from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from atsocial.core.crypto import KmsSecretDecrypter
from atsocial.core.settings import S, Settings
from atsocial.core.store import Store
from atsocial.core.tables import build_store
from atsocial.metrics import METRICS_ENABLED, metrics_endpoint, set_app_info
from atsocial.services.account import AccountLifecycle, ExternalAccountDeleter, SecretDecrypter
from atsocial.services.account_state import AccountStates
from atsocial.services.content import ContentStore
from atsocial.services.graph import SocialGraphStore
from atsocial.services.identity import IdentityLinkStore
from atsocial.services.pds import PdsAccountDeleter
from atsocial.services.profiles import ProfileStore

__version__ = "0.1.0"


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or S
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@dataclass
class Services:
    store: Store
    identity: IdentityLinkStore
    profiles: ProfileStore
    content: ContentStore
    graph: SocialGraphStore
    account_states: AccountStates
    accounts: AccountLifecycle


def create_services(
    store: Optional[Store] = None,
    settings: Optional[Settings] = None,
    *,
    deleter: Optional[ExternalAccountDeleter] = None,
    decrypter: Optional[SecretDecrypter] = None,
) -> Services:
    """Wire every store over one shared ``Store``.

    Without an explicit ``store`` the backend comes from ``STORE_BACKEND``.
    The PDS deleter and KMS decrypter are the default collaborators when the
    corresponding settings are present.
    """
    settings = settings or S
    store = store if store is not None else build_store(settings)
    identity = IdentityLinkStore(store)
    profiles = ProfileStore(store, identity, settings)
    content = ContentStore(store, profiles, settings)
    graph = SocialGraphStore(store, profiles, content, settings)
    if deleter is None and settings.pds_base_url:
        deleter = PdsAccountDeleter(settings)
    if decrypter is None and settings.kms_key_id:
        decrypter = KmsSecretDecrypter()
    return Services(
        store=store,
        identity=identity,
        profiles=profiles,
        content=content,
        graph=graph,
        account_states=AccountStates(profiles),
        accounts=AccountLifecycle(profiles, identity, deleter, decrypter),
    )


def create_app() -> FastAPI:
    """Operational surface only: the metrics endpoint."""
    configure_logging()
    app = FastAPI(title="atsocial", version=__version__)
    if METRICS_ENABLED:
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)
    return app
