"""Service wiring and lifecycle.

One store instance per process is shared by the abuse ledger, the token
service and the traffic controller. The application lifespan connects it on
startup and closes it on shutdown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from freereads.adapters.store import (
    AbstractKeyValueStore,
    InMemoryKeyValueStore,
    RedisKeyValueStore,
)
from freereads.core.config import Settings, settings as default_settings
from freereads.services.blacklist_service import BlacklistService
from freereads.services.session_service import SessionService
from freereads.services.token_service import TokenService
from freereads.services.traffic_control import TrafficController
from freereads.services.user_directory import AbstractUserDirectory, InMemoryUserDirectory

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: AbstractKeyValueStore
    ledger: BlacklistService
    tokens: TokenService
    traffic: TrafficController
    directory: AbstractUserDirectory
    sessions: SessionService


def build_store(config: Settings) -> AbstractKeyValueStore:
    """Redis when enabled, otherwise a process-local store."""
    if not config.store.enabled:
        return InMemoryKeyValueStore()
    return RedisKeyValueStore(
        config.store.url,
        retry_attempts=config.store.retry_attempts,
        backoff_base_seconds=config.store.backoff_base_seconds,
        backoff_cap_seconds=config.store.backoff_cap_seconds,
        socket_timeout_seconds=config.store.socket_timeout_seconds,
    )


def build_services(
    config: Settings | None = None,
    *,
    store: AbstractKeyValueStore | None = None,
    directory: AbstractUserDirectory | None = None,
) -> ServiceContainer:
    """Construct every service around one shared store.

    Args:
        config: Settings to use; the global settings by default.
        store: Store override (tests inject an in-memory store).
        directory: User directory override.
    """
    config = config or default_settings
    store = store if store is not None else build_store(config)
    directory = directory if directory is not None else InMemoryUserDirectory()

    ledger = BlacklistService(
        store,
        config.blacklist,
        user_revocation_ttl_seconds=config.auth.refresh_ttl_seconds,
    )
    tokens = TokenService(store, config.auth)
    traffic = TrafficController(config.rate_limit, config.speed_limit, ledger)
    return ServiceContainer(
        settings=config,
        store=store,
        ledger=ledger,
        tokens=tokens,
        traffic=traffic,
        directory=directory,
        sessions=SessionService(directory, tokens, ledger),
    )


async def startup(services: ServiceContainer) -> None:
    connected = await services.store.connect()
    backend = await services.traffic.select_store(services.store)
    logger.info(
        "app.startup",
        extra={"store": services.store.name, "store_connected": connected, "limiter_backend": backend},
    )


async def shutdown(services: ServiceContainer) -> None:
    await services.store.close()
    logger.info("app.shutdown", extra={"store": services.store.name})
