from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from freereads.core.auth import get_services
from freereads.core.container import ServiceContainer

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(services: Annotated[ServiceContainer, Depends(get_services)]) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems. The service stays "ok"
    while the store is down because every component degrades to local state;
    the store fields tell operators when that is happening.

    Returns:
        dict: status, store name and readiness, active limiter backend.
    """

    return {
        "status": "ok",
        "store": services.store.name,
        "store_ready": services.store.is_ready(),
        "limiter_backend": services.traffic.backend,
    }
