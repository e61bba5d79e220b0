"""
Shared FastAPI dependencies.

Routers import common dependencies from here (pagination, gateway config,
the callback reconciler) so tests can override them in one place.
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import GatewayConfig, settings
from database import get_session_factory
from services.reconciliation_service import CallbackReconciler


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


def get_gateway_config(request: Request) -> GatewayConfig:
    """
    The gateway configuration frozen at startup.

    Falls back to building it from settings when the app was mounted without
    going through main.py.
    """
    config = getattr(request.app.state, "gateway_config", None)
    if config is None:
        config = settings.gateway_config()
        request.app.state.gateway_config = config
    return config


def get_callback_reconciler(
    config: GatewayConfig = Depends(get_gateway_config),
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> CallbackReconciler:
    return CallbackReconciler(config, session_factory)
