"""
FastAPI dependency getters for the plugin collaborators.

The registry and backend client live on app.state for the lifetime of the
process; the rest are built per request around the request's DB session.
Tests replace any of them through app.dependency_overrides.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_server.config import settings
from plugin_server.database import get_db
from plugin_server.plugins.backend import BackendPluginClient
from plugin_server.plugins.context import PluginContextProvider
from plugin_server.plugins.dashboards import PluginDashboardManager
from plugin_server.plugins.registry import PluginRegistry
from plugin_server.services.quota import QuotaService


def get_plugin_registry(request: Request) -> PluginRegistry:
    return request.app.state.plugin_registry


def get_backend_client(request: Request) -> BackendPluginClient:
    return request.app.state.backend_client


async def get_plugin_context_provider(
    registry: PluginRegistry = Depends(get_plugin_registry),
    db: AsyncSession = Depends(get_db),
) -> PluginContextProvider:
    return PluginContextProvider(registry, db)


async def get_dashboard_manager(
    registry: PluginRegistry = Depends(get_plugin_registry),
    db: AsyncSession = Depends(get_db),
) -> PluginDashboardManager:
    return PluginDashboardManager(registry, db, app_sub_url=settings.app_sub_url)


async def get_quota_service(db: AsyncSession = Depends(get_db)) -> QuotaService:
    return QuotaService(db, org_dashboard_limit=settings.quota_org_dashboard)
