"""
Plugin Routes

GET  /api/plugins                          → list installed plugins
GET  /api/plugins/errors                   → plugins refused at load time (org admin)
GET  /api/plugins/{id}/settings            → plugin definition + org settings
POST /api/plugins/{id}/settings            → update org settings (org admin)
GET  /api/plugins/{id}/dashboards          → dashboards shipped by the plugin (org admin)
GET  /api/plugins/{id}/markdown/{name}     → README / CHANGELOG style docs
GET  /api/plugins/{id}/health              → backend health check
GET  /api/plugins/{id}/metrics             → backend metrics (org admin)
ANY  /api/plugins/{id}/resources/{path}    → proxied to the backend process
POST /api/plugins/{id}/install             → install from the catalog (server admin)
POST /api/plugins/{id}/uninstall           → remove an external plugin (server admin)
GET  /public/plugins/{id}/{path}           → static plugin files, no auth
"""

from __future__ import annotations

import json
import logging
import posixpath
from email.utils import parsedate
from pathlib import Path

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.datastructures import Headers
from starlette.staticfiles import NotModifiedResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_server.auth import SignedInUser, get_current_user, require_org_role, require_server_admin
from plugin_server.config import settings
from plugin_server.constants.roles import OrgRole
from plugin_server.database import get_db
from plugin_server.dependencies import (
    get_backend_client,
    get_dashboard_manager,
    get_plugin_context_provider,
    get_plugin_registry,
)
from plugin_server.exceptions import (
    BadRequestError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    InternalError,
    NotFoundError,
    NotImplementedAPIError,
    PluginNotFoundError,
    PluginServerError,
    ServiceUnavailableError,
)
from plugin_server.plugins import errors
from plugin_server.plugins.backend import BackendPluginClient, HealthStatus, ResourceRequest
from plugin_server.plugins.context import PluginContext, PluginContextProvider
from plugin_server.plugins.dashboards import PluginDashboardManager
from plugin_server.plugins.models import PluginDef, ReleaseState
from plugin_server.plugins.registry import PluginRegistry
from plugin_server.schemas.dashboards import PluginDashboardInfo
from plugin_server.schemas.plugins import (
    InstallPluginCommand,
    MessageResponse,
    PluginErrorDTO,
    PluginListItem,
    PluginSettingDTO,
    UpdatePluginSettingCmd,
)
from plugin_server.services import plugin_settings

router = APIRouter(prefix="/api/plugins", tags=["Plugins"])
public_router = APIRouter(prefix="/public/plugins", tags=["Plugin assets"])
logger = logging.getLogger(__name__)

RESOURCE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


# ── Error translation ──────────────────────────────────────────────────────────


def translate_plugin_request_error(err: Exception) -> PluginServerError:
    """Map a backend client failure to the error returned to the caller."""
    if isinstance(err, errors.PluginNotRegisteredError):
        return PluginNotFoundError("Plugin not found")
    if isinstance(err, errors.MethodNotImplementedError):
        return NotFoundError("Not found")
    if isinstance(err, errors.HealthCheckFailedError):
        return InternalError("Plugin health check failed", err, ErrorCode.PLUGIN_HEALTH_CHECK_FAILED)
    if isinstance(err, errors.PluginUnavailableError):
        return ServiceUnavailableError("Plugin unavailable", err)
    return InternalError("Plugin request failed", err)


def translate_install_error(err: Exception) -> PluginServerError:
    if isinstance(err, errors.InvalidPluginIdError):
        return BadRequestError("Invalid plugin id", details={"plugin_id": err.plugin_id})
    if isinstance(err, errors.DuplicatePluginError):
        return ConflictError("Plugin already installed", ErrorCode.PLUGIN_ALREADY_INSTALLED)
    if isinstance(err, errors.VersionUnsupportedError):
        return ConflictError("Plugin version not supported", ErrorCode.PLUGIN_VERSION_UNSUPPORTED)
    if isinstance(err, errors.VersionNotFoundError):
        return NotFoundError("Plugin version not found", ErrorCode.PLUGIN_VERSION_NOT_FOUND)
    if isinstance(err, errors.CatalogResponseError):
        return PluginServerError(err.message, status_code=err.status_code, error_code=ErrorCode.PLUGIN_CATALOG_ERROR)
    if isinstance(err, errors.InstallCorePluginError):
        return ForbiddenError("Cannot install or change a Core plugin", ErrorCode.PLUGIN_CORE_PROTECTED)
    return InternalError("Failed to install plugin", err)


def translate_uninstall_error(err: Exception) -> PluginServerError:
    if isinstance(err, errors.PluginNotInstalledError):
        return NotFoundError("Plugin not installed", ErrorCode.PLUGIN_NOT_FOUND)
    if isinstance(err, errors.UninstallCorePluginError):
        return ForbiddenError("Cannot uninstall a Core plugin", ErrorCode.PLUGIN_CORE_PROTECTED)
    if isinstance(err, errors.UninstallOutsideOfPluginDirError):
        return ForbiddenError("Cannot uninstall a plugin outside of the plugins directory")
    return InternalError("Failed to uninstall plugin", err)


# ── Helpers ────────────────────────────────────────────────────────────────────


def _get_plugin_or_404(registry: PluginRegistry, plugin_id: str, message: str = "Plugin not found") -> PluginDef:
    plugin = registry.plugin(plugin_id)
    if plugin is None:
        raise PluginNotFoundError(message, plugin_id=plugin_id)
    return plugin


async def _get_plugin_context(provider: PluginContextProvider, plugin_id: str, user: SignedInUser) -> PluginContext:
    try:
        ctx = await provider.get(plugin_id, user)
    except (errors.PluginError, SQLAlchemyError) as err:
        raise InternalError("Failed to get plugin settings", err) from err
    if ctx is None:
        raise PluginNotFoundError("Plugin not found", plugin_id=plugin_id)
    return ctx


def clean_relative_path(path: str) -> str:
    """Normalise a request path so that ".." segments cannot climb above its root."""
    return posixpath.normpath(posixpath.join("/", path)).lstrip("/")


def is_not_modified(response_headers: Headers, request_headers: Headers) -> bool:
    """Match If-None-Match against the ETag, then If-Modified-Since against Last-Modified."""
    if_none_match = request_headers.get("if-none-match")
    etag = response_headers.get("etag")
    if if_none_match and etag and etag in [tag.strip(" W/") for tag in if_none_match.split(",")]:
        return True

    if_modified_since = parsedate(request_headers.get("if-modified-since", ""))
    last_modified = parsedate(response_headers.get("last-modified", ""))
    return if_modified_since is not None and last_modified is not None and if_modified_since >= last_modified


def _markdown_path(plugin: PluginDef, name: str) -> Path:
    return plugin.plugin_dir / clean_relative_path(f"{name}.md")


def read_plugin_markdown(plugin: PluginDef, name: str) -> bytes:
    """Read <NAME>.md, falling back to <name>.md.  Empty when neither exists."""
    path = _markdown_path(plugin, name.upper())
    if not path.exists():
        path = _markdown_path(plugin, name.lower())
    if not path.exists():
        return b""
    return path.read_bytes()


def _list_item(plugin: PluginDef) -> PluginListItem:
    return PluginListItem(
        id=plugin.id,
        name=plugin.name,
        type=plugin.type,
        category=plugin.category,
        info=plugin.info,
        dependencies=plugin.dependencies,
        latest_version=plugin.catalog_version,
        has_update=plugin.catalog_has_update,
        default_nav_url=plugin.default_nav_url,
        state=plugin.state,
        signature=plugin.signature,
        signature_type=plugin.signature_type,
        signature_org=plugin.signature_org,
    )


# ── Listing ────────────────────────────────────────────────────────────────────


@router.get("", response_model=list[PluginListItem])
async def get_plugin_list(
    type_filter: str | None = Query(None, alias="type"),
    enabled: str | None = Query(None),
    embedded: str | None = Query(None),
    core: str | None = Query(None),
    user: SignedInUser = Depends(get_current_user),
    registry: PluginRegistry = Depends(get_plugin_registry),
    db: AsyncSession = Depends(get_db),
) -> list[PluginListItem]:
    """List installed plugins visible to the user, sorted by name."""
    # Only admins may see external plugins
    if not user.has_role(OrgRole.ADMIN):
        core = "1"

    plugins = registry.plugins()
    try:
        settings_map = await plugin_settings.get_plugin_settings_with_defaults(db, user.org_id, plugins)
    except SQLAlchemyError as err:
        raise InternalError("Failed to get list of plugins", err) from err

    result = []
    for plugin in plugins:
        if embedded == "0" and plugin.included_in_app_id:
            continue
        if (core == "0" and plugin.is_core()) or (core == "1" and not plugin.is_core()):
            continue
        if type_filter and type_filter != plugin.type.value:
            continue
        if plugin.state == ReleaseState.ALPHA and not settings.plugins_enable_alpha:
            continue

        item = _list_item(plugin)
        setting = settings_map.get(plugin.id)
        if setting is not None:
            item.enabled = setting.enabled
            item.pinned = setting.pinned

        if not item.default_nav_url or not item.enabled:
            item.default_nav_url = f"{settings.app_sub_url}/plugins/{plugin.id}/"

        if enabled == "1" and not item.enabled:
            continue
        if plugin.builtin:
            continue

        result.append(item)

    result.sort(key=lambda i: i.name)
    return result


@router.get("/errors", response_model=list[PluginErrorDTO])
async def get_plugin_errors_list(
    _user: SignedInUser = Depends(require_org_role(OrgRole.ADMIN)),
    registry: PluginRegistry = Depends(get_plugin_registry),
) -> list[PluginErrorDTO]:
    return [PluginErrorDTO(plugin_id=e.plugin_id, error_code=e.error_code) for e in registry.plugin_errors()]


# ── Settings ───────────────────────────────────────────────────────────────────


@router.get("/{plugin_id}/settings", response_model=PluginSettingDTO)
async def get_plugin_setting_by_id(
    plugin_id: str,
    user: SignedInUser = Depends(get_current_user),
    registry: PluginRegistry = Depends(get_plugin_registry),
    db: AsyncSession = Depends(get_db),
) -> PluginSettingDTO:
    plugin = _get_plugin_or_404(registry, plugin_id, "Plugin not found, no installed plugin with that id")

    dto = PluginSettingDTO(
        type=plugin.type,
        id=plugin.id,
        name=plugin.name,
        info=plugin.info,
        dependencies=plugin.dependencies,
        includes=plugin.includes,
        base_url=plugin.base_url,
        module=plugin.module,
        default_nav_url=plugin.default_nav_url,
        latest_version=plugin.catalog_version,
        has_update=plugin.catalog_has_update,
        state=plugin.state,
        signature=plugin.signature,
        signature_type=plugin.signature_type,
        signature_org=plugin.signature_org,
    )

    if plugin.is_app():
        dto.enabled = plugin.auto_enabled
        dto.pinned = plugin.auto_enabled

    try:
        setting = await plugin_settings.get_plugin_setting_by_id(db, plugin_id, user.org_id)
    except errors.PluginSettingNotFoundError:
        pass
    except SQLAlchemyError as err:
        raise InternalError("Failed to get login settings", err) from err
    else:
        dto.enabled = setting.enabled
        dto.pinned = setting.pinned
        dto.json_data = setting.json_data
        dto.secure_json_fields = setting.secure_json_fields()

    return dto


@router.post("/{plugin_id}/settings", response_model=MessageResponse)
async def update_plugin_setting(
    plugin_id: str,
    cmd: UpdatePluginSettingCmd,
    user: SignedInUser = Depends(require_org_role(OrgRole.ADMIN)),
    registry: PluginRegistry = Depends(get_plugin_registry),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    if registry.plugin(plugin_id) is None:
        raise NotFoundError("Plugin not installed", ErrorCode.PLUGIN_NOT_FOUND)

    cmd = cmd.model_copy(update={"org_id": user.org_id, "plugin_id": plugin_id})
    try:
        await plugin_settings.update_plugin_setting(db, cmd)
    except SQLAlchemyError as err:
        raise InternalError("Failed to update plugin setting", err) from err

    return MessageResponse(message="Plugin settings updated")


# ── Dashboards & docs ──────────────────────────────────────────────────────────


@router.get("/{plugin_id}/dashboards", response_model=list[PluginDashboardInfo])
async def get_plugin_dashboards(
    plugin_id: str,
    user: SignedInUser = Depends(require_org_role(OrgRole.ADMIN)),
    manager: PluginDashboardManager = Depends(get_dashboard_manager),
) -> list[PluginDashboardInfo]:
    try:
        return await manager.get_plugin_dashboards(user.org_id, plugin_id)
    except errors.PluginNotFoundError as err:
        raise PluginNotFoundError(str(err), plugin_id=plugin_id) from err
    except (errors.PluginError, SQLAlchemyError, OSError, ValueError) as err:
        raise InternalError("Failed to get plugin dashboards", err) from err


@router.get("/{plugin_id}/markdown/{name}")
async def get_plugin_markdown(
    plugin_id: str,
    name: str,
    _user: SignedInUser = Depends(get_current_user),
    registry: PluginRegistry = Depends(get_plugin_registry),
) -> Response:
    plugin = registry.plugin(plugin_id)
    if plugin is None:
        raise PluginNotFoundError(str(errors.PluginNotFoundError(plugin_id)), plugin_id=plugin_id)

    try:
        content = read_plugin_markdown(plugin, name)
    except OSError as err:
        raise InternalError("Could not get markdown file", err) from err

    if not content:
        try:
            content = read_plugin_markdown(plugin, "readme")
        except OSError as err:
            raise NotImplementedAPIError("Could not get markdown file", err) from err

    return Response(content=content, media_type="text/plain; charset=utf-8")


# ── Backend plugins ────────────────────────────────────────────────────────────


@router.get("/{plugin_id}/health")
async def check_health(
    plugin_id: str,
    user: SignedInUser = Depends(get_current_user),
    provider: PluginContextProvider = Depends(get_plugin_context_provider),
    client: BackendPluginClient = Depends(get_backend_client),
) -> JSONResponse:
    ctx = await _get_plugin_context(provider, plugin_id, user)

    try:
        result = await client.check_health(ctx)
    except errors.PluginError as err:
        raise translate_plugin_request_error(err) from err

    payload = {"status": result.status.value, "message": result.message}

    if result.json_details:
        try:
            details = json.loads(result.json_details)
            if details is not None and not isinstance(details, dict):
                raise ValueError("details must be a JSON object")
        except ValueError as err:
            raise InternalError("Failed to unmarshal detailed response from backend plugin", err) from err
        if details is not None:
            payload["details"] = details

    status_code = 200 if result.status == HealthStatus.OK else 503
    return JSONResponse(payload, status_code=status_code)


@router.get("/{plugin_id}/metrics")
async def collect_plugin_metrics(
    plugin_id: str,
    _user: SignedInUser = Depends(require_org_role(OrgRole.ADMIN)),
    registry: PluginRegistry = Depends(get_plugin_registry),
    client: BackendPluginClient = Depends(get_backend_client),
) -> Response:
    plugin = _get_plugin_or_404(registry, plugin_id)

    try:
        metrics = await client.collect_metrics(plugin.id)
    except errors.PluginError as err:
        raise translate_plugin_request_error(err) from err

    return Response(content=metrics, media_type="text/plain")


@router.api_route("/{plugin_id}/resources/{path:path}", methods=RESOURCE_METHODS)
async def call_resource(
    plugin_id: str,
    path: str,
    request: Request,
    user: SignedInUser = Depends(get_current_user),
    provider: PluginContextProvider = Depends(get_plugin_context_provider),
    client: BackendPluginClient = Depends(get_backend_client),
) -> Response:
    ctx = await _get_plugin_context(provider, plugin_id, user)

    resource_request = ResourceRequest(
        method=request.method,
        query=request.url.query,
        headers=request.headers.items(),
        body=await request.body(),
    )
    try:
        resp = await client.call_resource(ctx, resource_request, path)
    except errors.PluginError as err:
        raise translate_plugin_request_error(err) from err

    response = Response(content=resp.body, status_code=resp.status)
    for name, value in resp.headers:
        response.headers.append(name, value)
    return response


# ── Install / uninstall ────────────────────────────────────────────────────────


@router.post("/{plugin_id}/install", response_model=MessageResponse)
async def install_plugin(
    plugin_id: str,
    cmd: InstallPluginCommand | None = None,
    _user: SignedInUser = Depends(require_server_admin),
    registry: PluginRegistry = Depends(get_plugin_registry),
) -> MessageResponse:
    version = cmd.version if cmd is not None else ""
    try:
        await registry.add(plugin_id, version)
    except (errors.PluginError, OSError) as err:
        logger.warning("Installing plugin %s failed: %s", plugin_id, err)
        raise translate_install_error(err) from err

    return MessageResponse(message="Plugin installed")


@router.post("/{plugin_id}/uninstall", response_model=MessageResponse)
async def uninstall_plugin(
    plugin_id: str,
    _user: SignedInUser = Depends(require_server_admin),
    registry: PluginRegistry = Depends(get_plugin_registry),
) -> MessageResponse:
    try:
        await registry.remove(plugin_id)
    except (errors.PluginError, OSError) as err:
        logger.warning("Uninstalling plugin %s failed: %s", plugin_id, err)
        raise translate_uninstall_error(err) from err

    return MessageResponse(message="Plugin uninstalled")


# ── Static assets ──────────────────────────────────────────────────────────────


@public_router.get("/{plugin_id}/{path:path}")
async def get_plugin_assets(
    plugin_id: str,
    path: str,
    request: Request,
    registry: PluginRegistry = Depends(get_plugin_registry),
) -> Response:
    plugin = _get_plugin_or_404(registry, plugin_id)

    rel = clean_relative_path(path)

    if not plugin.included_in_signature(rel):
        logger.warning(
            "Access to plugin file %s of %s will be forbidden in upcoming versions as it is not included in the plugin signature",
            rel,
            plugin_id,
        )

    file_path = plugin.plugin_dir.resolve() / rel
    try:
        stat_result = file_path.stat()
    except FileNotFoundError as err:
        raise NotFoundError("Plugin file not found", ErrorCode.PLUGIN_FILE_NOT_FOUND) from err
    except OSError as err:
        raise InternalError("Could not open plugin file", err) from err

    if not file_path.is_file():
        raise NotFoundError("Plugin file not found", ErrorCode.PLUGIN_FILE_NOT_FOUND)

    if settings.is_development:
        cache_control = "max-age=0, must-revalidate, no-cache"
    else:
        cache_control = "public, max-age=3600"

    response = FileResponse(file_path, stat_result=stat_result, headers={"Cache-Control": cache_control})
    if is_not_modified(response.headers, request.headers):
        return NotModifiedResponse(response.headers)
    return response
