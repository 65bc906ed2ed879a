"""
Dashboard Routes

POST /api/dashboards/import → import a dashboard, optionally from an app plugin (editor+)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from plugin_server.auth import SignedInUser, require_org_role
from plugin_server.constants.roles import OrgRole
from plugin_server.dependencies import get_dashboard_manager, get_quota_service
from plugin_server.exceptions import (
    BadRequestError,
    ErrorCode,
    ForbiddenError,
    InternalError,
    NotFoundError,
    PluginServerError,
    PreconditionFailedError,
    UnprocessableError,
)
from plugin_server.plugins import errors
from plugin_server.plugins.dashboards import PluginDashboardManager
from plugin_server.schemas.dashboards import ImportDashboardCommand, PluginDashboardInfo
from plugin_server.services.quota import DASHBOARD_TARGET, QuotaService

router = APIRouter(prefix="/api/dashboards", tags=["Dashboards"])
logger = logging.getLogger(__name__)


def dashboard_save_error(err: Exception) -> PluginServerError:
    """Map a dashboard import failure to the error returned to the caller."""
    if isinstance(err, errors.DashboardWithSameNameExistsError):
        return PreconditionFailedError(str(err), details={"status": "name-exists"})
    if isinstance(err, errors.DashboardVersionMismatchError):
        return PreconditionFailedError(str(err), details={"status": "version-mismatch"})
    if isinstance(err, errors.DashboardNotFoundError):
        return NotFoundError(str(err))
    if isinstance(err, errors.PluginNotFoundError):
        return NotFoundError(str(err), ErrorCode.PLUGIN_NOT_FOUND)
    if isinstance(
        err,
        (
            errors.DashboardInputMissingError,
            errors.DashboardTitleEmptyError,
            errors.DashboardWithSameUIDExistsError,
            errors.InvalidDashboardPathError,
        ),
    ):
        return BadRequestError(str(err))
    return InternalError("Failed to save dashboard", err)


@router.post("/import", response_model=PluginDashboardInfo)
async def import_dashboard(
    cmd: ImportDashboardCommand,
    user: SignedInUser = Depends(require_org_role(OrgRole.EDITOR)),
    quota: QuotaService = Depends(get_quota_service),
    manager: PluginDashboardManager = Depends(get_dashboard_manager),
) -> PluginDashboardInfo:
    if not cmd.plugin_id and cmd.dashboard is None:
        raise UnprocessableError("Dashboard must be set")

    try:
        limit_reached = await quota.quota_reached(user.org_id, DASHBOARD_TARGET)
    except SQLAlchemyError as err:
        raise InternalError("failed to get quota", err) from err
    if limit_reached:
        raise ForbiddenError("Quota reached", ErrorCode.QUOTA_REACHED)

    try:
        info, _dashboard = await manager.import_dashboard(
            plugin_id=cmd.plugin_id,
            path=cmd.path,
            org_id=user.org_id,
            folder_id=cmd.folder_id,
            dashboard=cmd.dashboard,
            overwrite=cmd.overwrite,
            inputs=cmd.inputs,
            user=user,
        )
    except (errors.PluginError, SQLAlchemyError, OSError, ValueError) as err:
        logger.info("Dashboard import into org %s failed: %s", user.org_id, err)
        raise dashboard_save_error(err) from err

    return info
