"""
Plugin Dashboards

App plugins can ship dashboards (includes of type "dashboard").  This
module lists them together with their import state in an organization and
imports dashboards, from a plugin or posted directly, resolving the
template inputs declared under `__inputs`.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from plugin_server.models.dashboard import Dashboard
from plugin_server.plugins.errors import (
    DashboardInputMissingError,
    DashboardNotFoundError,
    DashboardTitleEmptyError,
    DashboardVersionMismatchError,
    DashboardWithSameNameExistsError,
    DashboardWithSameUIDExistsError,
    InvalidDashboardPathError,
    PluginNotFoundError,
)
from plugin_server.schemas.dashboards import ImportDashboardInput, PluginDashboardInfo
from plugin_server.utils.slugify import slugify

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from plugin_server.auth import SignedInUser
    from plugin_server.plugins.models import PluginDef
    from plugin_server.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

_TEMPLATE_VARIABLE = re.compile(r"\$\{(.+?)\}")


def generate_uid() -> str:
    return secrets.token_hex(7)


def evaluate_template(template: dict[str, Any], inputs: list[ImportDashboardInput]) -> dict[str, Any]:
    """
    Substitute `${NAME}` references with the values supplied in inputs.

    Every entry of the template's `__inputs` must be matched by an input of
    the same type, either by name or by the wildcard name "*".  The
    `__inputs` section itself is dropped from the result.
    """
    values: dict[str, str] = {}
    for declared in template.get("__inputs") or []:
        name = declared.get("name", "")
        match = next(
            (i for i in inputs if i.type == declared.get("type", "") and i.name in (name, "*")),
            None,
        )
        if match is None:
            raise DashboardInputMissingError(name)
        values[name] = match.value

    def substitute(node: Any) -> Any:
        if isinstance(node, dict):
            return {k: substitute(v) for k, v in node.items()}
        if isinstance(node, list):
            return [substitute(v) for v in node]
        if isinstance(node, str):
            return _TEMPLATE_VARIABLE.sub(lambda m: values.get(m.group(1), m.group(0)), node)
        return node

    return {k: substitute(v) for k, v in template.items() if k != "__inputs"}


def _revision(data: dict[str, Any]) -> int:
    try:
        return int(data.get("revision") or 1)
    except (TypeError, ValueError):
        return 1


class PluginDashboardManager:
    def __init__(self, registry: PluginRegistry, db: AsyncSession, app_sub_url: str = ""):
        self.registry = registry
        self.db = db
        self.app_sub_url = app_sub_url.rstrip("/")

    def _plugin(self, plugin_id: str) -> PluginDef:
        plugin = self.registry.plugin(plugin_id)
        if plugin is None:
            raise PluginNotFoundError(plugin_id)
        return plugin

    @staticmethod
    def load_plugin_dashboard(plugin: PluginDef, path: str) -> dict[str, Any]:
        """Read a dashboard JSON file shipped inside the plugin directory."""
        file_path = (plugin.plugin_dir / path).resolve()
        if not file_path.is_relative_to(plugin.plugin_dir.resolve()):
            raise InvalidDashboardPathError(path)

        try:
            return json.loads(file_path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise DashboardNotFoundError(f"Dashboard '{path}' not found in plugin {plugin.id}") from e

    def _info(self, plugin_id: str, path: str, data: dict[str, Any], existing: Dashboard | None) -> PluginDashboardInfo:
        info = PluginDashboardInfo(
            uid=data.get("uid") or "",
            plugin_id=plugin_id,
            title=data.get("title") or "",
            path=path,
            revision=_revision(data),
            description=data.get("description") or "",
        )
        if existing is not None:
            info.uid = existing.uid
            info.imported = True
            info.imported_uri = f"db/{existing.slug}"
            info.imported_url = f"{self.app_sub_url}{existing.url}"
            info.imported_revision = _revision(existing.data or {})
            info.dashboard_id = existing.id
            info.folder_id = existing.folder_id
            info.slug = existing.slug
        return info

    # ── Listing ───────────────────────────────────────────────────────────────

    async def get_plugin_dashboards(self, org_id: int, plugin_id: str) -> list[PluginDashboardInfo]:
        """List the plugin's dashboards and whether each one is imported in org_id."""
        plugin = self._plugin(plugin_id)

        result = await self.db.execute(
            select(Dashboard).where(Dashboard.org_id == org_id, Dashboard.plugin_id == plugin_id)
        )
        imported = list(result.scalars().all())
        matched: set[int] = set()

        dashboards = []
        for include in plugin.dashboard_includes():
            data = self.load_plugin_dashboard(plugin, include.path)
            uid = data.get("uid") or ""
            existing = next(
                (d for d in imported if (uid and d.uid == uid) or (not uid and d.title == data.get("title"))),
                None,
            )
            if existing is not None:
                matched.add(existing.id)
            dashboards.append(self._info(plugin_id, include.path, data, existing))

        for dashboard in imported:
            if dashboard.id in matched:
                continue
            info = self._info(plugin_id, "", dashboard.data or {}, dashboard)
            info.title = dashboard.title
            info.removed = True
            dashboards.append(info)

        return dashboards

    # ── Import ────────────────────────────────────────────────────────────────

    async def import_dashboard(
        self,
        plugin_id: str,
        path: str,
        org_id: int,
        folder_id: int,
        dashboard: dict[str, Any] | None,
        overwrite: bool,
        inputs: list[ImportDashboardInput],
        user: SignedInUser,
    ) -> tuple[PluginDashboardInfo, Dashboard]:
        """
        Import a dashboard into org_id.

        With plugin_id set the dashboard is read from the plugin's `path`;
        otherwise `dashboard` is used as posted.
        """
        if plugin_id:
            template = self.load_plugin_dashboard(self._plugin(plugin_id), path)
        else:
            template = dashboard or {}

        data = evaluate_template(template, inputs)
        saved = await self.save_dashboard(org_id, folder_id, data, overwrite, plugin_id or None)
        logger.info("Dashboard %s imported into org %s by %s", saved.uid, org_id, user.login)

        return self._info(plugin_id, path, saved.data, saved), saved

    async def save_dashboard(
        self,
        org_id: int,
        folder_id: int,
        data: dict[str, Any],
        overwrite: bool,
        plugin_id: str | None = None,
    ) -> Dashboard:
        """
        Insert or update a dashboard in org_id.

        An existing dashboard is found by uid.  A posted `id` that names a
        different dashboard than the uid does is a uid conflict.  Another
        dashboard with the same title in the folder blocks the save unless
        `overwrite` is set; with it, that dashboard is updated in place and
        keeps its own uid, while the uid-matched dashboard is left untouched.
        """
        title = (data.get("title") or "").strip()
        if not title:
            raise DashboardTitleEmptyError()

        uid = data.get("uid") or ""
        target: Dashboard | None = None

        if uid:
            result = await self.db.execute(select(Dashboard).where(Dashboard.org_id == org_id, Dashboard.uid == uid))
            target = result.scalars().first()

            dashboard_id = data.get("id")
            if target is not None and isinstance(dashboard_id, int) and dashboard_id and dashboard_id != target.id:
                by_id = await self.db.get(Dashboard, dashboard_id)
                if by_id is not None and by_id.org_id == org_id:
                    raise DashboardWithSameUIDExistsError(uid)

            if target is not None and not overwrite and data.get("version") != target.version:
                raise DashboardVersionMismatchError()

        result = await self.db.execute(
            select(Dashboard).where(
                Dashboard.org_id == org_id,
                Dashboard.folder_id == folder_id,
                Dashboard.title == title,
            )
        )
        same_title = result.scalars().first()
        if same_title is not None and (target is None or same_title.id != target.id):
            if not overwrite:
                raise DashboardWithSameNameExistsError(title)
            target = same_title

        if target is None:
            target = Dashboard(org_id=org_id, uid=uid or generate_uid(), version=0)
            self.db.add(target)

        target.version = (target.version or 0) + 1
        target.folder_id = folder_id
        target.title = title
        target.slug = slugify(title)
        target.plugin_id = plugin_id
        target.data = {**data, "uid": target.uid, "title": title, "version": target.version}

        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(target)
        return target
