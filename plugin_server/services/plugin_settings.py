"""
Plugin settings store.

One row per (org, plugin).  A missing row means the plugin runs with the
defaults from its plugin.json.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_server.models.plugin_setting import PluginSetting
from plugin_server.plugins.errors import PluginSettingNotFoundError
from plugin_server.plugins.models import PluginDef
from plugin_server.schemas.plugins import UpdatePluginSettingCmd

logger = logging.getLogger(__name__)


async def get_plugin_settings(db: AsyncSession, org_id: int) -> dict[str, PluginSetting]:
    """Return the org's plugin settings keyed by plugin id."""
    result = await db.execute(select(PluginSetting).where(PluginSetting.org_id == org_id))
    return {s.plugin_id: s for s in result.scalars().all()}


async def get_plugin_setting_by_id(db: AsyncSession, plugin_id: str, org_id: int) -> PluginSetting:
    """
    Fetch a single plugin setting.

    Raises:
        PluginSettingNotFoundError: the org has never configured this plugin.
    """
    result = await db.execute(
        select(PluginSetting).where(PluginSetting.org_id == org_id, PluginSetting.plugin_id == plugin_id)
    )
    setting = result.scalars().first()
    if setting is None:
        raise PluginSettingNotFoundError(plugin_id, org_id)
    return setting


async def update_plugin_setting(db: AsyncSession, cmd: UpdatePluginSettingCmd) -> PluginSetting:
    """
    Insert or update the setting for cmd.plugin_id in cmd.org_id.

    Secure values are merged key by key so a client can rotate one secret
    without resending the others.
    """
    result = await db.execute(
        select(PluginSetting).where(PluginSetting.org_id == cmd.org_id, PluginSetting.plugin_id == cmd.plugin_id)
    )
    setting = result.scalars().first()

    if setting is None:
        setting = PluginSetting(org_id=cmd.org_id, plugin_id=cmd.plugin_id, secure_json_data={})
        db.add(setting)

    setting.enabled = cmd.enabled
    setting.pinned = cmd.pinned
    setting.json_data = cmd.json_data
    if cmd.plugin_version:
        setting.plugin_version = cmd.plugin_version
    if cmd.secure_json_data:
        setting.secure_json_data = {**(setting.secure_json_data or {}), **cmd.secure_json_data}

    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to save settings of plugin %s for org %s", cmd.plugin_id, cmd.org_id)
        raise

    await db.refresh(setting)
    logger.info("Plugin settings updated: %s (org %s, enabled=%s)", cmd.plugin_id, cmd.org_id, cmd.enabled)
    return setting


@dataclass
class PluginSettingInfo:
    plugin_id: str
    org_id: int
    enabled: bool
    pinned: bool = False


async def get_plugin_settings_with_defaults(
    db: AsyncSession, org_id: int, plugins: list[PluginDef]
) -> dict[str, PluginSettingInfo]:
    """
    Effective enabled/pinned state of every plugin in an org.

    Stored settings win.  Otherwise datasources and panels are enabled, and
    apps are enabled and pinned only when they declare autoEnabled.
    """
    result = {
        plugin_id: PluginSettingInfo(plugin_id, org_id, bool(s.enabled), bool(s.pinned))
        for plugin_id, s in (await get_plugin_settings(db, org_id)).items()
    }
    for plugin in plugins:
        if plugin.id in result:
            continue
        if not plugin.is_app():
            result[plugin.id] = PluginSettingInfo(plugin.id, org_id, enabled=True)
        elif plugin.auto_enabled:
            result[plugin.id] = PluginSettingInfo(plugin.id, org_id, enabled=True, pinned=True)
    return result
