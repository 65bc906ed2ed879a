from typing import Any

from pydantic import Field

from plugin_server.schemas.plugins import CamelModel


class ImportDashboardInput(CamelModel):
    name: str
    type: str = ""
    plugin_id: str = ""
    value: str = ""


class ImportDashboardCommand(CamelModel):
    dashboard: dict[str, Any] | None = None
    path: str = ""
    overwrite: bool = False
    inputs: list[ImportDashboardInput] = Field(default_factory=list)
    plugin_id: str = ""
    folder_id: int = 0


class PluginDashboardInfo(CamelModel):
    uid: str = ""
    plugin_id: str
    title: str = ""
    imported: bool = False
    imported_uri: str = ""
    imported_url: str = ""
    slug: str = ""
    dashboard_id: int = 0
    folder_id: int = 0
    imported_revision: int = 0
    revision: int = 0
    description: str = ""
    path: str = ""
    removed: bool = False
