from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from plugin_server.plugins.models import (
    PluginDependencies,
    PluginInclude,
    PluginInfo,
    PluginType,
    ReleaseState,
    SignatureStatus,
    SignatureType,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PluginListItem(CamelModel):
    id: str
    name: str
    type: PluginType
    category: str = ""
    info: PluginInfo
    dependencies: PluginDependencies
    latest_version: str = ""
    has_update: bool = False
    default_nav_url: str = ""
    state: ReleaseState = ReleaseState.STABLE
    signature: SignatureStatus
    signature_type: SignatureType = SignatureType.NONE
    signature_org: str = ""
    enabled: bool = False
    pinned: bool = False


class PluginSettingDTO(CamelModel):
    type: PluginType
    id: str
    name: str
    info: PluginInfo
    dependencies: PluginDependencies
    includes: list[PluginInclude] = Field(default_factory=list)
    base_url: str = ""
    module: str = ""
    default_nav_url: str = ""
    latest_version: str = ""
    has_update: bool = False
    state: ReleaseState = ReleaseState.STABLE
    signature: SignatureStatus
    signature_type: SignatureType = SignatureType.NONE
    signature_org: str = ""
    enabled: bool = False
    pinned: bool = False
    json_data: dict[str, Any] | None = None
    secure_json_fields: dict[str, bool] = Field(default_factory=dict)


class UpdatePluginSettingCmd(CamelModel):
    enabled: bool = False
    pinned: bool = False
    json_data: dict[str, Any] | None = None
    secure_json_data: dict[str, str] | None = None
    plugin_version: str = ""

    # Taken from the route and the signed-in user, never from the body
    plugin_id: str = Field(default="", exclude=True)
    org_id: int = Field(default=0, exclude=True)


class InstallPluginCommand(CamelModel):
    version: str = ""


class PluginErrorDTO(CamelModel):
    plugin_id: str
    error_code: str


class MessageResponse(BaseModel):
    message: str
