"""
Plugin definitions.

PluginDef is the in-memory record of one installed plugin, built by the
loader from the plugin's `plugin.json`.  The nested JSON sections (info,
dependencies, includes) are pydantic models so they parse straight from the
file and serialize back out in the API with their original camelCase keys.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PluginType(str, enum.Enum):
    DATASOURCE = "datasource"
    PANEL = "panel"
    APP = "app"
    RENDERER = "renderer"
    SECRETS_MANAGER = "secretsmanager"


class ReleaseState(str, enum.Enum):
    STABLE = ""
    BETA = "beta"
    ALPHA = "alpha"


class SignatureStatus(str, enum.Enum):
    INTERNAL = "internal"
    VALID = "valid"
    INVALID = "invalid"
    MODIFIED = "modified"
    UNSIGNED = "unsigned"


class SignatureType(str, enum.Enum):
    NONE = ""
    GRAFANA = "grafana"
    COMMERCIAL = "commercial"
    COMMUNITY = "community"
    PRIVATE = "private"


class PluginClass(str, enum.Enum):
    CORE = "core"
    EXTERNAL = "external"


# ── plugin.json sections ──────────────────────────────────────────────────────


class _PluginJSONModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PluginAuthor(_PluginJSONModel):
    name: str = ""
    url: str = ""


class PluginLink(_PluginJSONModel):
    name: str = ""
    url: str = ""


class PluginLogos(_PluginJSONModel):
    small: str = ""
    large: str = ""


class PluginScreenshot(_PluginJSONModel):
    name: str = ""
    path: str = ""


class PluginInfo(_PluginJSONModel):
    author: PluginAuthor = Field(default_factory=PluginAuthor)
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    links: list[PluginLink] = Field(default_factory=list)
    logos: PluginLogos = Field(default_factory=PluginLogos)
    build: dict[str, Any] = Field(default_factory=dict)
    screenshots: list[PluginScreenshot] = Field(default_factory=list)
    version: str = ""
    updated: str = ""


class PluginDependency(_PluginJSONModel):
    id: str
    type: str = ""
    name: str = ""
    version: str = ""


class PluginDependencies(_PluginJSONModel):
    grafana_dependency: str = ""
    grafana_version: str = "*"
    plugins: list[PluginDependency] = Field(default_factory=list)


class PluginInclude(_PluginJSONModel):
    name: str = ""
    path: str = ""
    type: str = ""
    component: str = ""
    role: str = ""
    add_to_nav: bool = False
    default_nav: bool = False
    slug: str = ""
    icon: str = ""
    uid: str = ""
    id: str = ""


# ── Plugin definition ─────────────────────────────────────────────────────────


@dataclass
class PluginDef:
    """
    One installed plugin.

    Attributes:
        id:                 Unique plugin id, e.g. "grafana-clock-panel".
        plugin_dir:         Absolute directory the plugin was loaded from.
        plugin_class:       core (shipped in-tree) or external.
        included_in_app_id: Id of the app plugin this one is nested under.
        signed_files:       Relative paths listed in the signature manifest,
                            None when the plugin carries no manifest.
        catalog_version:    Latest version known to the remote catalog.
    """

    id: str
    name: str
    type: PluginType
    plugin_dir: Path
    plugin_class: PluginClass = PluginClass.EXTERNAL
    info: PluginInfo = field(default_factory=PluginInfo)
    dependencies: PluginDependencies = field(default_factory=PluginDependencies)
    includes: list[PluginInclude] = field(default_factory=list)
    category: str = ""
    state: ReleaseState = ReleaseState.STABLE
    backend: bool = False
    executable: str = ""
    auto_enabled: bool = False
    builtin: bool = False
    included_in_app_id: str = ""
    base_url: str = ""
    module: str = ""
    default_nav_url: str = ""
    signature: SignatureStatus = SignatureStatus.UNSIGNED
    signature_type: SignatureType = SignatureType.NONE
    signature_org: str = ""
    signed_files: set[str] | None = None
    catalog_version: str = ""
    catalog_has_update: bool = False

    @classmethod
    def from_json(cls, data: dict[str, Any], plugin_dir: Path, plugin_class: PluginClass) -> PluginDef:
        """Build a definition from a parsed plugin.json document."""
        if not isinstance(data, dict):
            raise ValueError(f"plugin.json in {plugin_dir} is not a JSON object")
        plugin_id = data.get("id")
        if not plugin_id or not isinstance(plugin_id, str):
            raise ValueError(f"plugin.json in {plugin_dir} has no id")

        return cls(
            id=plugin_id,
            name=data.get("name", plugin_id),
            type=PluginType(data.get("type", "")),
            plugin_dir=plugin_dir,
            plugin_class=plugin_class,
            info=PluginInfo.model_validate(data.get("info") or {}),
            dependencies=PluginDependencies.model_validate(data.get("dependencies") or {}),
            includes=[PluginInclude.model_validate(i) for i in data.get("includes") or []],
            category=data.get("category", ""),
            state=ReleaseState(data.get("state", "")),
            backend=bool(data.get("backend", False)),
            executable=data.get("executable", ""),
            auto_enabled=bool(data.get("autoEnabled", False)),
            builtin=bool(data.get("builtIn", False)),
        )

    @property
    def version(self) -> str:
        return self.info.version

    def is_core(self) -> bool:
        return self.plugin_class == PluginClass.CORE

    def is_external(self) -> bool:
        return self.plugin_class == PluginClass.EXTERNAL

    def is_app(self) -> bool:
        return self.type == PluginType.APP

    def dashboard_includes(self) -> list[PluginInclude]:
        return [i for i in self.includes if i.type == "dashboard"]

    def included_in_signature(self, rel_path: str) -> bool:
        """Return True if `rel_path` (relative to plugin_dir) is covered by the signature."""
        if self.is_core():
            return True
        if not self.signed_files:
            return False
        return Path(rel_path).as_posix() in self.signed_files
