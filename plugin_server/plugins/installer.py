"""
Plugin Installer

Talks to the remote plugin catalog: resolves which version to install,
downloads the package archive and unpacks it into the plugins directory.
Also answers "is there a newer version?" for installed external plugins.
"""

from __future__ import annotations

import io
import logging
import platform
import re
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from plugin_server.plugins.errors import (
    CatalogResponseError,
    InvalidPluginArchiveError,
    InvalidPluginIdError,
    PluginError,
    VersionNotFoundError,
    VersionUnsupportedError,
)

if TYPE_CHECKING:
    from plugin_server.plugins.models import PluginDef

logger = logging.getLogger(__name__)

PLUGIN_ID_PATTERN = re.compile(r"^[a-zA-Z0-9][\w.-]*$")

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "i386": "386",
    "i686": "386",
}


def system_info() -> str:
    """Return the catalog's os-arch key for this host, e.g. "linux-amd64"."""
    machine = platform.machine().lower()
    return f"{platform.system().lower()}-{_ARCH_ALIASES.get(machine, machine)}"


def version_key(version: str) -> tuple[int, ...]:
    """Numeric sort key for dotted versions; non-numeric parts sort as 0."""
    return tuple(int(p) if p.isdigit() else 0 for p in re.split(r"[.\-+]", version))


def plugin_install_dir(plugin_id: str, plugins_dir: Path) -> Path:
    """
    Return the directory `plugin_id` installs into.

    Raises InvalidPluginIdError for any id that would name something other
    than a direct child of `plugins_dir`.
    """
    if not PLUGIN_ID_PATTERN.match(plugin_id):
        raise InvalidPluginIdError(plugin_id)
    target = plugins_dir / plugin_id
    if target.resolve().parent != plugins_dir.resolve():
        raise InvalidPluginIdError(plugin_id)
    return target


class PluginInstaller:
    def __init__(self, catalog_url: str, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        self.catalog_url = catalog_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.catalog_url, timeout=self.timeout, transport=self._transport)

    async def _get(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await client.get(url, **kwargs)
        except httpx.TimeoutException as e:
            raise PluginError(f"plugin catalog request timed out: {url}") from e
        except httpx.RequestError as e:
            raise PluginError(f"plugin catalog request failed: {e}") from e

        if 400 <= response.status_code < 500:
            try:
                message = response.json().get("message") or response.reason_phrase
            except ValueError:
                message = response.text or response.reason_phrase
            raise CatalogResponseError(response.status_code, message)
        if response.status_code >= 500:
            raise PluginError(f"plugin catalog returned {response.status_code} for {url}")
        return response

    # ── Install ───────────────────────────────────────────────────────────────

    async def install(self, plugin_id: str, version: str, plugins_dir: Path) -> Path:
        """
        Install `plugin_id` into `plugins_dir` and return the plugin directory.

        An empty `version` selects the latest version the catalog offers for
        this system.
        """
        plugin_install_dir(plugin_id, plugins_dir)
        sys_info = system_info()
        async with self._client() as client:
            response = await self._get(client, f"/{plugin_id}/versions")
            versions = response.json().get("items", [])
            selected = self.select_version(plugin_id, versions, version, sys_info)

            logger.info("Downloading plugin %s v%s (%s)", plugin_id, selected["version"], sys_info)
            os_name, _, arch = sys_info.partition("-")
            archive = await self._get(
                client,
                f"/{plugin_id}/versions/{selected['version']}/download",
                params={"os": os_name, "arch": arch},
                follow_redirects=True,
            )

        return self.extract(archive.content, plugin_id, plugins_dir)

    @staticmethod
    def select_version(plugin_id: str, versions: list[dict[str, Any]], requested: str, sys_info: str) -> dict[str, Any]:
        """Pick the catalog entry to install; raises when none fits."""

        def supported(entry: dict[str, Any]) -> bool:
            packages = entry.get("packages")
            return not packages or "any" in packages or sys_info in packages

        if requested:
            match = next((v for v in versions if v.get("version") == requested), None)
            if match is None:
                raise VersionNotFoundError(plugin_id, requested)
            if not supported(match):
                raise VersionUnsupportedError(plugin_id, requested, sys_info)
            return match

        candidates = sorted((v for v in versions if supported(v)), key=lambda v: version_key(v["version"]), reverse=True)
        if not candidates:
            if versions:
                latest = max(versions, key=lambda v: version_key(v["version"]))
                raise VersionUnsupportedError(plugin_id, latest["version"], sys_info)
            raise VersionNotFoundError(plugin_id, "latest")
        return candidates[0]

    @staticmethod
    def extract(archive: bytes, plugin_id: str, plugins_dir: Path) -> Path:
        """Unpack a plugin zip into plugins_dir/<plugin_id>, stripping a single root folder."""
        target = plugin_install_dir(plugin_id, plugins_dir)
        try:
            zf = zipfile.ZipFile(io.BytesIO(archive))
        except zipfile.BadZipFile as e:
            raise InvalidPluginArchiveError(f"archive for {plugin_id} is not a zip file") from e

        plugins_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{plugin_id}-", dir=plugins_dir))
        staging_resolved = staging.resolve()

        try:
            with zf:
                for member in zf.namelist():
                    member_dest = (staging / member).resolve()
                    if not member_dest.is_relative_to(staging_resolved):
                        raise InvalidPluginArchiveError(f"archive for {plugin_id} contains unsafe path: {member}")
                zf.extractall(staging)

            entries = list(staging.iterdir())
            source = entries[0] if len(entries) == 1 and entries[0].is_dir() else staging
            if not (source / "plugin.json").is_file() and not any(source.rglob("plugin.json")):
                raise InvalidPluginArchiveError(f"archive for {plugin_id} contains no plugin.json")

            if target.exists():
                shutil.rmtree(target)
            shutil.move(str(source), str(target))
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("Extracted plugin %s to %s", plugin_id, target)
        return target

    # ── Update checks ─────────────────────────────────────────────────────────

    async def check_for_updates(self, plugins: list[PluginDef]) -> None:
        """Set catalog_version / catalog_has_update on external plugins."""
        external = {p.id: p for p in plugins if p.is_external()}
        if not external:
            return

        async with self._client() as client:
            response = await self._get(client, "/versioncheck", params={"slugIn": ",".join(sorted(external))})

        for entry in response.json():
            plugin = external.get(entry.get("slug", ""))
            if plugin is None:
                continue
            plugin.catalog_version = entry.get("version", "")
            plugin.catalog_has_update = version_key(plugin.catalog_version) > version_key(plugin.version)
