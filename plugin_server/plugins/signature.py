"""
Plugin signature manifest checks.

External plugins ship a `MANIFEST.txt` listing every file with its SHA-256
digest.  The manifest may be a bare JSON document or a clear-signed message
wrapping one; only the JSON payload is inspected here (the cryptographic
signature itself is not verified).
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from plugin_server.plugins.models import SignatureStatus, SignatureType

if TYPE_CHECKING:
    from plugin_server.plugins.models import PluginDef

logger = logging.getLogger(__name__)

MANIFEST_FILE = "MANIFEST.txt"

_PGP_HEADER = "-----BEGIN PGP SIGNED MESSAGE-----"
_PGP_SIGNATURE = "-----BEGIN PGP SIGNATURE-----"


@dataclass
class SignatureResult:
    status: SignatureStatus
    signature_type: SignatureType = SignatureType.NONE
    signed_by_org_name: str = ""
    files: set[str] = field(default_factory=set)


def read_manifest(text: str) -> dict:
    """Extract the JSON manifest, unwrapping a clear-signed message if present."""
    if text.lstrip().startswith(_PGP_HEADER):
        # Armor headers end at the first blank line; the body runs up to the signature block
        _, _, body = text.partition("\n\n")
        body, _, _ = body.partition(_PGP_SIGNATURE)
        text = body
    manifest = json.loads(text)
    if not isinstance(manifest, dict):
        raise ValueError("manifest is not a JSON object")
    files = manifest.get("files") or {}
    if not isinstance(files, dict) or not all(isinstance(v, str) for v in files.values()):
        raise ValueError("manifest files must map paths to digests")
    return manifest


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _files_on_disk(plugin_dir: Path) -> set[str]:
    return {
        p.relative_to(plugin_dir).as_posix()
        for p in plugin_dir.rglob("*")
        if p.is_file() and p.name != MANIFEST_FILE
    }


def calculate(plugin: PluginDef) -> SignatureResult:
    """Work out the signature status of an on-disk plugin."""
    if plugin.is_core():
        return SignatureResult(status=SignatureStatus.INTERNAL)

    manifest_path = plugin.plugin_dir / MANIFEST_FILE
    if not manifest_path.is_file():
        logger.debug("Plugin %s has no signature manifest", plugin.id)
        return SignatureResult(status=SignatureStatus.UNSIGNED)

    try:
        manifest = read_manifest(manifest_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Plugin %s has an unreadable signature manifest: %s", plugin.id, e)
        return SignatureResult(status=SignatureStatus.INVALID)

    if manifest.get("plugin") != plugin.id or manifest.get("version") != plugin.version:
        logger.warning("Plugin %s manifest does not match plugin id or version", plugin.id)
        return SignatureResult(status=SignatureStatus.INVALID)

    signed: dict[str, str] = manifest.get("files") or {}
    for rel_path, expected in signed.items():
        candidate = (plugin.plugin_dir / rel_path).resolve()
        if not candidate.is_relative_to(plugin.plugin_dir.resolve()) or not candidate.is_file():
            logger.warning("Plugin %s is missing signed file %s", plugin.id, rel_path)
            return SignatureResult(status=SignatureStatus.MODIFIED)
        if _sha256(candidate) != expected:
            logger.warning("Plugin %s file %s does not match its signed digest", plugin.id, rel_path)
            return SignatureResult(status=SignatureStatus.MODIFIED)

    unsigned = _files_on_disk(plugin.plugin_dir) - set(signed)
    if unsigned:
        logger.warning("Plugin %s contains files not in its manifest: %s", plugin.id, sorted(unsigned))
        return SignatureResult(status=SignatureStatus.MODIFIED)

    try:
        signature_type = SignatureType(manifest.get("signatureType", ""))
    except ValueError:
        signature_type = SignatureType.NONE

    return SignatureResult(
        status=SignatureStatus.VALID,
        signature_type=signature_type,
        signed_by_org_name=manifest.get("signedByOrgName", ""),
        files=set(signed),
    )
