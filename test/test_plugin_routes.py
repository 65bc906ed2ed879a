"""
Tests for plugin routes

Listing, settings, markdown and static asset endpoints, run against the
bundled core plugins plus external plugins written to a temporary plugins
directory.
"""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from main import app
from plugin_server.config import settings
from plugin_server.dependencies import get_plugin_context_provider
from plugin_server.services import plugin_settings
from plugin_server.routes.plugins import clean_relative_path
from utils.auth import make_auth_headers
from utils.plugin_files import external_panel, write_plugin


def _names(response) -> list[str]:
    return [p["name"] for p in response.json()]


class TestPluginList:
    """Test GET /api/plugins"""

    def test_viewer_sees_core_plugins_sorted_by_name(self, client, viewer_headers):
        """Alpha and built-in plugins are hidden, the rest is sorted by name"""
        response = client.get("/api/plugins", headers=viewer_headers)

        assert response.status_code == 200
        assert _names(response) == ["Getting Started", "Table", "TestData", "Text", "Welcome"]

    def test_requires_authentication(self, client):
        response = client.get("/api/plugins")

        assert response.status_code == 401
        assert response.json()["error"]["error_code"] == "AUTH_FAILED"

    def test_list_items_use_camel_case(self, client, viewer_headers):
        response = client.get("/api/plugins", headers=viewer_headers)

        text = next(p for p in response.json() if p["id"] == "text")
        assert text["type"] == "panel"
        assert text["signature"] == "internal"
        assert text["enabled"] is True
        assert text["defaultNavUrl"] == "/plugins/text/"
        assert "latestVersion" in text
        assert "hasUpdate" in text

    def test_auto_enabled_app_is_enabled_and_pinned(self, client, viewer_headers):
        response = client.get("/api/plugins", headers=viewer_headers)

        app_item = next(p for p in response.json() if p["id"] == "getting-started")
        assert app_item["enabled"] is True
        assert app_item["pinned"] is True
        assert app_item["defaultNavUrl"] == "/dashboard/db/overview"

    def test_embedded_zero_hides_plugins_nested_in_apps(self, client, viewer_headers):
        response = client.get("/api/plugins?embedded=0", headers=viewer_headers)

        assert "Welcome" not in _names(response)
        assert "Getting Started" in _names(response)

    def test_type_filter(self, client, viewer_headers):
        response = client.get("/api/plugins?type=datasource", headers=viewer_headers)

        assert _names(response) == ["TestData"]

    def test_alpha_plugins_listed_when_enabled(self, client, viewer_headers, monkeypatch):
        monkeypatch.setattr(settings, "plugins_enable_alpha", True)

        response = client.get("/api/plugins", headers=viewer_headers)

        assert "Canvas" in _names(response)
        assert "-- Mixed --" not in _names(response)

    def test_enabled_filter_skips_disabled_plugins(self, client, viewer_headers, admin_headers):
        client.post("/api/plugins/text/settings", json={"enabled": False}, headers=admin_headers)

        response = client.get("/api/plugins?enabled=1", headers=viewer_headers)

        assert "Text" not in _names(response)
        assert "Table" in _names(response)

    def test_viewer_does_not_see_external_plugins(self, plugins_dir, viewer_headers, admin_headers):
        write_plugin(plugins_dir / "acme-clock-panel", external_panel())

        with TestClient(app) as client:
            as_viewer = client.get("/api/plugins", headers=viewer_headers)
            as_admin = client.get("/api/plugins", headers=admin_headers)

        assert "Clock" not in _names(as_viewer)
        assert "Clock" in _names(as_admin)

    def test_core_zero_lists_only_external_plugins(self, plugins_dir, admin_headers):
        write_plugin(plugins_dir / "acme-clock-panel", external_panel())

        with TestClient(app) as client:
            response = client.get("/api/plugins?core=0", headers=admin_headers)

        assert response.status_code == 200
        clock = response.json()
        assert [p["id"] for p in clock] == ["acme-clock-panel"]
        assert clock[0]["signature"] == "valid"
        assert clock[0]["signatureType"] == "community"
        assert clock[0]["signatureOrg"] == "Example Org"


class TestPluginErrors:
    """Test GET /api/plugins/errors"""

    def test_unsigned_external_plugin_reported(self, plugins_dir, admin_headers):
        write_plugin(plugins_dir / "acme-clock-panel", external_panel(), signed=False)

        with TestClient(app) as client:
            response = client.get("/api/plugins/errors", headers=admin_headers)
            listed = client.get("/api/plugins", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == [{"pluginId": "acme-clock-panel", "errorCode": "signatureMissing"}]
        assert "Clock" not in _names(listed)

    def test_modified_plugin_reported(self, plugins_dir, admin_headers):
        plugin_dir = write_plugin(plugins_dir / "acme-clock-panel", external_panel(), {"module.js": b"console.log(1)"})
        (plugin_dir / "module.js").write_bytes(b"console.log(2)")

        with TestClient(app) as client:
            response = client.get("/api/plugins/errors", headers=admin_headers)

        assert response.json() == [{"pluginId": "acme-clock-panel", "errorCode": "signatureModified"}]

    def test_malformed_plugin_files_do_not_stop_startup(self, plugins_dir, admin_headers):
        (plugins_dir / "broken").mkdir()
        (plugins_dir / "broken" / "plugin.json").write_text("[]")
        plugin_dir = write_plugin(plugins_dir / "acme-clock-panel", external_panel(), signed=False)
        (plugin_dir / "MANIFEST.txt").write_text("[1, 2]")

        with TestClient(app) as client:
            response = client.get("/api/plugins/errors", headers=admin_headers)

        assert response.json() == [{"pluginId": "acme-clock-panel", "errorCode": "signatureInvalid"}]

    def test_allow_listed_unsigned_plugin_loads(self, plugins_dir, admin_headers, monkeypatch):
        monkeypatch.setattr(settings, "allow_loading_unsigned_plugins", ["acme-clock-panel"])
        write_plugin(plugins_dir / "acme-clock-panel", external_panel(), signed=False)

        with TestClient(app) as client:
            errors = client.get("/api/plugins/errors", headers=admin_headers)
            listed = client.get("/api/plugins?core=0", headers=admin_headers)

        assert errors.json() == []
        assert listed.json()[0]["signature"] == "unsigned"

    def test_requires_org_admin(self, client, editor_headers):
        response = client.get("/api/plugins/errors", headers=editor_headers)

        assert response.status_code == 403
        assert response.json()["error"]["error_code"] == "AUTH_PERMISSION_DENIED"


class TestPluginSettings:
    """Test GET and POST /api/plugins/{id}/settings"""

    def test_get_settings_of_unconfigured_panel(self, client, viewer_headers):
        response = client.get("/api/plugins/text/settings", headers=viewer_headers)

        assert response.status_code == 200
        result = response.json()
        assert result["id"] == "text"
        assert result["baseUrl"] == "public/app/plugins/panel/text"
        assert result["module"] == "app/plugins/panel/text/module"
        assert result["enabled"] is False
        assert result["jsonData"] is None
        assert result["secureJsonFields"] == {}

    def test_get_settings_of_auto_enabled_app(self, client, viewer_headers):
        response = client.get("/api/plugins/getting-started/settings", headers=viewer_headers)

        result = response.json()
        assert result["enabled"] is True
        assert result["pinned"] is True
        assert [i["name"] for i in result["includes"]] == ["Overview", "Welcome"]
        assert result["dependencies"]["grafanaDependency"] == ">=8.0.0"

    def test_get_settings_unknown_plugin(self, client, viewer_headers):
        response = client.get("/api/plugins/nope/settings", headers=viewer_headers)

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["message"] == "Plugin not found, no installed plugin with that id"
        assert error["error_code"] == "PLUGIN_NOT_FOUND"

    def test_update_then_get_settings(self, client, admin_headers):
        body = {
            "enabled": True,
            "pinned": True,
            "jsonData": {"url": "https://example.com"},
            "secureJsonData": {"apiKey": "s3cr3t"},
        }
        response = client.post("/api/plugins/getting-started/settings", json=body, headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"message": "Plugin settings updated"}

        result = client.get("/api/plugins/getting-started/settings", headers=admin_headers).json()
        assert result["enabled"] is True
        assert result["jsonData"] == {"url": "https://example.com"}
        assert result["secureJsonFields"] == {"apiKey": True}
        assert "s3cr3t" not in str(result)

    def test_secure_values_merge_per_key(self, client, admin_headers):
        client.post(
            "/api/plugins/testdata/settings",
            json={"enabled": True, "secureJsonData": {"user": "a", "password": "b"}},
            headers=admin_headers,
        )
        client.post(
            "/api/plugins/testdata/settings",
            json={"enabled": True, "secureJsonData": {"password": "c"}},
            headers=admin_headers,
        )

        result = client.get("/api/plugins/testdata/settings", headers=admin_headers).json()
        assert result["secureJsonFields"] == {"user": True, "password": True}

    def test_settings_are_scoped_to_org(self, client, admin_headers):
        client.post("/api/plugins/text/settings", json={"enabled": True}, headers=admin_headers)

        other_org = client.get("/api/plugins/text/settings", headers=make_auth_headers("Admin", org_id=2))

        assert other_org.json()["enabled"] is False

    def test_update_unknown_plugin(self, client, admin_headers):
        response = client.post("/api/plugins/nope/settings", json={"enabled": True}, headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Plugin not installed"

    def test_update_requires_org_admin(self, client, editor_headers):
        response = client.post("/api/plugins/text/settings", json={"enabled": True}, headers=editor_headers)

        assert response.status_code == 403


class TestPluginMarkdown:
    """Test GET /api/plugins/{id}/markdown/{name}"""

    def test_readme(self, client, viewer_headers):
        response = client.get("/api/plugins/getting-started/markdown/readme", headers=viewer_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text.startswith("# Getting Started")

    def test_changelog(self, client, viewer_headers):
        response = client.get("/api/plugins/getting-started/markdown/changelog", headers=viewer_headers)

        assert response.status_code == 200
        assert "Changelog" in response.text

    def test_missing_file_falls_back_to_readme(self, client, viewer_headers):
        response = client.get("/api/plugins/getting-started/markdown/license", headers=viewer_headers)

        assert response.status_code == 200
        assert response.text.startswith("# Getting Started")

    def test_no_markdown_at_all_returns_empty_body(self, client, viewer_headers):
        response = client.get("/api/plugins/table/markdown/readme", headers=viewer_headers)

        assert response.status_code == 200
        assert response.content == b""

    def test_lowercase_file_name(self, plugins_dir, admin_headers):
        write_plugin(plugins_dir / "acme-clock-panel", external_panel(), {"readme.md": b"clock docs"})

        with TestClient(app) as client:
            response = client.get("/api/plugins/acme-clock-panel/markdown/readme", headers=admin_headers)

        assert response.text == "clock docs"

    def test_unknown_plugin(self, client, viewer_headers):
        response = client.get("/api/plugins/nope/markdown/readme", headers=viewer_headers)

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "plugin with ID 'nope' not found"


class TestPluginAssets:
    """Test GET /public/plugins/{id}/{path}"""

    def test_serves_file_without_auth(self, client):
        response = client.get("/public/plugins/text/img/icn-text-panel.svg")

        assert response.status_code == 200
        assert response.content.startswith(b"<svg")
        assert response.headers["cache-control"] == "public, max-age=3600"

    def test_development_disables_caching(self, client, monkeypatch):
        monkeypatch.setattr(settings, "environment", "development")

        response = client.get("/public/plugins/text/img/icn-text-panel.svg")

        assert response.headers["cache-control"] == "max-age=0, must-revalidate, no-cache"

    def test_missing_file(self, client):
        response = client.get("/public/plugins/text/img/missing.svg")

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["message"] == "Plugin file not found"
        assert error["error_code"] == "PLUGIN_FILE_NOT_FOUND"

    def test_directory_is_not_served(self, client):
        response = client.get("/public/plugins/text/img")

        assert response.status_code == 404

    def test_unknown_plugin(self, client):
        response = client.get("/public/plugins/nope/module.js")

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "PLUGIN_NOT_FOUND"

    def test_parent_segments_stay_inside_plugin_directory(self, plugins_dir):
        write_plugin(plugins_dir / "acme-clock-panel", external_panel())
        (plugins_dir / "secret.txt").write_text("secret")

        with TestClient(app) as client:
            escaped = client.get("/public/plugins/acme-clock-panel/%2E%2E/secret.txt")
            core_escape = client.get("/public/plugins/text/%2E%2E/%2E%2E/config.py")
            manifest = client.get("/public/plugins/acme-clock-panel/img/%2E%2E/%2E%2E/plugin.json")

        assert escaped.status_code == 404
        assert core_escape.status_code == 404
        assert manifest.status_code == 200
        assert manifest.json()["id"] == "acme-clock-panel"

    def test_if_modified_since(self, client):
        first = client.get("/public/plugins/text/img/icn-text-panel.svg")

        cached = client.get(
            "/public/plugins/text/img/icn-text-panel.svg",
            headers={"If-Modified-Since": first.headers["last-modified"]},
        )
        stale = client.get(
            "/public/plugins/text/img/icn-text-panel.svg",
            headers={"If-Modified-Since": "Thu, 01 Jan 1970 00:00:00 GMT"},
        )

        assert cached.status_code == 304
        assert cached.content == b""
        assert cached.headers["cache-control"] == "public, max-age=3600"
        assert stale.status_code == 200

    def test_if_none_match(self, client):
        first = client.get("/public/plugins/text/img/icn-text-panel.svg")

        response = client.get("/public/plugins/text/img/icn-text-panel.svg", headers={"If-None-Match": first.headers["etag"]})

        assert response.status_code == 304

    def test_range_request(self, client):
        response = client.get("/public/plugins/text/img/icn-text-panel.svg", headers={"Range": "bytes=0-3"})

        assert response.status_code == 206
        assert response.content == b"<svg"
        assert response.headers["content-range"].startswith("bytes 0-3/")

    def test_external_plugin_file(self, plugins_dir):
        write_plugin(plugins_dir / "acme-clock-panel", external_panel(), {"module.js": b"define([])"})

        with TestClient(app) as client:
            response = client.get("/public/plugins/acme-clock-panel/module.js")

        assert response.status_code == 200
        assert response.content == b"define([])"


class TestCleanRelativePath:
    """Test request path normalisation used for plugin files"""

    def test_plain_path(self):
        assert clean_relative_path("img/logo.svg") == "img/logo.svg"

    def test_parent_segments_cannot_escape(self):
        assert clean_relative_path("../../etc/passwd") == "etc/passwd"
        assert clean_relative_path("img/../../plugin.json") == "plugin.json"

    def test_leading_slash_and_dots(self):
        assert clean_relative_path("/./img//logo.svg") == "img/logo.svg"

    def test_empty_path(self):
        assert clean_relative_path("") == ""


class TestStoreFailures:
    """Settings store and context failures are reported as 500s"""

    def test_list_store_failure(self, client, viewer_headers):
        failing = AsyncMock(side_effect=SQLAlchemyError("database is locked"))
        with patch.object(plugin_settings, "get_plugin_settings_with_defaults", failing):
            response = client.get("/api/plugins", headers=viewer_headers)

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Failed to get list of plugins"

    def test_get_settings_store_failure(self, client, viewer_headers):
        failing = AsyncMock(side_effect=SQLAlchemyError("database is locked"))
        with patch.object(plugin_settings, "get_plugin_setting_by_id", failing):
            response = client.get("/api/plugins/text/settings", headers=viewer_headers)

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Failed to get login settings"

    def test_update_settings_store_failure(self, client, admin_headers):
        failing = AsyncMock(side_effect=SQLAlchemyError("database is locked"))
        with patch.object(plugin_settings, "update_plugin_setting", failing):
            response = client.post("/api/plugins/text/settings", json={"enabled": True}, headers=admin_headers)

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Failed to update plugin setting"
        failing.assert_awaited_once()

    def test_context_failure_on_health(self, client, viewer_headers):
        provider = MagicMock()
        provider.get = AsyncMock(side_effect=SQLAlchemyError("database is locked"))
        app.dependency_overrides[get_plugin_context_provider] = lambda: provider

        response = client.get("/api/plugins/testdata/health", headers=viewer_headers)

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Failed to get plugin settings"
        provider.get.assert_awaited_once()
