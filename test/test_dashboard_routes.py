"""
Tests for plugin dashboard routes

Covers listing the dashboards an app ships and importing dashboards, both
from a plugin and posted directly.
"""

from plugin_server.config import settings
from utils.auth import make_auth_headers

OVERVIEW_PATH = "dashboards/overview.json"
TESTDATA_INPUT = {"name": "DS_TESTDATA", "type": "datasource", "pluginId": "testdata", "value": "TestData"}


def import_overview(client, headers, **overrides):
    body = {"pluginId": "getting-started", "path": OVERVIEW_PATH, "inputs": [TESTDATA_INPUT], **overrides}
    return client.post("/api/dashboards/import", json=body, headers=headers)


class TestGetPluginDashboards:
    """Test GET /api/plugins/{id}/dashboards"""

    def test_lists_dashboards_not_yet_imported(self, client, admin_headers):
        response = client.get("/api/plugins/getting-started/dashboards", headers=admin_headers)

        assert response.status_code == 200
        dashboards = response.json()
        assert len(dashboards) == 1
        overview = dashboards[0]
        assert overview["uid"] == "getting-started-overview"
        assert overview["title"] == "Getting Started Overview"
        assert overview["path"] == OVERVIEW_PATH
        assert overview["revision"] == 2
        assert overview["imported"] is False
        assert overview["removed"] is False

    def test_import_state_is_reported(self, client, admin_headers):
        import_overview(client, admin_headers)

        overview = client.get("/api/plugins/getting-started/dashboards", headers=admin_headers).json()[0]

        assert overview["imported"] is True
        assert overview["importedUri"] == "db/getting-started-overview"
        assert overview["importedUrl"] == "/d/getting-started-overview/getting-started-overview"
        assert overview["importedRevision"] == 2
        assert overview["dashboardId"] > 0

    def test_import_state_is_per_org(self, client, admin_headers):
        import_overview(client, admin_headers)

        other_org = client.get("/api/plugins/getting-started/dashboards", headers=make_auth_headers("Admin", org_id=2))

        assert other_org.json()[0]["imported"] is False

    def test_plugin_without_dashboards(self, client, admin_headers):
        response = client.get("/api/plugins/text/dashboards", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == []

    def test_unknown_plugin(self, client, admin_headers):
        response = client.get("/api/plugins/nope/dashboards", headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "PLUGIN_NOT_FOUND"

    def test_requires_org_admin(self, client, editor_headers):
        response = client.get("/api/plugins/getting-started/dashboards", headers=editor_headers)

        assert response.status_code == 403


class TestImportDashboard:
    """Test POST /api/dashboards/import"""

    def test_import_from_plugin(self, client, editor_headers):
        response = import_overview(client, editor_headers)

        assert response.status_code == 200
        result = response.json()
        assert result["pluginId"] == "getting-started"
        assert result["uid"] == "getting-started-overview"
        assert result["title"] == "Getting Started Overview"
        assert result["imported"] is True
        assert result["slug"] == "getting-started-overview"

    def test_import_posted_dashboard(self, client, editor_headers):
        dashboard = {"title": "Ops Board", "panels": []}

        response = client.post("/api/dashboards/import", json={"dashboard": dashboard}, headers=editor_headers)

        assert response.status_code == 200
        result = response.json()
        assert result["title"] == "Ops Board"
        assert result["pluginId"] == ""
        assert len(result["uid"]) == 14
        assert result["importedUrl"] == f"/d/{result['uid']}/ops-board"

    def test_import_url_includes_sub_path(self, client, editor_headers, monkeypatch):
        monkeypatch.setattr(settings, "app_sub_url", "/grafana")

        response = client.post(
            "/api/dashboards/import", json={"dashboard": {"title": "Sub Path", "uid": "sub"}}, headers=editor_headers
        )

        assert response.json()["importedUrl"] == "/grafana/d/sub/sub-path"

    def test_dashboard_must_be_set(self, client, editor_headers):
        response = client.post("/api/dashboards/import", json={}, headers=editor_headers)

        assert response.status_code == 422
        assert response.json()["error"]["message"] == "Dashboard must be set"

    def test_missing_input(self, client, editor_headers):
        response = import_overview(client, editor_headers, inputs=[])

        assert response.status_code == 400
        assert "DS_TESTDATA" in response.json()["error"]["message"]

    def test_wildcard_input(self, client, editor_headers):
        response = import_overview(client, editor_headers, inputs=[{**TESTDATA_INPUT, "name": "*"}])

        assert response.status_code == 200

    def test_empty_title(self, client, editor_headers):
        response = client.post("/api/dashboards/import", json={"dashboard": {"title": "  "}}, headers=editor_headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Dashboard title cannot be empty"

    def test_same_name_without_overwrite(self, client, editor_headers):
        client.post("/api/dashboards/import", json={"dashboard": {"title": "Ops Board"}}, headers=editor_headers)

        response = client.post("/api/dashboards/import", json={"dashboard": {"title": "Ops Board"}}, headers=editor_headers)

        assert response.status_code == 412
        error = response.json()["error"]
        assert error["details"] == {"status": "name-exists"}
        assert error["error_code"] == "DASHBOARD_PRECONDITION_FAILED"

    def test_same_name_in_other_folder(self, client, editor_headers):
        client.post("/api/dashboards/import", json={"dashboard": {"title": "Ops Board"}}, headers=editor_headers)

        response = client.post(
            "/api/dashboards/import", json={"dashboard": {"title": "Ops Board"}, "folderId": 3}, headers=editor_headers
        )

        assert response.status_code == 200
        assert response.json()["folderId"] == 3

    def test_reimport_without_overwrite_is_version_mismatch(self, client, editor_headers):
        import_overview(client, editor_headers)

        response = import_overview(client, editor_headers)

        assert response.status_code == 412
        assert response.json()["error"]["details"] == {"status": "version-mismatch"}

    def test_reimport_with_overwrite(self, client, editor_headers, admin_headers):
        import_overview(client, editor_headers)

        response = import_overview(client, editor_headers, overwrite=True)

        assert response.status_code == 200
        dashboards = client.get("/api/plugins/getting-started/dashboards", headers=admin_headers).json()
        assert len(dashboards) == 1

    def test_id_of_another_dashboard_is_uid_conflict(self, client, editor_headers):
        client.post("/api/dashboards/import", json={"dashboard": {"title": "A", "uid": "a"}}, headers=editor_headers)
        second = client.post("/api/dashboards/import", json={"dashboard": {"title": "B", "uid": "b"}}, headers=editor_headers)

        response = client.post(
            "/api/dashboards/import",
            json={"dashboard": {"title": "B", "uid": "a", "id": second.json()["dashboardId"], "version": 1}},
            headers=editor_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "A dashboard with the same uid 'a' already exists"

    def test_overwrite_by_title_keeps_existing_uid(self, client, editor_headers):
        client.post("/api/dashboards/import", json={"dashboard": {"title": "Ops", "uid": "ops"}}, headers=editor_headers)
        client.post("/api/dashboards/import", json={"dashboard": {"title": "Other", "uid": "new"}}, headers=editor_headers)

        response = client.post(
            "/api/dashboards/import",
            json={"dashboard": {"title": "Ops", "uid": "new"}, "overwrite": True},
            headers=editor_headers,
        )
        other = client.post(
            "/api/dashboards/import",
            json={"dashboard": {"title": "Other", "uid": "new", "version": 1}},
            headers=editor_headers,
        )

        assert response.status_code == 200
        assert response.json()["uid"] == "ops"
        assert other.status_code == 200
        assert other.json()["uid"] == "new"

    def test_dashboard_file_not_in_plugin(self, client, editor_headers):
        response = import_overview(client, editor_headers, path="dashboards/missing.json")

        assert response.status_code == 404

    def test_path_outside_plugin_dir(self, client, editor_headers):
        response = import_overview(client, editor_headers, path="../../panel/text/plugin.json")

        assert response.status_code == 400

    def test_unknown_plugin(self, client, editor_headers):
        response = import_overview(client, editor_headers, pluginId="nope")

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "PLUGIN_NOT_FOUND"

    def test_quota_reached(self, client, editor_headers, monkeypatch):
        monkeypatch.setattr(settings, "quota_org_dashboard", 1)
        client.post("/api/dashboards/import", json={"dashboard": {"title": "First"}}, headers=editor_headers)

        response = client.post("/api/dashboards/import", json={"dashboard": {"title": "Second"}}, headers=editor_headers)

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["message"] == "Quota reached"
        assert error["error_code"] == "QUOTA_REACHED"

    def test_requires_editor(self, client, viewer_headers):
        response = client.post("/api/dashboards/import", json={"dashboard": {"title": "Ops Board"}}, headers=viewer_headers)

        assert response.status_code == 403
