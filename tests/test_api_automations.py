"""
Automation API: CRUD, toggle, dry run and logs over HTTP.
"""

import pytest

from boardflow.models import db
from boardflow.models.automation import AutomationExecutionLog

from conftest import make_item

BASE = "/api/v1/automations"


def _as(user):
    return {"X-User": user}


def _payload(board, **overrides):
    payload = {
        "boardId": board.id,
        "name": "Overdue alert",
        "trigger": {"type": "field_equals", "config": {"columnId": "status", "value": "Overdue"}},
        "actions": [{"type": "notify_assignees", "config": {"title": "Overdue", "message": "Pay now"}}],
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def automation(client, board):
    res = client.post(BASE, json=_payload(board), headers=_as("owner"))
    assert res.status_code == 201
    return res.get_json()


class TestCrud:
    def test_create_returns_record(self, automation, board):
        assert automation["board_id"] == board.id
        assert automation["is_active"] is True
        assert automation["created_by"] == "owner"
        assert automation["trigger"]["type"] == "field_equals"

    def test_create_forbidden_for_member(self, client, board):
        res = client.post(BASE, json=_payload(board), headers=_as("A"))
        assert res.status_code == 403

    def test_create_invalid_is_422(self, client, board):
        res = client.post(BASE, json=_payload(board, actions=[{"type": "launch_rocket"}]),
                          headers=_as("owner"))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_RULE"
        assert body["details"]

    def test_create_requires_json_object(self, client, board):
        res = client.post(BASE, data="nope", content_type="text/plain", headers=_as("owner"))
        assert res.status_code == 400

    def test_list(self, client, board, automation):
        client.post(BASE, json=_payload(board, name="Escalation", isActive=False), headers=_as("owner"))

        body = client.get(f"{BASE}?boardId={board.id}&isActive=true", headers=_as("A")).get_json()
        assert [a["name"] for a in body["automations"]] == ["Overdue alert"]
        assert body["pagination"]["total"] == 1

        body = client.get(f"{BASE}?boardId={board.id}&search=escal", headers=_as("A")).get_json()
        assert [a["name"] for a in body["automations"]] == ["Escalation"]

    @pytest.mark.parametrize("query", ["", "?boardId=abc", "?boardId=1&page=x"])
    def test_list_bad_query(self, client, board, query):
        res = client.get(f"{BASE}{query}", headers=_as("A"))
        assert res.status_code == 400

    def test_get_update_delete(self, client, automation):
        url = f"{BASE}/{automation['id']}"
        assert client.get(url, headers=_as("A")).get_json()["name"] == "Overdue alert"

        res = client.put(url, json={"name": "Renamed"}, headers=_as("admin"))
        assert res.status_code == 200
        assert res.get_json()["name"] == "Renamed"

        res = client.delete(url, headers=_as("owner"))
        assert res.get_json() == {"deleted": True}
        assert client.get(url, headers=_as("A")).status_code == 404

    def test_toggle(self, client, automation):
        res = client.patch(f"{BASE}/{automation['id']}/toggle", headers=_as("owner"))
        assert res.get_json() == {"id": automation["id"], "isActive": False}


class TestDryRunAndLogs:
    def test_dry_run(self, client, board, automation):
        item = make_item(board, status="Overdue")
        res = client.post(f"{BASE}/{automation['id']}/test", json={"itemId": item.id}, headers=_as("A"))
        assert res.status_code == 200
        body = res.get_json()
        assert body["wouldExecute"] is True
        assert body["preview"][0]["description"] == "Would execute: notify_assignees"

    @pytest.mark.parametrize("payload,status", [({}, 400), ({"itemId": "1"}, 400), ({"itemId": 9999}, 404)])
    def test_dry_run_bad_item(self, client, automation, payload, status):
        res = client.post(f"{BASE}/{automation['id']}/test", json=payload, headers=_as("A"))
        assert res.status_code == status

    def test_logs(self, client, board, automation):
        item = make_item(board)
        for _ in range(3):
            db.session.add(AutomationExecutionLog(automation_id=automation["id"], item_id=item.id,
                                                  event_type="item_updated", status="success"))
        db.session.commit()

        body = client.get(f"{BASE}/{automation['id']}/logs?limit=2", headers=_as("A")).get_json()
        assert body["total"] == 2
        assert all(row["item_id"] == item.id for row in body["logs"])

    def test_status_change_through_items_api_fires_automation(self, client, board, automation):
        item = make_item(board, status="Pending", cells={"Owner": ["A", "B"]})
        res = client.patch(f"/api/v1/items/{item.id}/status", json={"status": "Overdue"}, headers=_as("A"))
        assert res.status_code == 200

        logs = client.get(f"{BASE}/{automation['id']}/logs", headers=_as("A")).get_json()["logs"]
        assert [row["status"] for row in logs] == ["success"]
