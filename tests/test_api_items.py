"""
Item and health API.
"""

import pytest

from conftest import column, make_board, make_item


def _as(user):
    return {"X-User": user}


class TestItemsApi:
    def test_create_and_get(self, client, board):
        total = column(board, "Total")
        res = client.post("/api/v1/items", json={
            "boardId": board.id, "name": "Invoice #9", "status": "Draft", "cells": {str(total.id): 250},
        }, headers=_as("creator"))
        assert res.status_code == 201
        created = res.get_json()
        assert created["cells"] == {str(total.id): 250}

        fetched = client.get(f"/api/v1/items/{created['id']}", headers=_as("A")).get_json()
        assert fetched["name"] == "Invoice #9"
        assert fetched["created_by"] == "creator"

    @pytest.mark.parametrize("payload,status", [
        ({"name": "x"}, 400),
        ({"boardId": 1, "name": "x", "cells": ["a"]}, 400),
        ({"boardId": 1, "name": "x", "cells": {"total": 1}}, 400),
    ])
    def test_create_bad_payload(self, client, board, payload, status):
        res = client.post("/api/v1/items", json=payload, headers=_as("creator"))
        assert res.status_code == status

    def test_blank_name_is_422(self, client, board):
        res = client.post("/api/v1/items", json={"boardId": board.id, "name": " "}, headers=_as("creator"))
        assert res.status_code == 422

    def test_update_status_move_delete(self, client, workspace, board):
        item = make_item(board, status="Pending")
        target = make_board(workspace, name="Paid")

        res = client.put(f"/api/v1/items/{item.id}", json={"name": "Renamed"}, headers=_as("A"))
        assert res.get_json()["name"] == "Renamed"

        res = client.patch(f"/api/v1/items/{item.id}/status", json={"status": "Paid"}, headers=_as("A"))
        assert res.get_json()["status"] == "Paid"

        res = client.post(f"/api/v1/items/{item.id}/move", json={"boardId": target.id}, headers=_as("A"))
        assert res.get_json()["board_id"] == target.id

        assert client.delete(f"/api/v1/items/{item.id}", headers=_as("A")).get_json() == {"deleted": True}
        assert client.get(f"/api/v1/items/{item.id}", headers=_as("A")).status_code == 404

    def test_status_required(self, client, board):
        item = make_item(board)
        res = client.patch(f"/api/v1/items/{item.id}/status", json={}, headers=_as("A"))
        assert res.status_code == 400

    def test_non_member_forbidden(self, client, board):
        item = make_item(board)
        res = client.get(f"/api/v1/items/{item.id}", headers=_as("stranger"))
        assert res.status_code == 403

    def test_anonymous_request_is_system_user(self, client, board):
        item = make_item(board)
        assert client.get(f"/api/v1/items/{item.id}").status_code == 403


class TestHealthApi:
    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["scheduler"] == {"enabled": False, "initialized": True}

    def test_timing_headers(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "req-1"})
        assert res.headers["X-Request-ID"] == "req-1"
        assert "X-Request-Duration-Ms" in res.headers

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
