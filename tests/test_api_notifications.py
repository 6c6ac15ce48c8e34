"""
Notification API: the acting user's inbox and read tracking.
"""

from boardflow.services.notification import NotificationService


def _as(user):
    return {"X-User": user}


def _seed():
    NotificationService.notify("A", "approval_requested", "Approval needed", "Invoice #1")
    NotificationService.notify("A", "automation", "Invoice overdue")
    return NotificationService.notify("B", "automation", "Not yours")


class TestNotificationsApi:
    def test_lists_only_own_notifications_newest_first(self, client):
        _seed()
        body = client.get("/api/v1/notifications", headers=_as("A")).get_json()
        assert body["total"] == 2
        assert [n["title"] for n in body["notifications"]] == ["Invoice overdue", "Approval needed"]

    def test_mark_read_and_unread_filter(self, client):
        _seed()
        first = client.get("/api/v1/notifications", headers=_as("A")).get_json()["notifications"][0]

        res = client.patch(f"/api/v1/notifications/{first['id']}/read", headers=_as("A"))
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

        unread = client.get("/api/v1/notifications?unreadOnly=true", headers=_as("A")).get_json()
        assert unread["total"] == 1

    def test_cannot_mark_someone_elses_notification(self, client):
        other = _seed()
        res = client.patch(f"/api/v1/notifications/{other.id}/read", headers=_as("A"))
        assert res.status_code == 404

    def test_read_all(self, client):
        _seed()
        assert client.post("/api/v1/notifications/read-all", headers=_as("A")).get_json() == {"updated": 2}
        assert client.post("/api/v1/notifications/read-all", headers=_as("A")).get_json() == {"updated": 0}

    def test_bad_limit(self, client):
        assert client.get("/api/v1/notifications?limit=many", headers=_as("A")).status_code == 400
