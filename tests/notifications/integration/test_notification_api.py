"""Integration tests for the notification endpoints and the real-time socket."""

import threading

import pytest
from starlette.websockets import WebSocketDisconnect

from storefront.domain import storefront
from storefront.notifications.content import NotificationContent

CUSTOMER = {"X-User-Id": "cust-001"}
OTHER_CUSTOMER = {"X-User-Id": "cust-002"}
ADMIN = {"X-User-Id": "admin-001", "X-User-Role": "admin"}


def _content(title="Hello", notification_type="system"):
    return NotificationContent(notification_type=notification_type, title=title, message=f"{title} message")


@pytest.fixture()
def create(services):
    def _create(user_id="cust-001", title="Hello", notification_type="system"):
        return services.notifications.create(user_id, _content(title, notification_type))

    return _create


class TestNotificationListAPI:
    def test_list_paginates(self, api_client, create):
        for index in range(3):
            create(title=f"n{index}")

        response = api_client.get("/notifications", params={"page": 1, "limit": 2}, headers=CUSTOMER)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 3
        assert body["pages"] == 2
        assert len(body["items"]) == 2
        assert body["items"][0]["delivered"] is False

    def test_filter_by_type(self, api_client, create):
        create(notification_type="order")
        create(notification_type="system")
        response = api_client.get("/notifications", params={"type": "order"}, headers=CUSTOMER)
        assert [item["type"] for item in response.json()["items"]] == ["order"]

    def test_limit_too_large_is_400(self, api_client):
        response = api_client.get("/notifications", params={"limit": 500}, headers=CUSTOMER)
        assert response.status_code == 400

    def test_requires_identity(self, api_client):
        assert api_client.get("/notifications").status_code == 401


class TestReadStateAPI:
    def test_mark_read_and_count(self, api_client, create):
        first = create()
        create()

        response = api_client.patch(f"/notifications/{first.id}/read", headers=CUSTOMER)

        assert response.status_code == 200
        assert response.json()["read"] is True
        assert api_client.get("/notifications/unread-count", headers=CUSTOMER).json() == {"unread": 1}

    def test_mark_all_read(self, api_client, create):
        create()
        create()
        assert api_client.patch("/notifications/read-all", headers=CUSTOMER).json() == {"updated": 2}
        assert api_client.get("/notifications/unread-count", headers=CUSTOMER).json() == {"unread": 0}

    def test_other_users_notification_is_404(self, api_client, create):
        notification = create()
        response = api_client.patch(f"/notifications/{notification.id}/read", headers=OTHER_CUSTOMER)
        assert response.status_code == 404


class TestDeleteAPI:
    def test_owner_deletes(self, api_client, create):
        notification = create()
        response = api_client.delete(f"/notifications/{notification.id}", headers=CUSTOMER)
        assert response.json() == {"status": "deleted"}
        assert api_client.get("/notifications", headers=CUSTOMER).json()["total"] == 0

    def test_other_user_cannot_delete(self, api_client, create):
        notification = create()
        assert api_client.delete(f"/notifications/{notification.id}", headers=OTHER_CUSTOMER).status_code == 404

    def test_admin_deletes_any(self, api_client, create):
        notification = create()
        assert api_client.delete(f"/notifications/{notification.id}", headers=ADMIN).status_code == 200


class TestBroadcastAPI:
    def test_admin_broadcasts_to_listed_users(self, api_client):
        response = api_client.post(
            "/notifications/broadcast",
            json={"title": "Maintenance", "message": "Down at midnight", "user_ids": ["cust-001", "cust-002"]},
            headers=ADMIN,
        )

        assert response.status_code == 200
        assert response.json() == {"total": 2, "created": 2, "throttled": 0, "failed": 0}
        items = api_client.get("/notifications", headers=OTHER_CUSTOMER).json()["items"]
        assert items[0]["title"] == "Maintenance"

    def test_unknown_priority_is_400(self, api_client):
        response = api_client.post(
            "/notifications/broadcast",
            json={"title": "Maintenance", "message": "Soon", "priority": "urgent", "user_ids": ["cust-001"]},
            headers=ADMIN,
        )
        assert response.status_code == 400

    def test_customers_cannot_broadcast(self, api_client):
        response = api_client.post(
            "/notifications/broadcast",
            json={"title": "Free stuff", "message": "Click here"},
            headers=CUSTOMER,
        )
        assert response.status_code == 403


class TestRealtimeSocket:
    def _authenticate(self, socket, user_id="cust-001"):
        socket.send_json({"type": "authenticate", "token": user_id})
        return socket.receive_json()

    def test_authenticate_registers_connection(self, api_client, services):
        with api_client.websocket_connect("/realtime") as socket:
            reply = self._authenticate(socket)
            assert reply["type"] == "authenticated"
            assert reply["user_id"] == "cust-001"
            assert services.connections.is_connected("cust-001")
        assert not services.connections.is_connected("cust-001")

    def test_first_frame_must_authenticate(self, api_client):
        with api_client.websocket_connect("/realtime") as socket:
            socket.send_json({"type": "ping"})
            assert socket.receive_json()["type"] == "error"
            with pytest.raises(WebSocketDisconnect) as exc:
                socket.receive_json()
        assert exc.value.code == 1008

    def test_ping_pong(self, api_client):
        with api_client.websocket_connect("/realtime") as socket:
            self._authenticate(socket)
            socket.send_json({"type": "ping"})
            assert socket.receive_json() == {"type": "pong"}

    def test_acknowledged_push_marks_delivered(self, api_client, services):
        created = []

        def create_in_worker():
            with storefront.domain_context():
                created.append(services.notifications.create("cust-001", _content("Shipped")))

        with api_client.websocket_connect("/realtime") as socket:
            self._authenticate(socket)
            worker = threading.Thread(target=create_in_worker)
            worker.start()

            frame = socket.receive_json()
            assert frame["type"] == "notification"
            assert frame["notification"]["title"] == "Shipped"
            socket.send_json({"type": "ack", "id": frame["id"]})
            worker.join(timeout=10)

        [notification] = created
        assert notification.delivered
        assert services.notifications.get(notification.id).delivered
