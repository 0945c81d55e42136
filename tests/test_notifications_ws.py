import pytest
from starlette.websockets import WebSocketDisconnect

from helpdesk.notifications import manager


def _token(headers):
    return headers["Authorization"].split()[1]


def test_connect_greeting_and_ping(client, auth_headers):
    headers, user = auth_headers(role="end_user")

    with client.websocket_connect(f"/api/notifications/ws?token={_token(headers)}") as ws:
        assert ws.receive_json() == {"type": "connected", "user_id": user.id}
        assert manager.is_connected(user.id)
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

    assert not manager.is_connected(user.id)


def test_bad_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/api/notifications/ws?token=garbage") as ws:
            ws.receive_json()
    assert excinfo.value.code == 1008

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/api/notifications/ws") as ws:
            ws.receive_json()


def test_assignment_notifies_submitter(client, auth_headers, create_ticket):
    user_headers, user = auth_headers(role="end_user")
    agent_headers, agent = auth_headers(role="agent", first_name="Alex", last_name="Smith")
    ticket = create_ticket(user_headers)

    with client.websocket_connect(f"/api/notifications/ws?token={_token(user_headers)}") as ws:
        ws.receive_json()
        r = client.put(f"/api/tickets/{ticket['id']}/assign", json={"agent_id": agent.id}, headers=agent_headers)
        assert r.status_code == 200

        message = ws.receive_json()
        assert message["type"] == "ticket.assigned"
        assert message["ticket_id"] == ticket["id"]
        assert message["message"] == f"Ticket {ticket['ticket_number']} has been assigned to Alex Smith"
        assert message["data"]["version"] == 1


def test_in_app_preferences_are_honoured(client, auth_headers, create_ticket):
    user_headers, _ = auth_headers(role="end_user")
    agent_headers, _ = auth_headers(role="agent")
    ticket = create_ticket(user_headers)
    client.put("/api/users/me/preferences", json={"in_app_on_ticket_updated": False}, headers=user_headers)

    with client.websocket_connect(f"/api/notifications/ws?token={_token(user_headers)}") as ws:
        ws.receive_json()
        client.put(f"/api/tickets/{ticket['id']}/priority", json={"priority": "high"}, headers=agent_headers)
        client.post(f"/api/tickets/{ticket['id']}/comments", json={"content": "Looking into it"}, headers=agent_headers)

        # The priority change was muted, so the comment is the first thing to arrive
        message = ws.receive_json()
        assert message["type"] == "comment.added"
