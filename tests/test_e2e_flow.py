def test_end_to_end_flow(client):
    """E2E: end user registers and opens a ticket; an agent picks it up from the queue,
    answers, resolves and closes it; the submitter sees the public trail only."""

    client.post("/api/seed")

    # 1) Self registration
    r = client.post("/api/auth/register", json={
        "email": "e2e_user@example.com",
        "password": "Secret123!",
        "first_name": "Erin",
        "last_name": "User",
    })
    assert r.status_code == 201
    user_headers = {"Authorization": f"Bearer {r.json()['access_token']}"}

    # 2) Open a ticket
    r = client.post("/api/tickets", json={
        "title": "Cannot reach shared drive",
        "description": "The S: drive is not mapped after the update.",
        "priority": "high",
        "tags": ["network"],
    }, headers=user_headers)
    assert r.status_code == 201
    ticket = r.json()
    assert ticket["status"] == "open"

    # 3) An admin creates the agent account
    r = client.post("/api/auth/login", json={"username_or_email": "admin", "password": "Admin123!"})
    admin_headers = {"Authorization": f"Bearer {r.json()['access_token']}"}
    r = client.post("/api/users", json={
        "username": "e2e_agent",
        "email": "e2e_agent@example.com",
        "first_name": "Eddie",
        "last_name": "Agent",
        "password": "Agentpass1!",
        "role": "agent",
    }, headers=admin_headers)
    assert r.status_code == 201
    agent_id = r.json()["id"]
    r = client.post("/api/auth/login", json={"username_or_email": "e2e_agent", "password": "Agentpass1!"})
    agent_headers = {"Authorization": f"Bearer {r.json()['access_token']}"}

    # 4) Agent finds it in the queue and takes it
    r = client.get("/api/tickets/queue", params={"limit": 100}, headers=agent_headers)
    assert ticket["id"] in [t["id"] for t in r.json()["data"]]

    r = client.get(f"/api/tickets/{ticket['id']}", headers=agent_headers)
    etag = r.headers["ETag"]
    r = client.put(f"/api/tickets/{ticket['id']}/assign", json={"agent_id": agent_id}, headers={**agent_headers, "If-Match": etag})
    assert r.status_code == 200
    assert r.json()["status"] == "in_progress"

    # 5) Public answer plus an internal note
    client.post(f"/api/tickets/{ticket['id']}/comments", json={"content": "Please reboot and try again."}, headers=agent_headers)
    client.post(f"/api/tickets/{ticket['id']}/comments", json={"content": "GPO push failed for this OU", "is_internal": True}, headers=agent_headers)

    # 6) Resolve then close
    r = client.put(f"/api/tickets/{ticket['id']}/status", json={"status": "resolved"}, headers=agent_headers)
    assert r.status_code == 200
    r = client.post(f"/api/tickets/{ticket['id']}/close", json={"resolution_notes": "Drive mapping restored by GPO refresh."}, headers={**agent_headers, "If-Match": r.headers["ETag"]})
    assert r.status_code == 200
    closed = r.json()
    assert closed["status"] == "closed"
    assert closed["version"] == 3

    # 7) Submitter view
    r = client.get(f"/api/tickets/{ticket['id']}/details", headers=user_headers)
    details = r.json()
    assert details["status"] == "closed"
    assert [c["content"] for c in details["comments"]] == ["Please reboot and try again."]
