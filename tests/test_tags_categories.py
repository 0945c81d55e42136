def test_create_and_list_tags(client, auth_headers):
    agent_headers, _ = auth_headers(role="agent")
    user_headers, _ = auth_headers(role="end_user")

    r = client.post("/api/tags", json={"name": "network", "color": "#00AAFF"}, headers=agent_headers)
    assert r.status_code == 201
    assert r.json()["color"] == "#00AAFF"
    client.post("/api/tags", json={"name": "hardware"}, headers=agent_headers)

    r = client.get("/api/tags", headers=user_headers)
    assert [t["name"] for t in r.json()] == ["hardware", "network"]


def test_duplicate_tag_is_case_insensitive(client, auth_headers):
    agent_headers, _ = auth_headers(role="agent")
    client.post("/api/tags", json={"name": "network"}, headers=agent_headers)

    r = client.post("/api/tags", json={"name": "NETWORK"}, headers=agent_headers)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "tag_exists"


def test_tag_validation_and_permissions(client, auth_headers):
    agent_headers, _ = auth_headers(role="agent")
    user_headers, _ = auth_headers(role="end_user")

    assert client.post("/api/tags", json={"name": "x"}, headers=agent_headers).status_code == 422
    assert client.post("/api/tags", json={"name": "has space"}, headers=agent_headers).status_code == 422
    assert client.post("/api/tags", json={"name": "ok-tag", "color": "blue"}, headers=agent_headers).status_code == 422
    assert client.post("/api/tags", json={"name": "ok-tag"}, headers=user_headers).status_code == 403


def test_categories_ordered_and_admin_only(client, auth_headers):
    admin_headers, _ = auth_headers(role="admin")
    agent_headers, _ = auth_headers(role="agent")

    client.post("/api/categories", json={"name": "Software", "display_order": 2}, headers=admin_headers)
    client.post("/api/categories", json={"name": "Hardware", "display_order": 1}, headers=admin_headers)
    client.post("/api/categories", json={"name": "Access", "display_order": 2}, headers=admin_headers)

    r = client.get("/api/categories", headers=agent_headers)
    assert [c["name"] for c in r.json()] == ["Hardware", "Access", "Software"]

    r = client.post("/api/categories", json={"name": "Network"}, headers=agent_headers)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "admin_required"


def test_duplicate_category(client, auth_headers):
    admin_headers, _ = auth_headers(role="admin")
    client.post("/api/categories", json={"name": "Hardware"}, headers=admin_headers)

    r = client.post("/api/categories", json={"name": " hardware "}, headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "category_exists"
