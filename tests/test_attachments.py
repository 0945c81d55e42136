import os

from helpdesk import storage


def _upload(client, ticket_id, headers, name="log.txt", data=b"disk full at 03:00", content_type="text/plain"):
    return client.post(f"/api/attachments/tickets/{ticket_id}", files={"file": (name, data, content_type)}, headers=headers)


def test_submitter_upload_list_and_download(client, auth_headers, create_ticket, upload_dir):
    user_headers, user = auth_headers(role="end_user")
    ticket = create_ticket(user_headers)

    r = _upload(client, ticket["id"], user_headers)
    assert r.status_code == 201, r.text
    attachment = r.json()
    assert attachment["file_name"] == "log.txt"
    assert attachment["file_size_bytes"] == len(b"disk full at 03:00")
    assert attachment["uploaded_by_id"] == user.id
    assert len(os.listdir(upload_dir / ticket["id"])) == 1

    r = client.get(f"/api/attachments/tickets/{ticket['id']}", headers=user_headers)
    assert [a["id"] for a in r.json()] == [attachment["id"]]

    r = client.get(f"/api/attachments/{attachment['id']}", headers=user_headers)
    assert r.status_code == 200
    assert r.content == b"disk full at 03:00"

    r = client.get(f"/api/tickets/{ticket['id']}/details", headers=user_headers)
    assert [a["id"] for a in r.json()["attachments"]] == [attachment["id"]]


def test_only_submitter_assignee_or_admin_may_upload(client, auth_headers, create_ticket):
    user_headers, _ = auth_headers(role="end_user")
    agent_headers, agent = auth_headers(role="agent")
    other_agent_headers, _ = auth_headers(role="agent")
    admin_headers, _ = auth_headers(role="admin")
    ticket = create_ticket(user_headers)

    assert _upload(client, ticket["id"], agent_headers).status_code == 403
    client.put(f"/api/tickets/{ticket['id']}/assign", json={"agent_id": agent.id}, headers=agent_headers)
    assert _upload(client, ticket["id"], agent_headers).status_code == 201
    assert _upload(client, ticket["id"], other_agent_headers).status_code == 403
    assert _upload(client, ticket["id"], admin_headers).status_code == 201


def test_upload_rejects_large_file(client, auth_headers, create_ticket, monkeypatch):
    monkeypatch.setattr(storage, "MAX_ATTACHMENT_SIZE", 16)
    user_headers, _ = auth_headers(role="end_user")
    ticket = create_ticket(user_headers)

    r = _upload(client, ticket["id"], user_headers, data=b"x" * 17, content_type="application/x-msdownload")
    assert r.status_code == 400
    body = r.json()
    assert body["error"]["code"] == "attachment_too_large"
    assert body["error"]["details"]["max_bytes"] == 16


def test_upload_rejects_disallowed_type(client, auth_headers, create_ticket):
    user_headers, _ = auth_headers(role="end_user")
    ticket = create_ticket(user_headers)

    r = _upload(client, ticket["id"], user_headers, name="setup.exe", content_type="application/x-msdownload")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "attachment_invalid_type"


def test_upload_accepts_wildcard_image_type(client, auth_headers, create_ticket):
    user_headers, _ = auth_headers(role="end_user")
    ticket = create_ticket(user_headers)

    r = _upload(client, ticket["id"], user_headers, name="screen.png", data=b"\x89PNG fake", content_type="image/png")
    assert r.status_code == 201
    assert r.json()["content_type"] == "image/png"


def test_upload_rejects_empty_file_and_bad_name(client, auth_headers, create_ticket):
    user_headers, _ = auth_headers(role="end_user")
    ticket = create_ticket(user_headers)

    r = _upload(client, ticket["id"], user_headers, data=b"")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "attachment_empty"

    r = _upload(client, ticket["id"], user_headers, name="notes..txt")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_file_name"


def test_download_requires_ticket_access(client, auth_headers, create_ticket):
    owner_headers, _ = auth_headers(role="end_user")
    stranger_headers, _ = auth_headers(role="end_user")
    ticket = create_ticket(owner_headers)
    attachment = _upload(client, ticket["id"], owner_headers).json()

    r = client.get(f"/api/attachments/{attachment['id']}", headers=stranger_headers)
    assert r.status_code == 403

    r = client.get("/api/attachments/unknown", headers=owner_headers)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "attachment_not_found"


def test_download_reports_missing_file(client, auth_headers, create_ticket, upload_dir):
    user_headers, _ = auth_headers(role="end_user")
    ticket = create_ticket(user_headers)
    attachment = _upload(client, ticket["id"], user_headers).json()

    for name in os.listdir(upload_dir / ticket["id"]):
        os.remove(upload_dir / ticket["id"] / name)

    r = client.get(f"/api/attachments/{attachment['id']}", headers=user_headers)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "attachment_file_missing"


def test_delete_by_uploader_or_admin(client, auth_headers, create_ticket, upload_dir):
    user_headers, _ = auth_headers(role="end_user")
    agent_headers, agent = auth_headers(role="agent")
    admin_headers, _ = auth_headers(role="admin")
    ticket = create_ticket(user_headers)
    client.put(f"/api/tickets/{ticket['id']}/assign", json={"agent_id": agent.id}, headers=agent_headers)

    mine = _upload(client, ticket["id"], user_headers).json()
    theirs = _upload(client, ticket["id"], agent_headers).json()

    r = client.delete(f"/api/attachments/{theirs['id']}", headers=user_headers)
    assert r.status_code == 403

    r = client.delete(f"/api/attachments/{mine['id']}", headers=user_headers)
    assert r.status_code == 204

    r = client.delete(f"/api/attachments/{theirs['id']}", headers=admin_headers)
    assert r.status_code == 204

    assert os.listdir(upload_dir / ticket["id"]) == []
    r = client.get(f"/api/attachments/tickets/{ticket['id']}", headers=user_headers)
    assert r.json() == []


def test_deleting_ticket_removes_files(client, auth_headers, create_ticket, upload_dir):
    user_headers, _ = auth_headers(role="end_user")
    admin_headers, _ = auth_headers(role="admin")
    ticket = create_ticket(user_headers)
    _upload(client, ticket["id"], user_headers)

    r = client.delete(f"/api/tickets/{ticket['id']}", headers=admin_headers)
    assert r.status_code == 204
    assert os.listdir(upload_dir / ticket["id"]) == []


def test_mime_allowed_patterns():
    assert storage.mime_allowed("image/jpeg")
    assert storage.mime_allowed("application/pdf")
    assert not storage.mime_allowed("application/x-sh")
    assert not storage.mime_allowed(None)


def test_file_name_problem():
    assert storage.file_name_problem("report.pdf") is None
    assert storage.file_name_problem("   ") is not None
    assert storage.file_name_problem("a" * 256) is not None
    assert storage.file_name_problem("dir/report.pdf") is not None
