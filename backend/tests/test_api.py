import pytest

from notekeeper.main import AUTH_COOKIE_NAME


def _register(client, name="Alice", email="alice@example.com", password="secret1"):
    response = client.post(
        "/api/auth/register", json={"name": name, "email": email, "password": password}
    )
    assert response.status_code == 201, response.text
    return response.json()


def _headers(auth):
    return {"Authorization": f"Bearer {auth['access_token']}"}


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_register_and_me(client):
    auth = _register(client)
    assert auth["token_type"] == "bearer"
    assert auth["user"]["email"] == "alice@example.com"
    assert "password_hash" not in auth["user"]

    me = client.get("/api/auth/me", headers=_headers(auth))
    assert me.status_code == 200
    assert me.json() == {"id": auth["user"]["id"], "email": "alice@example.com", "name": "Alice"}


def test_register_errors(client):
    _register(client)
    duplicate = client.post(
        "/api/auth/register",
        json={"name": "Alice", "email": "alice@example.com", "password": "secret1"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "CONFLICT"

    short = client.post(
        "/api/auth/register", json={"name": "Bob", "email": "bob@example.com", "password": "123"}
    )
    assert short.status_code == 400
    assert short.json()["details"] == {"field": "password"}


def test_login_sets_cookie_and_hides_cause(client):
    _register(client)
    response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret1"})
    assert response.status_code == 200
    assert AUTH_COOKIE_NAME in response.cookies

    # The cookie alone authenticates.
    assert client.get("/api/notes").status_code == 200

    wrong = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope"})
    unknown = client.post("/api/auth/login", json={"email": "who@example.com", "password": "secret1"})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json()


def test_logout_clears_cookie(client):
    _register(client)
    client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret1"})
    response = client.post("/api/auth/logout")
    assert response.status_code == 200
    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith(f"{AUTH_COOKIE_NAME}=")
    assert "Max-Age=0" in set_cookie


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer broken"}])
def test_protected_routes_need_a_token(client, headers):
    response = client.get("/api/notes", headers=headers)
    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_ERROR"


def test_note_lifecycle(client):
    auth = _register(client)
    headers = _headers(auth)

    created = client.post(
        "/api/notes", json={"title": "Plan", "content": "# Goals\n- **ship**"}, headers=headers
    )
    assert created.status_code == 201
    note = created.json()
    assert note["pinned"] is False
    assert note["labels"] == []
    assert note["background_color"] == "#ffffff"

    updated = client.put(f"/api/notes/{note['id']}", json={"title": "Plan v2"}, headers=headers)
    assert updated.json()["title"] == "Plan v2"
    assert updated.json()["content"] == "# Goals\n- **ship**"

    pinned = client.patch(f"/api/notes/{note['id']}/pin", headers=headers)
    assert pinned.json()["pinned"] is True

    rendered = client.get(f"/api/notes/{note['id']}/rendered", headers=headers)
    assert [block["kind"] for block in rendered.json()] == ["heading", "bullet_item"]

    archived = client.patch(f"/api/notes/{note['id']}/archive", headers=headers)
    assert archived.json()["archived"] is True
    assert client.get("/api/notes", headers=headers).json() == []
    assert len(client.get("/api/notes", params={"archived": "true"}, headers=headers).json()) == 1

    deleted = client.delete(f"/api/notes/{note['id']}", headers=headers)
    assert deleted.json() == {"message": "Note deleted successfully"}
    missing = client.get(f"/api/notes/{note['id']}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_update_with_null_title_is_rejected(client):
    headers = _headers(_register(client))
    note = client.post("/api/notes", json={"title": "t", "content": "c"}, headers=headers).json()
    response = client.put(f"/api/notes/{note['id']}", json={"title": None}, headers=headers)
    assert response.status_code == 400


def test_other_users_get_403(client):
    alice = _headers(_register(client))
    bob = _headers(_register(client, name="Bob", email="bob@example.com"))
    note = client.post("/api/notes", json={"title": "t", "content": "c"}, headers=alice).json()

    assert client.get(f"/api/notes/{note['id']}", headers=bob).status_code == 403
    assert client.delete(f"/api/notes/{note['id']}", headers=bob).status_code == 403
    response = client.patch(f"/api/notes/{note['id']}/pin", headers=bob)
    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied"


def test_labels_and_association(client):
    headers = _headers(_register(client))
    label = client.post("/api/labels", json={"name": "Work"}, headers=headers)
    assert label.status_code == 201
    label = label.json()
    assert label["color"] == "#3b82f6"

    note = client.post("/api/notes", json={"title": "t", "content": "c"}, headers=headers).json()
    path = f"/api/notes/{note['id']}/labels/{label['id']}"
    assert client.patch(path, json={"action": "add"}, headers=headers).json()["labels"] == [label["id"]]
    assert client.patch(path, json={"action": "add"}, headers=headers).json()["labels"] == [label["id"]]
    assert client.patch(path, json={"action": "flip"}, headers=headers).status_code == 400

    filtered = client.get("/api/notes", params={"label_id": label["id"]}, headers=headers).json()
    assert [n["id"] for n in filtered] == [note["id"]]

    renamed = client.put(f"/api/labels/{label['id']}", json={"name": "Office"}, headers=headers)
    assert renamed.json()["name"] == "Office"
    assert [item["name"] for item in client.get("/api/labels", headers=headers).json()] == ["Office"]

    client.delete(f"/api/labels/{label['id']}", headers=headers)
    assert client.get(f"/api/notes/{note['id']}", headers=headers).json()["labels"] == []
    assert client.get("/api/notes", params={"label_id": label["id"]}, headers=headers).json() == []


def test_summary_endpoint_without_service(client):
    headers = _headers(_register(client))
    note = client.post("/api/notes", json={"title": "t", "content": "c"}, headers=headers).json()
    response = client.post(f"/api/notes/{note['id']}/summary", headers=headers)
    assert response.status_code == 503
    assert response.json()["detail"] == "AI summary service is unavailable"


def test_summary_endpoints_with_service(summary_client, summarizer):
    headers = _headers(_register(summary_client))
    created = summary_client.post(
        "/api/notes",
        json={"title": "t", "content": "long text", "generate_summary": True},
        headers=headers,
    ).json()
    assert created["summary"] == "Short summary"

    summarizer.error = RuntimeError("upstream down")
    failed = summary_client.put(
        f"/api/notes/{created['id']}",
        json={"content": "newer text", "generate_summary": True},
        headers=headers,
    )
    assert failed.status_code == 200
    assert failed.json()["summary_error"] == "Failed to generate summary"
    assert failed.json()["content"] == "newer text"


def test_format_endpoint(client):
    response = client.post("/api/format", json={"text": "**bold** text"})
    assert response.status_code == 200
    (block,) = response.json()
    assert block["kind"] == "paragraph"
    assert [span["kind"] for span in block["spans"]] == ["bold", "text"]


def test_empty_label_filter_is_ignored(client):
    headers = _headers(_register(client))
    client.post("/api/notes", json={"title": "t", "content": "c"}, headers=headers)
    response = client.get("/api/notes", params={"label_id": ""}, headers=headers)
    assert response.status_code == 200
    assert len(response.json()) == 1
