async def _register_and_login(api_client, email: str, password: str = "password123") -> str:
    resp = await api_client.post("/api/auth/register", json={"email": email, "password": password})
    assert resp.status_code == 200

    login = await api_client.post("/api/auth/login", json={"email": email, "password": password})
    assert login.status_code == 200
    return login.json()["token"]


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def test_learn_status_requires_auth(api_client) -> None:
    get_resp = await api_client.get("/api/profile/learn_status")
    assert get_resp.status_code == 401

    post_resp = await api_client.post(
        "/api/profile/learn_status", json={"context_id": 1, "err_count": 0, "time_record": 10}
    )
    assert post_resp.status_code == 401
    assert post_resp.json()["success"] is False


async def test_records_are_returned_ordered_by_context(api_client) -> None:
    token = await _register_and_login(api_client, "learner@example.com")

    for context_id, errors, seconds in [(3, 1, 30), (1, 0, 12), (2, 4, 95)]:
        resp = await api_client.post(
            "/api/profile/learn_status",
            json={"context_id": context_id, "err_count": errors, "time_record": seconds},
            headers=_bearer(token),
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    listing = await api_client.get("/api/profile/learn_status", headers=_bearer(token))
    assert listing.status_code == 200
    payload = listing.json()
    assert payload["success"] is True
    assert [r["context_id"] for r in payload["data"]] == [1, 2, 3]
    assert payload["data"][2]["err_count"] == 1
    assert payload["data"][2]["time_record"] == 30
    assert "created_at" in payload["data"][0]


async def test_repeated_context_appends_history(api_client) -> None:
    token = await _register_and_login(api_client, "again@example.com")

    for errors in (5, 2):
        resp = await api_client.post(
            "/api/profile/learn_status",
            json={"context_id": 7, "err_count": errors, "time_record": 40},
            headers=_bearer(token),
        )
        assert resp.status_code == 200

    rows = (await api_client.get("/api/profile/learn_status", headers=_bearer(token))).json()["data"]
    assert [r["err_count"] for r in rows] == [5, 2]


async def test_records_are_scoped_to_the_caller(api_client) -> None:
    alice = await _register_and_login(api_client, "alice@example.com")
    bob = await _register_and_login(api_client, "bob@example.com")

    resp = await api_client.post(
        "/api/profile/learn_status",
        json={"context_id": 1, "err_count": 0, "time_record": 5},
        headers=_bearer(alice),
    )
    assert resp.status_code == 200

    bob_rows = await api_client.get("/api/profile/learn_status", headers=_bearer(bob))
    assert bob_rows.status_code == 200
    assert bob_rows.json()["data"] == []


async def test_user_email_must_match_token(api_client) -> None:
    token = await _register_and_login(api_client, "owner@example.com")

    same = await api_client.post(
        "/api/profile/learn_status",
        json={"user_email": "Owner@Example.com", "context_id": 1, "err_count": 0, "time_record": 5},
        headers=_bearer(token),
    )
    assert same.status_code == 200

    other = await api_client.post(
        "/api/profile/learn_status",
        json={"user_email": "someone@example.com", "context_id": 1, "err_count": 0, "time_record": 5},
        headers=_bearer(token),
    )
    assert other.status_code == 403
    assert other.json()["success"] is False


async def test_invalid_payload_is_rejected(api_client) -> None:
    token = await _register_and_login(api_client, "typo@example.com")

    missing = await api_client.post(
        "/api/profile/learn_status", json={"context_id": 1}, headers=_bearer(token)
    )
    assert missing.status_code == 400
    assert missing.json()["message"] == "Missing or invalid fields"

    negative = await api_client.post(
        "/api/profile/learn_status",
        json={"context_id": 1, "err_count": -1, "time_record": 5},
        headers=_bearer(token),
    )
    assert negative.status_code == 400
