import zipfile

from fastapi.testclient import TestClient

from gitdrop.services.rate_limit import RateGovernor, RateLimitConfig

HEADERS = {"X-Chat-Identity": "user-1"}


def _login(client: TestClient, token: str) -> None:
    response = client.post("/api/v1/commands/login", json={"token": token}, headers=HEADERS)
    assert response.status_code == 200, response.text


def test_health_check(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_identity_header_is_required(client: TestClient) -> None:
    response = client.get("/api/v1/commands/whoami")

    assert response.status_code == 422


def test_login_then_whoami(client: TestClient, valid_token: str) -> None:
    _login(client, valid_token)

    response = client.get("/api/v1/commands/whoami", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert "octocat" in body["message"]


def test_whoami_without_login_is_not_ok(client: TestClient) -> None:
    response = client.get("/api/v1/commands/whoami", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["ok"] is False


def test_malformed_token_is_bad_request(client: TestClient) -> None:
    response = client.post(
        "/api/v1/commands/login", json={"token": "nope"}, headers=HEADERS
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "That does not look like a valid access token."


def test_missing_scope_is_forbidden(client: TestClient, fake_hosting, valid_token: str) -> None:
    fake_hosting.scopes = ("gist",)

    response = client.post(
        "/api/v1/commands/login", json={"token": valid_token}, headers=HEADERS
    )

    assert response.status_code == 403
    assert "missing scope" in response.json()["detail"]


def test_token_never_appears_in_error_detail(client: TestClient, fake_hosting) -> None:
    fake_hosting.scopes = ("gist",)
    token = "ghp_" + "Z" * 36

    response = client.post("/api/v1/commands/login", json={"token": token}, headers=HEADERS)

    assert token not in response.text


def test_rate_limit_returns_429_with_retry_after(
    client: TestClient, command_context, fake_clock
) -> None:
    command_context.governor = RateGovernor(RateLimitConfig(), clock=fake_clock)

    assert client.get("/api/v1/commands/help", headers=HEADERS).status_code == 200
    response = client.get("/api/v1/commands/help", headers=HEADERS)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "2"


def test_repos_lists_repositories(client: TestClient, valid_token: str) -> None:
    _login(client, valid_token)

    response = client.get("/api/v1/commands/repos", headers=HEADERS)

    assert response.status_code == 200
    assert "no repositories" in response.json()["message"]


def test_upload_round_trip(
    client: TestClient, command_context, fake_hosting, make_zip, valid_token: str
) -> None:
    archive = make_zip({"pkg/a.txt": "a", "pkg/b/c.txt": "c"})

    async def _download(url, config) -> bytes:
        return archive

    command_context.downloader = _download
    _login(client, valid_token)

    response = client.post(
        "/api/v1/commands/upload",
        json={
            "repository": "demo",
            "folder": "drop",
            "attachment": {"url": "https://cdn.example.test/pkg.zip", "filename": "pkg.zip"},
        },
        headers=HEADERS,
    )

    assert response.status_code == 200, response.text
    assert response.json()["ok"] is True
    assert sorted(path for path, _ in fake_hosting.writes) == ["drop/a.txt", "drop/b/c.txt"]


def test_upload_bomb_is_bad_request(
    client: TestClient, command_context, fake_hosting, make_zip, valid_token: str
) -> None:
    archive = make_zip({"bomb.bin": b"\0" * 2_000_000}, compression=zipfile.ZIP_DEFLATED)

    async def _download(url, config) -> bytes:
        return archive

    command_context.downloader = _download
    _login(client, valid_token)

    response = client.post(
        "/api/v1/commands/upload",
        json={
            "repository": "demo",
            "attachment": {"url": "https://cdn.example.test/b.zip", "filename": "b.zip"},
        },
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert fake_hosting.writes == []


def test_logout(client: TestClient, valid_token: str) -> None:
    _login(client, valid_token)

    assert client.post("/api/v1/commands/logout", headers=HEADERS).json()["ok"] is True
    assert client.post("/api/v1/commands/logout", headers=HEADERS).json()["ok"] is False
