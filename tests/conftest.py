# tests/conftest.py
from __future__ import annotations

import asyncio
import io
import os
import tempfile
import zipfile
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

TEST_SECRET = "test-deployment-secret-with-enough-length-0123456789"

os.environ.setdefault("ENCRYPTION_SECRET", TEST_SECRET)
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="gitdrop-tests-"))

from gitdrop.core.errors import ConflictError, RepositoryNotFoundError
from gitdrop.main import app as fastapi_app
from gitdrop.services.cipher import CipherConfig, CredentialCipher
from gitdrop.services.commands import CommandContext, get_command_context
from gitdrop.services.credential_store import CredentialStore
from gitdrop.services.download import DownloadConfig
from gitdrop.services.github import Identity, Repository, ScopePolicy
from gitdrop.services.publish import PublishConfig
from gitdrop.services.rate_limit import RateGovernor, RateLimitConfig
from gitdrop.utils.locking import LockConfig

VALID_TOKEN = "ghp_" + "A1b2C3d4E5" * 4


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeHostingClient:
    """In-memory stand-in for the GitHub client."""

    username: str = "octocat"
    scopes: tuple[str, ...] | None = ("repo",)
    repositories: list[Repository] = field(default_factory=list)
    empty: bool = False
    missing_repository: bool = False
    files: dict[str, str] = field(default_factory=dict)
    writes: list[tuple[str, str | None]] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    contents: dict[str, str] = field(default_factory=dict)
    bootstrapped: bool = False
    conflicts: dict[str, int] = field(default_factory=dict)
    failing_paths: set[str] = field(default_factory=set)
    in_flight: int = 0
    max_in_flight: int = 0
    closed: bool = False

    async def verify_identity(self) -> Identity:
        return Identity(username=self.username, scopes=self.scopes)

    async def list_repositories(self, sort: str = "updated", limit: int = 10) -> list[Repository]:
        return self.repositories[:limit]

    async def repository_is_empty(self, owner: str, repo: str) -> bool:
        if self.missing_repository:
            raise RepositoryNotFoundError(owner, repo)
        return self.empty

    async def bootstrap_empty_repo(self, owner: str, repo: str) -> None:
        self.bootstrapped = True
        self.files["README.md"] = "readme-sha"

    async def get_file_metadata(self, owner: str, repo: str, path: str) -> str | None:
        return self.files.get(path)

    async def create_or_update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content_b64: str,
        message: str,
        sha: str | None = None,
    ) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if path in self.failing_paths:
                raise RuntimeError(f"server exploded writing {path}")
            if self.conflicts.get(path, 0) > 0:
                self.conflicts[path] -= 1
                self.files[path] = f"moved-{self.conflicts[path]}"
                raise ConflictError(f"Remote file {path} changed during update")
            self.writes.append((path, sha))
            self.messages.append(message)
            self.contents[path] = content_b64
            self.files[path] = f"sha-{len(self.writes)}"
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def valid_token() -> str:
    return VALID_TOKEN


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cipher_config(tmp_path: Path) -> CipherConfig:
    return CipherConfig(secret=TEST_SECRET, salt_path=tmp_path / "installation.salt")


@pytest.fixture()
def cipher(cipher_config: CipherConfig) -> CredentialCipher:
    return CredentialCipher(cipher_config)


@pytest.fixture()
def store(tmp_path: Path, cipher: CredentialCipher) -> CredentialStore:
    return CredentialStore(
        tmp_path / "user_tokens.json",
        cipher,
        LockConfig(timeout_seconds=5.0, retry_delay_seconds=0.01),
    )


@pytest.fixture()
def fake_hosting() -> FakeHostingClient:
    return FakeHostingClient()


@pytest.fixture()
def make_zip() -> Callable[..., bytes]:
    """Build an in-memory ZIP archive from a name-to-content mapping."""

    def _make_zip(
        files: dict[str, bytes | str],
        compression: int = zipfile.ZIP_STORED,
    ) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
            for name, content in files.items():
                archive.writestr(name, content)
        return buffer.getvalue()

    return _make_zip


@pytest.fixture()
def command_context(
    store: CredentialStore,
    fake_hosting: FakeHostingClient,
    fake_clock: FakeClock,
) -> CommandContext:
    async def _no_download(url: str, config: DownloadConfig) -> bytes:
        raise AssertionError("download was not expected")

    return CommandContext(
        store=store,
        governor=RateGovernor(
            RateLimitConfig(cooldown_seconds=0.0, max_commands=1000), clock=fake_clock
        ),
        client_factory=lambda token: fake_hosting,
        scope_policy=ScopePolicy(required=("repo",)),
        publish_config=PublishConfig(backoff_base_seconds=0.0),
        downloader=_no_download,
    )


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(app: FastAPI, command_context: CommandContext) -> Iterator[TestClient]:
    app.dependency_overrides[get_command_context] = lambda: command_context
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_command_context, None)
