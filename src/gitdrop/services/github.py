"""GitHub REST client used by the command handlers and the publish pipeline.

This module provides the HostingClient class that wraps the few hosting-API
capabilities gitdrop relies on:

- resolving the authenticated identity and its OAuth scopes
- reading a file's version marker (its blob ``sha``)
- creating or updating file contents
- listing the caller's repositories
- bootstrapping an empty repository with a placeholder README
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final
from urllib.parse import quote

import httpx

from gitdrop.core.errors import (
    ConflictError,
    HostingError,
    InvalidTokenFormatError,
    RepositoryNotFoundError,
)
from gitdrop.core.settings import Settings, settings

logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_OK = 200
HTTP_CREATED = 201
HTTP_UNAUTHORIZED = 401
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_UNPROCESSABLE = 422

API_VERSION: Final[str] = "2022-11-28"
SCOPES_HEADER: Final[str] = "X-OAuth-Scopes"
README_PATH: Final[str] = "README.md"

_TOKEN_SHAPE = re.compile(r"^[A-Za-z0-9_]{20,255}$")


def validate_token_format(token: str) -> str:
    """Return the stripped token if it could be a hosting-service token."""
    candidate = (token or "").strip()
    if not _TOKEN_SHAPE.match(candidate):
        raise InvalidTokenFormatError()
    return candidate


@dataclass(frozen=True)
class HostingConfig:
    """Immutable configuration for hosting-API access."""

    api_url: str = "https://api.github.com"
    web_url: str = "https://github.com"
    timeout_seconds: float = 30.0


def load_hosting_config(source: Settings | None = None) -> HostingConfig:
    """Build configuration object from global settings."""
    cfg = source or settings
    return HostingConfig(
        api_url=cfg.github_api_url,
        web_url=cfg.github_web_url,
        timeout_seconds=float(cfg.github_http_timeout_seconds),
    )


@dataclass(frozen=True)
class ScopePolicy:
    """Decides whether a token's granted scopes are sufficient.

    A granted scope satisfies a required one when it is equal to it or is its
    parent (``repo`` covers ``repo:status``). Tokens that report no scopes at
    all, such as fine-grained tokens, are accepted only when
    ``allow_unscoped`` is set.
    """

    required: tuple[str, ...] = ("repo",)
    allow_unscoped: bool = False

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> ScopePolicy:
        cfg = source or settings
        return cls(
            required=tuple(cfg.required_token_scopes),
            allow_unscoped=cfg.allow_unscoped_tokens,
        )

    def missing(self, granted: Iterable[str] | None) -> list[str]:
        """Return the required scopes that ``granted`` does not cover."""
        if granted is None:
            return [] if self.allow_unscoped else list(self.required)
        granted_set = {scope.strip() for scope in granted if scope.strip()}
        return [
            scope
            for scope in self.required
            if not any(scope == have or scope.startswith(f"{have}:") for have in granted_set)
        ]


@dataclass(frozen=True)
class Identity:
    """The account a token authenticates as."""

    username: str
    scopes: tuple[str, ...] | None


@dataclass(frozen=True)
class Repository:
    """Summary of one repository as listed to the user."""

    name: str
    full_name: str
    private: bool
    html_url: str
    updated_at: str | None = None


@dataclass
class RequestStats:
    """Counters for hosting-API requests made by one client."""

    request_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    status_counts: dict[int, int] = field(default_factory=dict)

    def record(self, status_code: int | None, response_time: float) -> None:
        self.request_count += 1
        self.total_response_time += response_time
        if status_code is None or status_code >= 400:
            self.error_count += 1
        if status_code is not None:
            self.status_counts[status_code] = self.status_counts.get(status_code, 0) + 1


def _content_path(owner: str, repo: str, path: str) -> str:
    return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}/contents/{quote(path)}"


def _parse_scopes(header: str | None) -> tuple[str, ...] | None:
    if header is None:
        return None
    return tuple(scope.strip() for scope in header.split(",") if scope.strip())


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, Mapping):
        return str(payload.get("message", ""))
    return ""


class HostingClient:
    """HTTP client wrapper for GitHub REST interactions on behalf of one token."""

    def __init__(
        self,
        token: str,
        config: HostingConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_hosting_config()
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self.stats = RequestStats()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.api_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                    headers={
                        "Accept": "application/vnd.github+json",
                        "Authorization": f"Bearer {self._token}",
                        "X-GitHub-Api-Version": API_VERSION,
                    },
                )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        client = await self._ensure_client()
        start_time = time.monotonic()
        status_code: int | None = None
        try:
            response = await client.request(method, path, json=json_data, params=params)
            status_code = response.status_code
        except httpx.HTTPError as exc:
            raise HostingError(f"Hosting request failed: {type(exc).__name__}") from exc
        finally:
            self.stats.record(status_code, time.monotonic() - start_time)

        if status_code == HTTP_UNAUTHORIZED:
            raise HostingError("The access token was rejected", status_code=status_code)
        return response

    async def verify_identity(self) -> Identity:
        """Return the token's username and granted scopes."""
        response = await self._request("GET", "/user")
        if response.status_code != HTTP_OK:
            raise HostingError(
                f"Unexpected hosting response ({response.status_code}) for identity",
                status_code=response.status_code,
            )
        payload = response.json()
        return Identity(
            username=str(payload["login"]),
            scopes=_parse_scopes(response.headers.get(SCOPES_HEADER)),
        )

    async def get_file_metadata(self, owner: str, repo: str, path: str) -> str | None:
        """Return the version marker of ``path``, or None if it does not exist."""
        response = await self._request("GET", _content_path(owner, repo, path))
        if response.status_code == HTTP_NOT_FOUND:
            return None
        if response.status_code != HTTP_OK:
            raise HostingError(
                f"Unexpected hosting response ({response.status_code}) reading {path}",
                status_code=response.status_code,
            )
        payload = response.json()
        if isinstance(payload, list):
            raise HostingError(f"Remote path {path} is a directory")
        return payload.get("sha")

    async def create_or_update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content_b64: str,
        message: str,
        sha: str | None = None,
    ) -> None:
        """Write ``content_b64`` to ``path``.

        Raises:
            ConflictError: The version marker no longer matches the remote file.
            RepositoryNotFoundError: The repository does not exist.
            HostingError: Any other failure response.
        """
        body: dict[str, Any] = {"message": message, "content": content_b64}
        if sha:
            body["sha"] = sha
        response = await self._request("PUT", _content_path(owner, repo, path), json_data=body)

        if response.status_code in (HTTP_OK, HTTP_CREATED):
            return
        if response.status_code == HTTP_CONFLICT:
            raise ConflictError(f"Remote file {path} changed during update")
        if response.status_code == HTTP_UNPROCESSABLE and "sha" in _error_message(response):
            raise ConflictError(f"Remote file {path} changed during update")
        if response.status_code == HTTP_NOT_FOUND:
            raise RepositoryNotFoundError(owner, repo)
        raise HostingError(
            f"Hosting service responded with {response.status_code} writing {path}: "
            f"{_error_message(response)}",
            status_code=response.status_code,
        )

    async def list_repositories(self, sort: str = "updated", limit: int = 10) -> list[Repository]:
        """Return up to ``limit`` repositories of the authenticated user."""
        response = await self._request(
            "GET", "/user/repos", params={"sort": sort, "per_page": limit}
        )
        if response.status_code != HTTP_OK:
            raise HostingError(
                f"Unexpected hosting response ({response.status_code}) listing repositories",
                status_code=response.status_code,
            )
        return [
            Repository(
                name=str(item["name"]),
                full_name=str(item.get("full_name", item["name"])),
                private=bool(item.get("private", False)),
                html_url=str(item.get("html_url", "")),
                updated_at=item.get("updated_at"),
            )
            for item in response.json()[:limit]
        ]

    async def repository_is_empty(self, owner: str, repo: str) -> bool:
        """Return True if the repository exists but has no commits."""
        repo_path = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
        response = await self._request("GET", repo_path)
        if response.status_code == HTTP_NOT_FOUND:
            raise RepositoryNotFoundError(owner, repo)
        if response.status_code != HTTP_OK:
            raise HostingError(
                f"Unexpected hosting response ({response.status_code}) for {owner}/{repo}",
                status_code=response.status_code,
            )

        contents = await self._request("GET", f"{repo_path}/contents/")
        if contents.status_code == HTTP_NOT_FOUND:
            return True
        if contents.status_code != HTTP_OK:
            raise HostingError(
                f"Unexpected hosting response ({contents.status_code}) for {owner}/{repo}",
                status_code=contents.status_code,
            )
        return False

    async def bootstrap_empty_repo(self, owner: str, repo: str) -> None:
        """Write a placeholder README so the repository has a first commit."""
        readme = f"# {repo}\n\nRepository initialized by gitdrop to receive uploads.\n"
        await self.create_or_update_file(
            owner,
            repo,
            README_PATH,
            base64.b64encode(readme.encode("utf-8")).decode("ascii"),
            "Initialize repository",
        )
        logger.info("Bootstrapped empty repository %s/%s", owner, repo)

    async def aclose(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
        if self.stats.request_count:
            logger.debug(
                "Hosting client closed after %d requests (%d errors, %.2fs total)",
                self.stats.request_count,
                self.stats.error_count,
                self.stats.total_response_time,
            )

    async def __aenter__(self) -> HostingClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class HostingClientFactory:
    """Builds per-token hosting clients; replaceable with fakes in tests."""

    def __init__(
        self,
        config: HostingConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_hosting_config()
        self._transport = transport

    def __call__(self, token: str) -> HostingClient:
        return HostingClient(token, self.config, transport=self._transport)


__all__ = [
    "Identity",
    "HostingClient",
    "HostingClientFactory",
    "HostingConfig",
    "Repository",
    "ScopePolicy",
    "load_hosting_config",
    "validate_token_format",
]
