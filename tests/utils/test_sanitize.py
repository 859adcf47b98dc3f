import pytest

from gitdrop.core.errors import DecryptionError
from gitdrop.utils.sanitize import MAX_MESSAGE_LENGTH, TRUNCATION_MARKER, UNKNOWN_ERROR, sanitize


def test_redacts_hosting_tokens() -> None:
    token = "ghp_" + "a" * 36
    fine_grained = "github_pat_" + "B" * 40

    result = sanitize(f"auth failed for {token} and {fine_grained}")

    assert token not in result
    assert fine_grained not in result
    assert result.count("[REDACTED_TOKEN]") == 2


def test_redacts_bot_tokens() -> None:
    bot_token = "M" * 24 + "." + "abcdef" + "." + "x" * 27

    assert sanitize(f"login with {bot_token}") == "login with [REDACTED_TOKEN]"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("password=hunter2 rejected", "password=[REDACTED] rejected"),
        ("api_key: abc123", "api_key: [REDACTED]"),
        ("password : hunter2", "password : [REDACTED]"),
        ("SECRET=xyz", "SECRET=[REDACTED]"),
    ],
)
def test_redacts_key_value_secrets(raw: str, expected: str) -> None:
    assert expected in sanitize(raw)


def test_replaces_home_directory_paths() -> None:
    result = sanitize(
        "cannot open /home/alice/bot/data.json or C:\\Users\\bob\\tokens.json or /root/x"
    )

    assert "alice" not in result
    assert "bob" not in result
    assert result.count("[PATH]") == 3


def test_leaves_unrelated_paths_alone() -> None:
    assert sanitize("missing /rootfs/etc and /tmp/file") == "missing /rootfs/etc and /tmp/file"


def test_truncates_long_messages() -> None:
    result = sanitize("x" * (MAX_MESSAGE_LENGTH + 50))

    assert result == "x" * MAX_MESSAGE_LENGTH + TRUNCATION_MARKER


def test_none_and_blank_exceptions() -> None:
    assert sanitize(None) == UNKNOWN_ERROR
    assert sanitize(ValueError()) == "ValueError"
    assert sanitize(DecryptionError("Credential failed authentication")) == (
        "Credential failed authentication"
    )


def test_never_raises_on_broken_str() -> None:
    class Broken(Exception):
        def __str__(self) -> str:
            raise RuntimeError("nope")

    assert sanitize(Broken()) == UNKNOWN_ERROR


def test_keeps_relative_repository_paths() -> None:
    message = "Hosting service responded with 422 writing app/root/index.html: bad"

    assert sanitize(message) == message


def test_keeps_url_path_segments() -> None:
    message = "GET https://api.github.com/repos/octocat/home/contents/Users/a.txt failed"

    assert sanitize(message) == message
