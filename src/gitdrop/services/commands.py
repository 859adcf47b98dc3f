"""Chat command handlers.

Every handler takes an explicit :class:`CommandContext` and returns a
:class:`CommandReply`. Handlers raise domain errors; :func:`dispatch` applies
the rate governor, routes the command and turns domain errors into sanitized
replies.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from gitdrop.core.errors import (
    GitdropError,
    InvalidArchiveError,
    MissingScopeError,
    RepositoryNotFoundError,
)
from gitdrop.core.settings import Settings, settings
from gitdrop.services.archive import (
    ArchiveLimits,
    inspect_archive,
    load_archive_limits,
    open_archive,
    read_entry,
    sanitize_entries,
)
from gitdrop.services.cipher import CredentialCipher, load_cipher_config
from gitdrop.services.credential_store import CredentialStore
from gitdrop.services.download import (
    DownloadConfig,
    download_attachment,
    is_zip_filename,
    load_download_config,
)
from gitdrop.services.github import (
    HostingClient,
    HostingClientFactory,
    HostingConfig,
    ScopePolicy,
    load_hosting_config,
    validate_token_format,
)
from gitdrop.services.publish import (
    ProgressReporter,
    ProgressSubscriber,
    PublishConfig,
    UploadOutcome,
    load_publish_config,
    publish,
)
from gitdrop.services.rate_limit import RateGovernor, load_rate_limit_config
from gitdrop.utils.locking import load_lock_config
from gitdrop.utils.paths import validate_folder, validate_repository_name
from gitdrop.utils.sanitize import sanitize

logger = logging.getLogger(__name__)

PROGRESS_BAR_WIDTH = 20
MAX_LISTED_FAILURES = 5
REPOSITORY_LIST_LIMIT = 10

NOT_AUTHENTICATED = "You are not authenticated. Use `login <token>` to log in."
EMPTY_ARCHIVE = "The archive contains no files to upload."

Downloader = Callable[[str, DownloadConfig], Awaitable[bytes]]


@dataclass
class CommandContext:
    """Everything a command needs, built once per process."""

    store: CredentialStore
    governor: RateGovernor
    client_factory: Callable[[str], HostingClient]
    scope_policy: ScopePolicy = field(default_factory=ScopePolicy)
    archive_limits: ArchiveLimits = field(default_factory=ArchiveLimits)
    publish_config: PublishConfig = field(default_factory=PublishConfig)
    download_config: DownloadConfig = field(default_factory=DownloadConfig)
    hosting_config: HostingConfig = field(default_factory=HostingConfig)
    downloader: Downloader = download_attachment


def build_context(source: Settings | None = None) -> CommandContext:
    """Assemble a context from application settings."""
    cfg = source or settings
    cipher = CredentialCipher(load_cipher_config(cfg))
    hosting_config = load_hosting_config(cfg)
    return CommandContext(
        store=CredentialStore(cfg.credentials_path, cipher, load_lock_config(cfg)),
        governor=RateGovernor(load_rate_limit_config(cfg)),
        client_factory=HostingClientFactory(hosting_config),
        scope_policy=ScopePolicy.from_settings(cfg),
        archive_limits=load_archive_limits(cfg),
        publish_config=load_publish_config(cfg),
        download_config=load_download_config(cfg),
        hosting_config=hosting_config,
    )


class _CommandContextSingleton:
    """Singleton wrapper for CommandContext."""

    _instance: CommandContext | None = None

    @classmethod
    def get_instance(cls) -> CommandContext:
        """Get or create the singleton CommandContext instance."""
        if cls._instance is None:
            cls._instance = build_context()
        return cls._instance


def get_command_context() -> CommandContext:
    """Return the process-wide command context."""
    return _CommandContextSingleton.get_instance()


@dataclass(frozen=True)
class CommandReply:
    """Text reply for the chat surface."""

    ok: bool
    text: str
    retry_after_seconds: int | None = None
    error: GitdropError | None = None


# --- Formatting helpers -------------------------------------------------------------


def render_progress_bar(progress: float, total: float = 100) -> str:
    """Render ``progress`` out of ``total`` as a 20-cell bar with a percentage."""
    ratio = 0.0 if total <= 0 else min(max(progress / total, 0.0), 1.0)
    filled = math.floor(ratio * PROGRESS_BAR_WIDTH + 0.5)
    percentage = math.floor(ratio * 100 + 0.5)
    return "█" * filled + "░" * (PROGRESS_BAR_WIDTH - filled) + f" {percentage}%"


def format_file_size(num_bytes: int) -> str:
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.2f} KB"
    return f"{num_bytes / 1024 / 1024:.2f} MB"


def _tree_url(config: HostingConfig, owner: str, repo: str, folder: str | None) -> str:
    base = f"{config.web_url.rstrip('/')}/{owner}/{repo}"
    return f"{base}/tree/main/{folder}" if folder else base


def _render_outcome(
    outcome: UploadOutcome,
    *,
    filename: str,
    size: int,
    owner: str,
    repo: str,
    folder: str | None,
    link: str,
) -> str:
    lines = [
        "Upload complete!",
        "",
        f"Archive: `{filename}` ({format_file_size(size)})",
        f"Repository: `{owner}/{repo}`",
        f"Location: `{folder}`" if folder else "Location: `/ (root)`",
        "",
        f"Files uploaded: {outcome.succeeded_count}/{outcome.total_entries}",
    ]
    if outcome.failures:
        lines.append(f"Files with errors: {outcome.failed_count}")
        for path, reason in outcome.failures[:MAX_LISTED_FAILURES]:
            lines.append(f"• `{path}`: {reason}")
        hidden = outcome.failed_count - MAX_LISTED_FAILURES
        if hidden > 0:
            lines.append(f"…and {hidden} more")
    lines.extend(["", render_progress_bar(100), "", f"View on GitHub: {link}"])
    return "\n".join(lines)


def _repository_missing_text(config: HostingConfig, owner: str, repo: str) -> str:
    return (
        f"The repository `{owner}/{repo}` does not exist.\n\n"
        "To create it:\n"
        f"1. Open {config.web_url.rstrip('/')}/new\n"
        f"2. Name the repository `{repo}`\n"
        '3. Click "Create repository"\n'
        "4. Send the upload again"
    )


# --- Handlers -----------------------------------------------------------------------


async def login(
    ctx: CommandContext,
    identity: str,
    token: str,
    in_direct_message: bool = True,
) -> CommandReply:
    """Verify ``token`` and store it for ``identity``."""
    token = validate_token_format(token)
    client = ctx.client_factory(token)
    try:
        account = await client.verify_identity()
    finally:
        await client.aclose()

    missing = ctx.scope_policy.missing(account.scopes)
    if missing:
        raise MissingScopeError(missing)

    await ctx.store.asave(identity, token, account.username)
    logger.info("Identity %s authenticated as %s", identity, account.username)

    text = (
        f"Logged in as `{account.username}`.\n"
        "You can now use `upload` to publish archives and `repos` to list repositories."
    )
    if not in_direct_message:
        text += (
            "\n\nWARNING: your token was sent in a public channel. "
            "Delete that message now, revoke the token at "
            f"{ctx.hosting_config.web_url.rstrip('/')}/settings/tokens, "
            "generate a new one and log in from a direct message next time."
        )
    return CommandReply(ok=True, text=text)


async def logout(ctx: CommandContext, identity: str) -> CommandReply:
    if not await ctx.store.aremove(identity):
        return CommandReply(ok=False, text=NOT_AUTHENTICATED)
    return CommandReply(ok=True, text="Logged out. Your token was removed.")


async def whoami(ctx: CommandContext, identity: str) -> CommandReply:
    record = await ctx.store.aget_record(identity)
    if record is None:
        return CommandReply(ok=False, text=NOT_AUTHENTICATED)
    registered = record.registered_at_datetime.strftime("%Y-%m-%d %H:%M UTC")
    return CommandReply(
        ok=True,
        text=(
            f"GitHub account: `{record.display_name or 'unknown'}`\n"
            f"Registered: {registered}"
        ),
    )


async def list_repositories(ctx: CommandContext, identity: str) -> CommandReply:
    token = await ctx.store.aget_decrypted(identity)
    if token is None:
        return CommandReply(ok=False, text=NOT_AUTHENTICATED)

    client = ctx.client_factory(token)
    try:
        repositories = await client.list_repositories(
            sort="updated", limit=REPOSITORY_LIST_LIMIT
        )
    finally:
        await client.aclose()

    if not repositories:
        return CommandReply(
            ok=True,
            text=(
                "You have no repositories yet. Create one at "
                f"{ctx.hosting_config.web_url.rstrip('/')}/new"
            ),
        )

    lines = [f"Your repositories ({REPOSITORY_LIST_LIMIT} most recently updated):", ""]
    for index, repository in enumerate(repositories, start=1):
        marker = "🔒" if repository.private else "🌐"
        lines.append(f"{index}. {marker} **{repository.name}**\n   {repository.html_url}")
    return CommandReply(ok=True, text="\n".join(lines))


async def upload(
    ctx: CommandContext,
    identity: str,
    repository: str,
    attachment_url: str,
    attachment_name: str,
    folder: str | None = None,
    author_label: str | None = None,
    progress: ProgressSubscriber | None = None,
) -> CommandReply:
    """Download a ZIP attachment and publish its files to ``repository``."""
    token = await ctx.store.aget_decrypted(identity)
    if token is None:
        return CommandReply(ok=False, text=NOT_AUTHENTICATED)

    repo = validate_repository_name(repository)
    target_folder = validate_folder(folder)
    if not is_zip_filename(attachment_name):
        raise InvalidArchiveError(
            "Only .zip attachments can be uploaded",
            user_message="Only .zip attachments can be uploaded.",
        )

    data = await ctx.downloader(attachment_url, ctx.download_config)

    client = ctx.client_factory(token)
    try:
        with open_archive(data) as archive:
            entries = inspect_archive(archive, ctx.archive_limits)
            entries, rejected = sanitize_entries(entries)
            if not entries:
                return CommandReply(ok=False, text=EMPTY_ARCHIVE)
            owner = (await client.verify_identity()).username
            reporter = (
                ProgressReporter(progress, ctx.publish_config.progress_min_interval_seconds)
                if progress is not None
                else None
            )
            try:
                outcome = await publish(
                    client,
                    owner,
                    repo,
                    target_folder,
                    entries,
                    author_label or identity,
                    read_content=partial(read_entry, archive),
                    progress=reporter,
                    config=ctx.publish_config,
                )
            except RepositoryNotFoundError:
                return CommandReply(
                    ok=False,
                    text=_repository_missing_text(ctx.hosting_config, owner, repo),
                )
    finally:
        await client.aclose()

    outcome.total_entries += len(rejected)
    outcome.failures[:0] = rejected
    text = _render_outcome(
        outcome,
        filename=attachment_name,
        size=len(data),
        owner=owner,
        repo=repo,
        folder=target_folder,
        link=_tree_url(ctx.hosting_config, owner, repo, target_folder),
    )
    return CommandReply(ok=not outcome.failures, text=text)


async def help_command(ctx: CommandContext, identity: str) -> CommandReply:
    record = await ctx.store.aget_record(identity)
    if record is not None:
        status = f"Status: authenticated as `{record.display_name or 'unknown'}`"
    else:
        status = "Status: not authenticated. Use `login` first."
    text = "\n".join(
        [
            "Available commands",
            status,
            "",
            "Authentication:",
            "• `login <token>`: log in with a GitHub personal access token",
            "• `logout`: remove your stored token",
            "• `whoami`: show your account information",
            "",
            "Repositories:",
            "• `repos`: list your repositories",
            "• `upload <repo> [folder]`: extract an attached ZIP into a repository",
            "  Without a folder the files go to the repository root.",
            "  Existing files are replaced.",
            "",
            "• `help`: show this message",
            "",
            "Tip: send `login` in a direct message to keep your token private.",
        ]
    )
    return CommandReply(ok=True, text=text)


CommandHandler = Callable[..., Awaitable[CommandReply]]

COMMANDS: dict[str, CommandHandler] = {
    "login": login,
    "logout": logout,
    "whoami": whoami,
    "repos": list_repositories,
    "upload": upload,
    "help": help_command,
}


async def dispatch(
    ctx: CommandContext, identity: str, command: str, **params: Any
) -> CommandReply:
    """Rate-limit, route and run one command for ``identity``."""
    decision = ctx.governor.check(identity)
    if not decision.allowed:
        return CommandReply(
            ok=False,
            text=f"Slow down! Try again in {decision.retry_after_seconds} seconds.",
            retry_after_seconds=decision.retry_after_seconds,
        )

    handler = COMMANDS.get(command)
    if handler is None:
        return CommandReply(ok=False, text=f"Unknown command `{command}`. Use `help`.")

    try:
        return await handler(ctx, identity, **params)
    except GitdropError as err:
        logger.info("Command %s for %s failed: %s", command, identity, sanitize(err))
        return CommandReply(ok=False, text=sanitize(err.user_message), error=err)
