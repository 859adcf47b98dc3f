# src/gitdrop/services/__init__.py
"""Business logic services for gitdrop."""

from .cipher import CredentialCipher, InstallationSalt
from .commands import CommandContext, CommandReply, build_context, dispatch
from .credential_store import CredentialRecord, CredentialStore
from .github import HostingClient, HostingClientFactory, ScopePolicy
from .publish import ProgressReporter, ProgressStream, UploadOutcome, publish
from .rate_limit import RateDecision, RateGovernor

__all__ = [
    "CommandContext",
    "CommandReply",
    "CredentialCipher",
    "CredentialRecord",
    "CredentialStore",
    "HostingClient",
    "HostingClientFactory",
    "InstallationSalt",
    "ProgressReporter",
    "ProgressStream",
    "RateDecision",
    "RateGovernor",
    "ScopePolicy",
    "UploadOutcome",
    "build_context",
    "dispatch",
    "publish",
]
