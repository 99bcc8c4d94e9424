"""Claude Usage - background poller for Claude Code subscription usage limits.

This package resolves the local Claude Code OAuth credentials, polls the
usage and profile endpoints with retry and error classification, and keeps
the latest snapshots available to a presentation layer.
"""

from claude_usage._version import __version__
from claude_usage.api.client import UsageClient
from claude_usage.config.credentials import CredentialResolver
from claude_usage.poller import ErrorState, PollerState, UsagePoller, create_poller

__all__ = [
    "__version__",
    "CredentialResolver",
    "UsageClient",
    "UsagePoller",
    "PollerState",
    "ErrorState",
    "create_poller",
]
