"""API client, wire models and retry policy.

Modules:
    client: Authenticated client for the OAuth usage/profile endpoints
    models: Typed usage and profile snapshots
    retry: Linear backoff retry loop
"""

from claude_usage.api.client import (
    PROFILE_ENDPOINT,
    TOKEN_ENDPOINT,
    USAGE_ENDPOINT,
    UsageClient,
)
from claude_usage.api.models import (
    Account,
    Organization,
    ProfileSnapshot,
    UsageLimit,
    UsageSnapshot,
)
from claude_usage.api.retry import calculate_backoff_delay, retry_request

__all__ = [
    # Client
    "USAGE_ENDPOINT",
    "PROFILE_ENDPOINT",
    "TOKEN_ENDPOINT",
    "UsageClient",
    # Models
    "UsageLimit",
    "UsageSnapshot",
    "Account",
    "Organization",
    "ProfileSnapshot",
    # Retry
    "calculate_backoff_delay",
    "retry_request",
]
