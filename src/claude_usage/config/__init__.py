"""Configuration and credentials.

Modules:
    settings: Config loading, validation and environment overrides
    credentials: OAuth credential resolution and caching
    security: Token masking and file permission checks
    audit: Opt-in JSON-lines audit trail
"""

from claude_usage.config.credentials import (
    CredentialResolver,
    FileCredentialSource,
    OAuthCredentials,
    SecretStoreCredentialSource,
    get_credentials_path,
)
from claude_usage.config.settings import (
    CONFIG_FILE,
    CONFIG_SCHEMA,
    DEFAULT_CONFIG,
    load_config,
    validate_config,
)

__all__ = [
    # Settings
    "CONFIG_FILE",
    "DEFAULT_CONFIG",
    "CONFIG_SCHEMA",
    "validate_config",
    "load_config",
    # Credentials
    "OAuthCredentials",
    "FileCredentialSource",
    "SecretStoreCredentialSource",
    "CredentialResolver",
    "get_credentials_path",
]
