"""Credential management for claude-usage.

Resolves the Claude Code OAuth credentials from one of two sources, tried in
order: the credentials file written by Claude Code, then the platform secret
store (macOS Keychain via the ``security`` command). The first source that
yields credentials wins; results are never merged. Resolved credentials are
cached in memory for a short TTL so that the usage and profile requests of a
single refresh share one lookup.
"""

from __future__ import annotations

import json
import logging
import os
import platform
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from claude_usage.config.audit import log_credential_access
from claude_usage.config.security import check_file_permissions, mask_token
from claude_usage.errors import (
    CredentialError,
    CredentialsFileNotFoundError,
    CredentialsFileUnreadableError,
    InvalidCredentialsError,
    MissingCredentialsError,
    MissingOAuthDataError,
    SecretStoreAccessError,
    SecretStoreDataCorruptedError,
)

logger = logging.getLogger(__name__)

KEYCHAIN_SERVICE = "Claude Code-credentials"
CACHE_VALIDITY_SECONDS = 60
EXPIRY_BUFFER_SECONDS = 300
SECRET_STORE_TIMEOUT = 10


@dataclass(frozen=True)
class OAuthCredentials:
    """The ``claudeAiOauth`` section of a Claude Code credentials payload."""

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None  # epoch milliseconds
    subscription_type: str | None = None
    rate_limit_tier: str | None = None
    source: str = ""

    def is_expired(self, now: float, buffer_seconds: float = EXPIRY_BUFFER_SECONDS) -> bool:
        """Whether the token expires within ``buffer_seconds`` of ``now``.

        A missing expiry counts as expired.
        """
        if self.expires_at is None:
            return True
        return (now + buffer_seconds) * 1000 > self.expires_at


def get_credentials_path() -> Path:
    """Get the path to the credentials file based on the current platform.

    Note:
        - Windows: %APPDATA%/.claude/.credentials.json
        - macOS/Linux: ~/.claude/.credentials.json
    """
    if platform.system() == "Windows":
        base = Path(os.environ.get("APPDATA", "~")).expanduser()
    else:
        base = Path.home()
    return base / ".claude" / ".credentials.json"


def default_secret_store_command() -> list[str] | None:
    """Lookup command for the platform secret store, or None if unsupported."""
    if platform.system() == "Darwin":
        return ["security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"]
    return None


def parse_credentials(raw: str | bytes, source: str = "") -> OAuthCredentials:
    """Parse a credentials JSON payload.

    Args:
        raw: JSON text of the form ``{"claudeAiOauth": {"accessToken": ...}}``.
        source: Name of the source, recorded on the result.

    Raises:
        InvalidCredentialsError: If the payload is not valid JSON.
        MissingOAuthDataError: If the OAuth section or access token is absent.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InvalidCredentialsError(f"Invalid credentials format: {e}") from e

    oauth = payload.get("claudeAiOauth") if isinstance(payload, dict) else None
    if not isinstance(oauth, dict):
        raise MissingOAuthDataError("OAuth credentials missing")

    token = oauth.get("accessToken")
    if not isinstance(token, str) or not token:
        raise MissingOAuthDataError("No access token found in credentials")

    expires_at = oauth.get("expiresAt")
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        expires_at = None

    return OAuthCredentials(
        access_token=token,
        refresh_token=oauth.get("refreshToken") or None,
        expires_at=int(expires_at) if expires_at is not None else None,
        subscription_type=oauth.get("subscriptionType"),
        rate_limit_tier=oauth.get("rateLimitTier"),
        source=source,
    )


class CredentialSource(Protocol):
    name: str

    def load(self) -> OAuthCredentials: ...


class FileCredentialSource:
    """Reads the JSON credentials file written by Claude Code."""

    name = "file"

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else get_credentials_path()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> OAuthCredentials:
        if not self.path.exists():
            raise CredentialsFileNotFoundError(f"Credentials file not found: {self.path}")
        try:
            raw = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise CredentialsFileUnreadableError(
                f"Cannot read credentials file: {self.path}", details=str(e)
            ) from e
        return parse_credentials(raw, source=self.name)


class SecretStoreCredentialSource:
    """Reads credentials through an external secret-store lookup command."""

    name = "secret_store"

    def __init__(self, command: list[str] | None = None, timeout: float = SECRET_STORE_TIMEOUT):
        self.command = command if command is not None else default_secret_store_command()
        self.timeout = timeout

    def load(self) -> OAuthCredentials:
        if not self.command:
            raise SecretStoreAccessError(
                f"No secret store lookup available on {platform.system()}"
            )
        try:
            result = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise SecretStoreAccessError(
                "Keychain access failed (status: -1)", details=str(e)
            ) from e

        if result.returncode != 0:
            raise SecretStoreAccessError(
                f"Keychain access failed (status: {result.returncode})",
                status=result.returncode,
                details=(result.stderr or "").strip() or None,
            )

        output = (result.stdout or "").strip()
        if not output:
            raise SecretStoreDataCorruptedError("Keychain data corrupted")
        return parse_credentials(output, source=self.name)


@dataclass(frozen=True)
class SourceStatus:
    """Outcome of probing a single credential source."""

    source: str
    ok: bool
    reason: str | None = None
    message: str | None = None
    expires_at: int | None = None


class CredentialResolver:
    """Resolves and caches OAuth credentials from a chain of sources.

    Thread-safe: concurrent callers within the cache TTL share one lookup.
    """

    def __init__(
        self,
        sources: list[CredentialSource] | None = None,
        cache_ttl: float = CACHE_VALIDITY_SECONDS,
        expiry_buffer: float = EXPIRY_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if sources is None:
            sources = [FileCredentialSource(), SecretStoreCredentialSource()]
        self.sources = list(sources)
        self.cache_ttl = cache_ttl
        self.expiry_buffer = expiry_buffer
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: OAuthCredentials | None = None
        self._cached_at: float | None = None
        self.last_error: MissingCredentialsError | None = None

    @classmethod
    def from_config(cls, config: dict) -> "CredentialResolver":
        path = config.get("credentials_path")
        sources: list[CredentialSource] = [
            FileCredentialSource(Path(path).expanduser() if path else None)
        ]
        if config.get("use_secret_store", True):
            sources.append(SecretStoreCredentialSource(config.get("secret_store_command")))
        return cls(
            sources,
            cache_ttl=config.get("credential_cache_ttl_seconds", CACHE_VALIDITY_SECONDS),
            expiry_buffer=config.get("expiry_buffer_seconds", EXPIRY_BUFFER_SECONDS),
        )

    @property
    def file_source(self) -> FileCredentialSource | None:
        for source in self.sources:
            if isinstance(source, FileCredentialSource):
                return source
        return None

    def credentials_file_exists(self) -> bool:
        source = self.file_source
        return source is not None and source.exists()

    def invalidate_cache(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = None

    def get_credentials(self) -> OAuthCredentials:
        """Return cached credentials or resolve them from the source chain.

        Raises:
            MissingCredentialsError: If no source yields credentials. The
                per-source failures are available on ``failures``.
        """
        with self._lock:
            now = self._clock()
            if (
                self._cached is not None
                and self._cached_at is not None
                and now - self._cached_at < self.cache_ttl
            ):
                return self._cached

            failures: list[tuple[str, CredentialError]] = []
            for source in self.sources:
                try:
                    credentials = source.load()
                except CredentialError as e:
                    logger.debug("Credential source %s failed: %s", source.name, e.message)
                    log_credential_access(source.name, success=False, error=e.reason)
                    failures.append((source.name, e))
                    continue

                logger.debug(
                    "Resolved credentials from %s (token %s)",
                    source.name,
                    mask_token(credentials.access_token),
                )
                log_credential_access(source.name, success=True)
                self._cached = credentials
                self._cached_at = now
                self.last_error = None
                return credentials

            self._cached = None
            self._cached_at = None
            self.last_error = MissingCredentialsError(
                "No credentials found in any source", failures
            )
            raise self.last_error

    def get_access_token(self) -> str | None:
        """Return the access token, or None if no source yields one."""
        try:
            return self.get_credentials().access_token
        except MissingCredentialsError:
            return None

    def is_expired(self, credentials: OAuthCredentials | None = None) -> bool:
        """Whether the token is expired or expires within the safety buffer.

        Checks ``credentials`` when given, otherwise resolves them.
        Unresolvable credentials and a missing expiry both count as expired.
        """
        if credentials is None:
            try:
                credentials = self.get_credentials()
            except MissingCredentialsError:
                return True
        return credentials.is_expired(self._clock(), self.expiry_buffer)

    def diagnose(self) -> list[SourceStatus]:
        """Probe every source independently, bypassing the cache."""
        statuses = []
        for source in self.sources:
            try:
                credentials = source.load()
            except CredentialError as e:
                statuses.append(SourceStatus(source.name, False, e.reason, e.message))
                continue

            message = None
            if isinstance(source, FileCredentialSource):
                _, message = check_file_permissions(source.path)
            statuses.append(
                SourceStatus(
                    source.name,
                    True,
                    message=message,
                    expires_at=credentials.expires_at,
                )
            )
        return statuses


__all__ = [
    "KEYCHAIN_SERVICE",
    "CACHE_VALIDITY_SECONDS",
    "EXPIRY_BUFFER_SECONDS",
    "OAuthCredentials",
    "CredentialSource",
    "FileCredentialSource",
    "SecretStoreCredentialSource",
    "SourceStatus",
    "CredentialResolver",
    "get_credentials_path",
    "default_secret_store_command",
    "parse_credentials",
]
