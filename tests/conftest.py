"""
Pytest fixtures for claude-usage tests.

Test imports use the src/claude_usage/ package via --import-mode=importlib
(see pyproject.toml).
"""

import copy
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from claude_usage.config.credentials import CredentialResolver, OAuthCredentials


# ═══════════════════════════════════════════════════════════════════════════════
# Path Constants
# ═══════════════════════════════════════════════════════════════════════════════

FIXTURES_DIR = Path(__file__).parent / "fixtures"
with open(FIXTURES_DIR / "api_responses.json") as f:
    FIXTURES = json.load(f)


# ═══════════════════════════════════════════════════════════════════════════════
# API Response Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def usage_normal():
    """Normal usage response (34.5% session, 12.3% weekly)."""
    return copy.deepcopy(FIXTURES["usage_normal"])


@pytest.fixture
def usage_over_limit():
    """Usage above 100% with a null reset time."""
    return copy.deepcopy(FIXTURES["usage_over_limit"])


@pytest.fixture
def profile_normal():
    """Max-plan account in an organization."""
    return copy.deepcopy(FIXTURES["profile_normal"])


@pytest.fixture
def make_response():
    """Factory for urlopen() context-manager responses."""

    def _make(body, status=200):
        if not isinstance(body, (bytes, str)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode()
        response = MagicMock()
        response.status = status
        response.read.return_value = body
        response.__enter__ = MagicMock(return_value=response)
        response.__exit__ = MagicMock(return_value=False)
        return response

    return _make


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def credentials_valid():
    """Valid credentials expiring in 2100."""
    return copy.deepcopy(FIXTURES["credentials_valid"])


@pytest.fixture
def credentials_missing_token():
    """Credentials without access token."""
    return copy.deepcopy(FIXTURES["credentials_missing_token"])


@pytest.fixture
def credentials_no_expiry():
    """Credentials without expiresAt."""
    return copy.deepcopy(FIXTURES["credentials_no_expiry"])


@pytest.fixture
def oauth_credentials():
    return OAuthCredentials(
        access_token="sk-ant-REDACTED",
        refresh_token="sk-ant-REDACTED",
        expires_at=4102444800000,
        source="file",
    )


@pytest.fixture
def tmp_credentials_file(tmp_path, credentials_valid):
    """Create temporary credentials file."""
    creds_file = tmp_path / ".credentials.json"
    creds_file.write_text(json.dumps(credentials_valid))
    return creds_file


@pytest.fixture
def mock_resolver(oauth_credentials):
    """Resolver that always yields a valid, unexpired token."""
    resolver = MagicMock(spec=CredentialResolver)
    resolver.get_credentials.return_value = oauth_credentials
    resolver.is_expired.return_value = False
    resolver.credentials_file_exists.return_value = True
    return resolver
