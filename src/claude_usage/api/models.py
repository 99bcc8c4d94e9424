"""Typed snapshots decoded from the OAuth usage and profile endpoints.

Wire field names are snake_case (``five_hour``, ``resets_at``,
``has_claude_max``). Every snapshot is a frozen dataclass built in one step,
so a half-decoded payload never escapes: decoding either returns a complete
object or raises ``DecodingError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from claude_usage.errors import DecodingError

USAGE_WINDOWS = (
    "five_hour",
    "seven_day",
    "seven_day_sonnet",
    "seven_day_opus",
    "seven_day_oauth_apps",
)


def _require_object(value: Any, where: str) -> dict:
    if not isinstance(value, dict):
        raise DecodingError(f"expected object at '{where}', got {type(value).__name__}")
    return value


def _optional(payload: dict, key: str, types: tuple, where: str) -> Any:
    value = payload.get(key)
    if value is None:
        return None
    # bool is an int subclass; keep the two apart
    if isinstance(value, bool) and bool not in types:
        raise DecodingError(f"'{where}.{key}' has invalid type bool")
    if not isinstance(value, types):
        raise DecodingError(f"'{where}.{key}' has invalid type {type(value).__name__}")
    return value


@dataclass(frozen=True)
class UsageLimit:
    """One rolling quota window."""

    utilization: float
    resets_at: str | None = None

    @classmethod
    def from_dict(cls, payload: Any, where: str = "limit") -> "UsageLimit":
        payload = _require_object(payload, where)
        if "utilization" not in payload or payload["utilization"] is None:
            raise DecodingError(f"'{where}.utilization' is missing")
        utilization = _optional(payload, "utilization", (int, float), where)
        resets_at = _optional(payload, "resets_at", (str,), where)
        return cls(utilization=float(utilization), resets_at=resets_at)

    def to_dict(self) -> dict:
        return {"utilization": self.utilization, "resets_at": self.resets_at}


@dataclass(frozen=True)
class UsageSnapshot:
    five_hour: UsageLimit | None = None
    seven_day: UsageLimit | None = None
    seven_day_sonnet: UsageLimit | None = None
    seven_day_opus: UsageLimit | None = None
    seven_day_oauth_apps: UsageLimit | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> "UsageSnapshot":
        """Decode a ``/api/oauth/usage`` response body.

        Unknown keys (e.g. ``extra_usage``) are ignored; known windows may be
        absent or null.
        """
        payload = _require_object(payload, "usage")
        windows = {}
        for name in USAGE_WINDOWS:
            value = payload.get(name)
            windows[name] = None if value is None else UsageLimit.from_dict(value, name)
        return cls(**windows)

    def windows(self) -> dict[str, UsageLimit]:
        """Present windows keyed by wire name, in display order."""
        return {
            name: getattr(self, name)
            for name in USAGE_WINDOWS
            if getattr(self, name) is not None
        }

    def to_dict(self) -> dict:
        return {
            name: (limit.to_dict() if limit else None)
            for name, limit in ((n, getattr(self, n)) for n in USAGE_WINDOWS)
        }


@dataclass(frozen=True)
class Account:
    uuid: str | None = None
    full_name: str | None = None
    display_name: str | None = None
    email: str | None = None
    has_max_plan: bool | None = None
    has_pro_plan: bool | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> "Account":
        payload = _require_object(payload, "account")
        return cls(
            uuid=_optional(payload, "uuid", (str,), "account"),
            full_name=_optional(payload, "full_name", (str,), "account"),
            display_name=_optional(payload, "display_name", (str,), "account"),
            email=_optional(payload, "email", (str,), "account"),
            has_max_plan=_optional(payload, "has_claude_max", (bool,), "account"),
            has_pro_plan=_optional(payload, "has_claude_pro", (bool,), "account"),
        )

    @property
    def plan_name(self) -> str | None:
        if self.has_max_plan:
            return "Max"
        if self.has_pro_plan:
            return "Pro"
        return None


@dataclass(frozen=True)
class Organization:
    uuid: str | None = None
    name: str | None = None
    organization_type: str | None = None
    rate_limit_tier: str | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> "Organization":
        payload = _require_object(payload, "organization")
        return cls(
            uuid=_optional(payload, "uuid", (str,), "organization"),
            name=_optional(payload, "name", (str,), "organization"),
            organization_type=_optional(payload, "organization_type", (str,), "organization"),
            rate_limit_tier=_optional(payload, "rate_limit_tier", (str,), "organization"),
        )


@dataclass(frozen=True)
class ProfileSnapshot:
    account: Account | None = None
    organization: Organization | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> "ProfileSnapshot":
        """Decode a ``/api/oauth/profile`` response body."""
        payload = _require_object(payload, "profile")
        account = payload.get("account")
        organization = payload.get("organization")
        return cls(
            account=Account.from_dict(account) if account is not None else None,
            organization=(
                Organization.from_dict(organization) if organization is not None else None
            ),
        )

    def to_dict(self) -> dict:
        result: dict = {"account": None, "organization": None}
        if self.account:
            result["account"] = {
                "uuid": self.account.uuid,
                "full_name": self.account.full_name,
                "display_name": self.account.display_name,
                "email": self.account.email,
                "has_claude_max": self.account.has_max_plan,
                "has_claude_pro": self.account.has_pro_plan,
            }
        if self.organization:
            result["organization"] = {
                "uuid": self.organization.uuid,
                "name": self.organization.name,
                "organization_type": self.organization.organization_type,
                "rate_limit_tier": self.organization.rate_limit_tier,
            }
        return result


__all__ = [
    "USAGE_WINDOWS",
    "UsageLimit",
    "UsageSnapshot",
    "Account",
    "Organization",
    "ProfileSnapshot",
]
