"""Failures that abort a scrape run, plus the repository hydration error."""

from __future__ import annotations

from typing import Any


class ScrapeError(Exception):
    """Base class for structural and authentication failures."""

    kind = "scrape_error"
    retryable = False

    def __init__(self, message: str = "", **context: Any) -> None:
        self.context = context
        super().__init__(message or self.kind)


class InvalidCredentialsFormat(ScrapeError):
    kind = "invalid_credentials_format"

    def __init__(self, missing: str = "username/password") -> None:
        super().__init__(f"Credentials are incomplete: {missing} is empty", missing=missing)


class SiteUnreachable(ScrapeError):
    kind = "site_unreachable"

    def __init__(self, url: str, reason: str = "") -> None:
        message = f"Cannot reach {url}: {reason}" if reason else f"Cannot reach {url}"
        super().__init__(message, url=url)


class LoginFailed(ScrapeError):
    kind = "login_failed"


class LoginFormMissing(LoginFailed):
    """Login form fields absent: site structure changed or maintenance."""

    kind = "login_form_missing"

    def __init__(self, url: str) -> None:
        super().__init__(f"Login form not found at {url} (maintenance or layout change?)", url=url)


class AuthenticationRejected(LoginFailed):
    kind = "authentication_rejected"


class DeviceAuthTimeout(ScrapeError):
    """Second-factor device approval did not complete in time. Safe to retry later."""

    kind = "device_auth_timeout"
    retryable = True

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Device authentication not completed within {timeout:.0f}s", timeout=timeout)


class InvalidTransition(ScrapeError):
    kind = "invalid_transition"

    def __init__(self, from_state: str, to_state: str) -> None:
        super().__init__(
            f"Invalid session transition {from_state} → {to_state}",
            from_state=from_state,
            to_state=to_state,
        )


class UnknownAssetTypeOnHydration(Exception):
    """Raised when a persisted row carries an asset_type with no holding variant."""

    def __init__(self, asset_type: str):
        self.asset_type = asset_type
        super().__init__(f"Unknown asset type: {asset_type}")
