"""SBI login state machine: cookie restore, credential login, device authentication.

  no_session ─┬─> restoring_session ──> authenticated
              │          └─(stale cookies)─> awaiting_credentials
              └─> awaiting_credentials ─> login_submitted ─> awaiting_device_auth ─> authenticated
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from sbi_portfolio.browser import Browser, BrowserError, BrowserTimeout
from sbi_portfolio.config import Settings, get_settings
from sbi_portfolio.errors import (
    AuthenticationRejected,
    DeviceAuthTimeout,
    InvalidCredentialsFormat,
    InvalidTransition,
    LoginFormMissing,
    SiteUnreachable,
)
from sbi_portfolio.models import Credentials
from sbi_portfolio.session_store import SessionStore

logger = logging.getLogger(__name__)

USER_FIELD = 'input[name="user_id"]'
PASSWORD_FIELD = 'input[name="user_password"]'
LOGIN_BUTTON = 'input[name="ACT_login"]'
LOGIN_ERROR = "text=/ログインできません|パスワードが正しくありません/"


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    RESTORING_SESSION = "restoring_session"
    AWAITING_CREDENTIALS = "awaiting_credentials"
    LOGIN_SUBMITTED = "login_submitted"
    AWAITING_DEVICE_AUTH = "awaiting_device_auth"
    AUTHENTICATED = "authenticated"
    LOGIN_FAILED = "login_failed"
    DEVICE_AUTH_TIMEOUT = "device_auth_timeout"
    SITE_UNREACHABLE = "site_unreachable"


# Valid transitions: from_state → [to_states]
TRANSITIONS: dict[SessionState, list[SessionState]] = {
    SessionState.NO_SESSION: [SessionState.RESTORING_SESSION, SessionState.AWAITING_CREDENTIALS],
    SessionState.RESTORING_SESSION: [
        SessionState.AUTHENTICATED,
        SessionState.AWAITING_CREDENTIALS,
        SessionState.SITE_UNREACHABLE,
        SessionState.LOGIN_FAILED,
    ],
    SessionState.AWAITING_CREDENTIALS: [
        SessionState.LOGIN_SUBMITTED,
        SessionState.LOGIN_FAILED,
        SessionState.SITE_UNREACHABLE,
    ],
    SessionState.LOGIN_SUBMITTED: [
        SessionState.AWAITING_DEVICE_AUTH,
        SessionState.LOGIN_FAILED,
        SessionState.SITE_UNREACHABLE,
    ],
    SessionState.AWAITING_DEVICE_AUTH: [
        SessionState.AUTHENTICATED,
        SessionState.DEVICE_AUTH_TIMEOUT,
        SessionState.SITE_UNREACHABLE,
    ],
    SessionState.AUTHENTICATED: [],
    SessionState.LOGIN_FAILED: [],
    SessionState.DEVICE_AUTH_TIMEOUT: [],
    SessionState.SITE_UNREACHABLE: [],
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


class StateTransition:
    """Record of a state transition."""

    def __init__(self, from_state: SessionState, to_state: SessionState, reason: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        self.timestamp = datetime.now(timezone.utc)


def require_credentials(credentials: Credentials | None) -> Credentials:
    if credentials is None or not credentials.username:
        raise InvalidCredentialsFormat("username")
    if not credentials.password.get_secret_value():
        raise InvalidCredentialsFormat("password")
    return credentials


class SessionManager:
    """Brings a browser context to ``authenticated`` or raises a categorized ScrapeError.

    Holds no state beyond the current run; cookies go through the injected SessionStore.
    """

    def __init__(self, store: SessionStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.state = SessionState.NO_SESSION
        self.history: list[StateTransition] = []
        self.restored = False

    # ── FSM ───────────────────────────────────────────────────────────

    def transition(self, to_state: SessionState, reason: str = "") -> None:
        if to_state not in TRANSITIONS.get(self.state, []):
            raise InvalidTransition(self.state.value, to_state.value)
        self.history.append(StateTransition(self.state, to_state, reason))
        logger.info("Session: %s → %s (%s)", self.state.value, to_state.value, reason)
        self.state = to_state

    def can_transition(self, to_state: SessionState) -> bool:
        return to_state in TRANSITIONS.get(self.state, [])

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    # ── Entry ─────────────────────────────────────────────────────────

    def begin(self, credentials: Credentials | None) -> SessionState:
        """Pick the entry path. Runs before any browser action."""
        if self.store.exists():
            self.transition(SessionState.RESTORING_SESSION, f"session blob at {self.store.path}")
        else:
            require_credentials(credentials)
            self.transition(SessionState.AWAITING_CREDENTIALS, "no saved session")
        return self.state

    async def authenticate(self, browser: Browser, credentials: Credentials | None) -> SessionState:
        if self.state == SessionState.NO_SESSION:
            self.begin(credentials)

        if self.state == SessionState.RESTORING_SESSION:
            if await self._restore(browser):
                self.restored = True
                self.transition(SessionState.AUTHENTICATED, "saved cookies accepted")
                return self.state
            if not self.settings.restore_fallback_to_login:
                self.transition(SessionState.LOGIN_FAILED, "saved cookies rejected")
                raise AuthenticationRejected("Saved session is no longer valid", url=self.settings.login_url)
            logger.warning("Saved session rejected, falling back to credential login")
            self.store.clear()
            require_credentials(credentials)
            self.transition(SessionState.AWAITING_CREDENTIALS, "saved cookies rejected")

        await self._login(browser, credentials)
        await self._wait_for_device_auth(browser)
        await self._persist(browser)
        return self.state

    # ── Steps ─────────────────────────────────────────────────────────

    def _page_lost(self, url: str, error: BrowserError) -> SiteUnreachable:
        self.transition(SessionState.SITE_UNREACHABLE, str(error))
        return SiteUnreachable(url, str(error))

    async def _goto(self, browser: Browser, url: str) -> None:
        try:
            await browser.goto(url, timeout=self.settings.navigation_timeout)
        except BrowserError as e:
            raise self._page_lost(url, e) from e

    async def _wait_for_load(self, browser: Browser, url: str, step: str) -> None:
        try:
            await browser.wait_for_load(timeout=self.settings.load_timeout)
        except BrowserTimeout:
            logger.debug("Load state not reached %s, checking page anyway", step)
        except BrowserError as e:
            raise self._page_lost(url, e) from e

    async def _restore(self, browser: Browser) -> bool:
        """The context was created with the saved cookies.

        Authenticated only if the login form is gone and the page settled on the
        authenticated host; a maintenance or error page without the form is not a session.
        """
        url = self.settings.login_url
        await self._goto(browser, url)
        await self._wait_for_load(browser, url, "after restore")
        try:
            if await browser.count(USER_FIELD) > 0:
                return False
            await browser.wait_for_url(self.settings.authenticated_url_pattern, timeout=self.settings.load_timeout)
        except BrowserTimeout:
            logger.warning("No login form but not on an authenticated page (maintenance?)")
            return False
        except BrowserError as e:
            raise self._page_lost(url, e) from e
        return True

    async def _login(self, browser: Browser, credentials: Credentials | None) -> None:
        creds = require_credentials(credentials)
        url = self.settings.login_url
        await self._goto(browser, url)

        try:
            form_present = await browser.count(USER_FIELD) > 0
        except BrowserError as e:
            raise self._page_lost(url, e) from e
        if not form_present:
            self.transition(SessionState.LOGIN_FAILED, "login form missing")
            raise LoginFormMissing(url)

        try:
            await browser.fill(USER_FIELD, creds.username)
            await browser.fill(PASSWORD_FIELD, creds.password.get_secret_value())
            await browser.click(LOGIN_BUTTON)
        except BrowserError as e:
            self.transition(SessionState.LOGIN_FAILED, f"login form not usable: {e}")
            raise LoginFormMissing(url) from e
        self.transition(SessionState.LOGIN_SUBMITTED, f"as {creds.username[:4]}****")

        try:
            await browser.wait_for_url(self.settings.post_login_url_pattern, timeout=self.settings.login_timeout)
        except BrowserTimeout:
            logger.debug("No post-login redirect within %ss", self.settings.login_timeout)
        except BrowserError as e:
            raise self._page_lost(url, e) from e
        await self._wait_for_load(browser, url, "after login submit")

        try:
            rejected = await browser.count(LOGIN_ERROR) > 0
        except BrowserError as e:
            raise self._page_lost(url, e) from e
        if rejected:
            self.transition(SessionState.LOGIN_FAILED, "credentials rejected")
            raise AuthenticationRejected("Credentials rejected by SBI", url=url)

        self.transition(SessionState.AWAITING_DEVICE_AUTH, "login accepted")

    async def _wait_for_device_auth(self, browser: Browser) -> None:
        """Block until the user approves the device (mail link) and the site redirects."""
        timeout = self.settings.device_auth_timeout
        logger.info("Device authentication required: approve the login from the SBI e-mail (%.0fs max)", timeout)
        try:
            await browser.wait_for_url(self.settings.authenticated_url_pattern, timeout=timeout)
        except BrowserTimeout as e:
            self.transition(SessionState.DEVICE_AUTH_TIMEOUT, str(e))
            raise DeviceAuthTimeout(timeout) from e
        except BrowserError as e:
            raise self._page_lost(self.settings.login_url, e) from e
        self.transition(SessionState.AUTHENTICATED, "device approved")

    async def _persist(self, browser: Browser) -> None:
        """Save the fresh cookies; if that fails the next run logs in again."""
        try:
            state = await browser.storage_state()
        except BrowserError as e:
            logger.warning("Could not read session state, next run will log in again: %s", e)
            return
        self.store.save(state)
