"""OAuth2 device authorization login with session caching.

Login walks through these states:

    NO_SESSION -> CACHE_CHECKED -> SILENT_REFRESH | DEVICE_FLOW -> AUTHENTICATED

A cached refresh token is exchanged for a fresh access token first. If the
server rejects the refresh token (HTTP 400) the full device authorization
grant runs: a device code is requested, the verification URL is shown and
opened in a browser, and the token endpoint is polled until the user
approves, denies, or the device code expires. Every successful login
rewrites the session store.

Network failures and unexpected responses are fatal and never retried; the
only retried condition is ``authorization_pending`` while polling.
"""

from __future__ import annotations

import logging
import time
import webbrowser
from collections.abc import Callable
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ohx_addon_cli.auth.session import (
    SessionStore,
    UserSession,
    expiry_from_lifetime,
)
from ohx_addon_cli.config import Settings, get_settings
from ohx_addon_cli.types import GrantType

logger = logging.getLogger(__name__)

CLIENT_NAME = "OHX Addon Registry CLI"
SCOPE = "offline_access addons profile"
AUTHORIZATION_PENDING = "authorization_pending"


class AuthError(Exception):
    """Raised when authentication fails."""

    def __init__(
        self,
        message: str,
        code: str = "auth_error",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class AuthState(str, Enum):
    """Progress of a login attempt."""

    NO_SESSION = "no_session"
    CACHE_CHECKED = "cache_checked"
    SILENT_REFRESH = "silent_refresh"
    DEVICE_FLOW = "device_flow"
    AUTHENTICATED = "authenticated"


class DeviceAuthorization(BaseModel):
    """Response of the authorize endpoint for the device flow."""

    model_config = ConfigDict(extra="ignore")

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str | None = None
    interval: int = 0
    expires_in: int


class TokenResponse(BaseModel):
    """Response of the token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str = ""


class UserInfo(BaseModel):
    """Identity returned by the userinfo endpoint."""

    model_config = ConfigDict(extra="ignore")

    localId: str | None = None  # noqa: N815 - server field name
    email: str | None = None
    displayName: str | None = None  # noqa: N815 - server field name


def _error_code(response: httpx.Response) -> str:
    """Extract the OAuth ``error`` field, falling back to the body text."""
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return response.text


class DeviceAuthSession:
    """Obtains a UserSession from the cache, a refresh, or the device flow.

    Args:
        client: HTTPX client used for all OAuth requests.
        store: Where the session is loaded from and persisted to.
        settings: Endpoint and timing configuration.
        login_hint: Optional account name passed to the authorize endpoint.
        now: Wall clock, used for token expiry timestamps.
        monotonic: Monotonic clock, used for the device code deadline.
        sleep: Sleep function between token polls.
        open_browser: Opens the verification URL; failures are ignored.
        notify: Shows the verification URL and user code to the user.
    """

    def __init__(
        self,
        client: httpx.Client,
        store: SessionStore,
        settings: Settings | None = None,
        *,
        login_hint: str | None = None,
        now: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        open_browser: Callable[[str], Any] = webbrowser.open,
        notify: Callable[[DeviceAuthorization], None] | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = settings or get_settings()
        self.login_hint = login_hint
        self._now = now
        self._monotonic = monotonic
        self._sleep = sleep
        self._open_browser = open_browser
        self._notify = notify or self._log_verification
        self.state = AuthState.NO_SESSION

    def login(self) -> UserSession:
        """Return an authenticated session, persisting it to the store.

        Raises:
            AuthError: If the endpoints cannot be reached, the user denies
                access, or the device code expires.
        """
        self.state = AuthState.NO_SESSION
        cached = self.store.load()
        self.state = AuthState.CACHE_CHECKED

        session: UserSession | None = None
        if cached is not None and cached.refresh_token:
            self.state = AuthState.SILENT_REFRESH
            logger.info("Getting access token")
            session = self._refresh(cached, cached.refresh_token)
        elif cached is not None:
            logger.info("User session found, but no refresh token")
        else:
            logger.info("You are not logged in")

        if session is None:
            self.state = AuthState.DEVICE_FLOW
            session = self._device_flow()

        self._persist(session)
        self.state = AuthState.AUTHENTICATED
        logger.info("Logged in as %s", session.user_email or session.user_id)
        return session

    def logout(self) -> bool:
        """Forget the persisted session. Returns True if one existed."""
        return self.store.clear()

    def _post(self, url: str, data: dict[str, str]) -> httpx.Response:
        try:
            return self.client.post(url, data=data)
        except httpx.RequestError as e:
            raise AuthError(
                f"Failed to contact {url}: {e}", code="network_error"
            ) from e

    def _refresh(
        self, cached: UserSession, refresh_token: str
    ) -> UserSession | None:
        """Exchange the cached refresh token. Returns None if it was rejected."""
        response = self._post(
            self.settings.token_url,
            {
                "refresh_token": refresh_token,
                "client_id": self.settings.oauth_client_id,
                "grant_type": GrantType.REFRESH_TOKEN.value,
            },
        )
        if response.status_code == 400:
            logger.warning(
                "Access token could not be refreshed. %s. Login required",
                _error_code(response),
            )
            return None
        if response.status_code != 200:
            raise AuthError(
                f"Unexpected response {response.status_code} while refreshing "
                f"access token: {response.text}",
                code="refresh_failed",
                status_code=response.status_code,
            )

        token = self._parse(TokenResponse, response)
        return UserSession(
            refresh_token=token.refresh_token or refresh_token,
            access_token=token.access_token,
            access_token_expires=expiry_from_lifetime(self._now(), token.expires_in),
            user_id=cached.user_id,
            user_email=cached.user_email,
            user_display_name=cached.user_display_name,
        )

    def _device_flow(self) -> UserSession:
        request = {
            "client_id": self.settings.oauth_client_id,
            "client_name": CLIENT_NAME,
            "response_type": "device",
            "scope": SCOPE,
        }
        if self.login_hint:
            request["login_hint"] = self.login_hint

        response = self._post(self.settings.authorize_url, request)
        if response.status_code != 200:
            message = (
                _error_code(response)
                if response.status_code == 400
                else response.text
            )
            raise AuthError(
                f"Could not start authorisation process: {message}",
                code="authorize_failed",
                status_code=response.status_code,
            )
        authorization = self._parse(DeviceAuthorization, response)

        self._notify(authorization)
        url = authorization.verification_uri_complete or authorization.verification_uri
        try:
            self._open_browser(url)
        except (webbrowser.Error, OSError) as e:
            logger.debug("Could not open a browser for %s: %s", url, e)

        token = self._poll(authorization)
        user = self._userinfo(token.access_token)
        return UserSession(
            refresh_token=token.refresh_token,
            access_token=token.access_token,
            access_token_expires=expiry_from_lifetime(self._now(), token.expires_in),
            user_id=user.localId or "",
            user_email=user.email or "",
            user_display_name=user.displayName or "",
        )

    def _poll(self, authorization: DeviceAuthorization) -> TokenResponse:
        """Poll the token endpoint until the device code is approved.

        The server declared interval is honoured; the configured default
        applies when the server declares none.
        """
        interval = authorization.interval or self.settings.device_poll_interval
        started = self._monotonic()
        logger.info("Request expires in %d s.", authorization.expires_in)
        request = {
            "device_code": authorization.device_code,
            "client_id": self.settings.oauth_client_id,
            "grant_type": GrantType.DEVICE_CODE.value,
        }

        while True:
            self._sleep(interval)
            response = self._post(self.settings.token_url, request)
            if response.status_code == 200:
                return self._parse(TokenResponse, response)
            if response.status_code == 400:
                error = _error_code(response)
                if error != AUTHORIZATION_PENDING:
                    raise AuthError(
                        f"Server response: {error}", code=error, status_code=400
                    )
            else:
                raise AuthError(
                    f"Server response: {response.text}",
                    code="token_failed",
                    status_code=response.status_code,
                )

            elapsed = self._monotonic() - started
            if elapsed > authorization.expires_in:
                raise AuthError("Request expired", code="expired_token")
            logger.debug(
                "Waiting for authorization! Request expires in %d s.",
                authorization.expires_in - elapsed,
            )

    def _userinfo(self, access_token: str) -> UserInfo:
        url = self.settings.userinfo_url
        try:
            response = self.client.get(
                url, headers={"Authorization": f"Bearer {access_token}"}
            )
        except httpx.RequestError as e:
            raise AuthError(
                f"Failed to contact {url}: {e}", code="network_error"
            ) from e
        if response.status_code != 200:
            raise AuthError(
                f"Unexpected userinfo response {response.status_code}: {response.text}",
                code="userinfo_failed",
                status_code=response.status_code,
            )
        return self._parse(UserInfo, response)

    def _parse(self, model: type[Any], response: httpx.Response) -> Any:
        try:
            return model.model_validate_json(response.content)
        except PydanticValidationError as e:
            raise AuthError(
                f"Unexpected response from {response.request.url}: {e}",
                code="bad_response",
                status_code=response.status_code,
            ) from e

    def _persist(self, session: UserSession) -> None:
        try:
            self.store.save(session)
        except OSError as e:
            raise AuthError(
                f"Failed to write user session file: {e}", code="session_write"
            ) from e

    @staticmethod
    def _log_verification(authorization: DeviceAuthorization) -> None:
        logger.warning(
            "Please authorize the CLI to publish Addons on your behalf.\n"
            "\tURL: %s\n\tCode: %s",
            authorization.verification_uri,
            authorization.user_code,
        )


__all__ = [
    "AUTHORIZATION_PENDING",
    "AuthError",
    "AuthState",
    "DeviceAuthSession",
    "DeviceAuthorization",
    "TokenResponse",
    "UserInfo",
]
