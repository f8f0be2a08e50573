"""Authentication against the OHX OAuth service.

This module handles:
- The persisted user session and its storage
- Silent access token refresh
- The OAuth2 device authorization grant
"""

from ohx_addon_cli.auth.device_flow import AuthError, AuthState, DeviceAuthSession
from ohx_addon_cli.auth.session import FileSessionStore, SessionStore, UserSession

__all__ = [
    "AuthError",
    "AuthState",
    "DeviceAuthSession",
    "FileSessionStore",
    "SessionStore",
    "UserSession",
]
