"""Registry credential exchange.

The credential vault trades the user's access token for registry
credentials, passed to the container tool as ``Username:Secret``.
"""

import logging

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ohx_addon_cli.auth.device_flow import AuthError
from ohx_addon_cli.auth.session import UserSession

logger = logging.getLogger(__name__)


class RegistryCredentials(BaseModel):
    """Credentials returned by the vault."""

    model_config = ConfigDict(extra="ignore")

    Username: str  # noqa: N815 - vault field name
    Secret: str  # noqa: N815 - vault field name

    def as_cred_string(self) -> str:
        """Render as the container tool's ``--creds`` value."""
        return f"{self.Username}:{self.Secret}"


def get_registry_credentials(
    client: httpx.Client, session: UserSession, url: str
) -> str:
    """Fetch registry credentials for the logged in user.

    Args:
        client: HTTPX client instance.
        session: Authenticated user session.
        url: Vault endpoint.

    Returns:
        Credential string ``Username:Secret``.

    Raises:
        AuthError: If the vault cannot be reached or refuses the request.
    """
    try:
        response = client.get(
            url, headers={"Authorization": f"Bearer {session.access_token}"}
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise AuthError(
            f"Registry credentials refused: {e.response.status_code} "
            f"{e.response.reason_phrase}",
            code="vault_refused",
            status_code=e.response.status_code,
        ) from e
    except httpx.RequestError as e:
        raise AuthError(f"Failed to contact {url}: {e}", code="network_error") from e

    try:
        credentials = RegistryCredentials.model_validate_json(response.content)
    except PydanticValidationError as e:
        raise AuthError(f"Unexpected response!\n{e}", code="bad_response") from e
    logger.debug("Obtained registry credentials for %s", credentials.Username)
    return credentials.as_cred_string()


__all__ = ["RegistryCredentials", "get_registry_credentials"]
