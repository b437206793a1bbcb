"""
Directory API authentication adapter.

Provides the app-only (client credentials) token source used by the
directory client. The credential object is built lazily from configuration
and cached; every call asks it for a token, and azure-identity handles
token caching and renewal internally.
"""

from typing import Optional
from azure.core.credentials import AccessToken, TokenCredential
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ClientSecretCredential

from ...errors import AuthError, ConfigurationError
from ...services.config import SyncSettings


def build_app_credential(settings: SyncSettings) -> TokenCredential:
    """
    Create a client-credentials TokenCredential from settings.

    Raises:
        ConfigurationError: If tenant, client id or client secret is missing
    """
    if not settings.has_credentials:
        raise ConfigurationError(
            "Directory credentials missing. "
            "Required: AZURE_TENANT_ID, AZURE_CLIENT_ID, AZURE_CLIENT_SECRET"
        )
    return ClientSecretCredential(
        tenant_id=settings.tenant_id,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
    )


class AppTokenProvider:
    """
    Lazily constructed, cached app-only credential.

    A pre-built credential may be injected (any azure-core TokenCredential),
    in which case configuration is not consulted.
    """

    def __init__(self, settings: SyncSettings, credential: Optional[TokenCredential] = None):
        self.settings = settings
        self._credential = credential

    @property
    def credential(self) -> TokenCredential:
        if self._credential is None:
            self._credential = build_app_credential(self.settings)
        return self._credential

    def get_access_token(self) -> AccessToken:
        """
        Get an access token for the directory API.

        Returns:
            AccessToken with token and expiration timestamp

        Raises:
            ConfigurationError: If credentials are not configured
            AuthError: If the token provider fails or returns no token
        """
        credential = self.credential
        try:
            token = credential.get_token(self.settings.scope)
        except ClientAuthenticationError as e:
            raise AuthError(f"Token request rejected: {e.message}")
        except Exception as e:
            raise AuthError(f"Unexpected error getting token: {e}")

        if not token or not token.token:
            raise AuthError("No access token received from token provider")
        return token

    def close(self) -> None:
        close = getattr(self._credential, "close", None)
        if callable(close):
            close()
