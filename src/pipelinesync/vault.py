"""Key Vault secret lookup with managed-identity authentication.

The secret provider never holds credentials of its own. It is handed a
TokenProvider, which obtains bearer tokens from the ambient managed
identity of the host (App Service identity endpoint or the instance
metadata service).

Example:
    tokens = ManagedIdentityTokenProvider()
    provider = KeyVaultSecretProvider("https://myvault.vault.azure.net/", tokens)
    try:
        pat = await provider.resolve("TestDashboardVstsPat")
    finally:
        await provider.close()
        await tokens.close()
"""

from __future__ import annotations

import os
from typing import Protocol

import httpx

from pipelinesync.constants import (
    APP_SERVICE_IDENTITY_API_VERSION,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    IDENTITY_ENDPOINT_ENV,
    IDENTITY_HEADER_ENV,
    IMDS_API_VERSION,
    IMDS_TOKEN_URL,
    KEY_VAULT_API_VERSION,
    KEY_VAULT_RESOURCE,
)
from pipelinesync.exceptions import SecretUnavailableError
from pipelinesync.logging import get_logger

logger = get_logger(__name__)


class TokenAcquisitionError(Exception):
    """Raised by a TokenProvider when no token could be obtained."""


class TokenProvider(Protocol):
    """Source of bearer tokens for an Azure resource."""

    async def get_token(self, resource: str) -> str: ...


class SecretProvider(Protocol):
    """Resolves a secret name to its value."""

    async def resolve(self, secret_name: str) -> str: ...


class ManagedIdentityTokenProvider:
    """Obtains tokens from the host's managed identity.

    Uses the App Service identity endpoint when IDENTITY_ENDPOINT and
    IDENTITY_HEADER are set in the environment, otherwise the instance
    metadata service.
    """

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        """Initialize the token provider.

        Args:
            environ: Environment to read identity endpoint settings from.
                Defaults to os.environ.
        """
        self._environ = dict(os.environ) if environ is None else environ
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT_SECONDS)
        return self._client

    def _build_request(self, resource: str) -> tuple[str, dict[str, str], dict[str, str]]:
        endpoint = self._environ.get(IDENTITY_ENDPOINT_ENV)
        header = self._environ.get(IDENTITY_HEADER_ENV)
        if endpoint and header:
            params = {"api-version": APP_SERVICE_IDENTITY_API_VERSION, "resource": resource}
            return endpoint, params, {"X-IDENTITY-HEADER": header}

        params = {"api-version": IMDS_API_VERSION, "resource": resource}
        return IMDS_TOKEN_URL, params, {"Metadata": "true"}

    async def get_token(self, resource: str) -> str:
        """Get an access token for the resource.

        Raises:
            TokenAcquisitionError: If the identity endpoint is unreachable
                or returns no token.
        """
        url, params, headers = self._build_request(resource)
        client = self._get_client()

        try:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            token = response.json().get("access_token")
        except httpx.HTTPStatusError as e:
            raise TokenAcquisitionError(
                f"Identity endpoint returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TokenAcquisitionError(f"Identity endpoint request failed: {e}") from e

        if not token:
            raise TokenAcquisitionError("Identity endpoint response has no access_token")
        return str(token)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class KeyVaultSecretProvider:
    """Reads secrets from Azure Key Vault.

    Each resolve() call is a fresh lookup; nothing is cached and nothing is
    retried. Any failure is reported as SecretUnavailableError.
    """

    def __init__(self, vault_url: str, token_provider: TokenProvider) -> None:
        """Initialize the secret provider.

        Args:
            vault_url: Base URL of the vault, e.g. https://myvault.vault.azure.net/.
            token_provider: Source of bearer tokens for the vault.
        """
        self._vault_url = vault_url.rstrip("/")
        self._token_provider = token_provider
        self._client: httpx.AsyncClient | None = None

    @property
    def vault_url(self) -> str:
        return self._vault_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._vault_url,
                headers={"Accept": "application/json"},
                timeout=DEFAULT_HTTP_TIMEOUT_SECONDS,
            )
        return self._client

    async def resolve(self, secret_name: str) -> str:
        """Fetch the current value of a secret.

        Args:
            secret_name: Name of the secret in the vault.

        Returns:
            The secret value.

        Raises:
            SecretUnavailableError: If no token could be obtained, the vault
                is unreachable, access is denied, the secret does not exist,
                or its value is empty.
        """
        logger.info(
            "Getting secret from key vault",
            extra={"secret_name": secret_name, "vault_url": self._vault_url},
        )

        try:
            token = await self._token_provider.get_token(KEY_VAULT_RESOURCE)
        except TokenAcquisitionError as e:
            raise SecretUnavailableError(
                "Could not authenticate with managed identity",
                secret_name=secret_name,
                details={"error": str(e)},
            ) from e

        client = self._get_client()
        try:
            response = await client.get(
                f"/secrets/{secret_name}",
                params={"api-version": KEY_VAULT_API_VERSION},
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            value = response.json().get("value")
        except httpx.HTTPStatusError as e:
            raise SecretUnavailableError(
                "Key vault rejected the request",
                secret_name=secret_name,
                details={"status_code": e.response.status_code},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SecretUnavailableError(
                "Key vault request failed",
                secret_name=secret_name,
                details={"error": type(e).__name__},
            ) from e

        if not value:
            raise SecretUnavailableError("Secret has no value", secret_name=secret_name)

        return str(value)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
