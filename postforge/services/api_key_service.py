"""Management of users' third-party API keys, encrypted at rest."""

from typing import Callable, List, Optional

from postforge.auth.encryption import CredentialCipher
from postforge.auth.schemas import (
    AddApiKeyRequest,
    ApiKeyInfo,
    ApiKeyProvider,
    UpdateApiKeyRequest,
)
from postforge.core.db.exceptions import ApiKeyNotFoundError, DuplicateRecordError
from postforge.core.db.repository import AccountRepository
from postforge.core.exceptions import AuthenticationError, ConflictError, NotFoundError

from .base import BaseService, utcnow


class ApiKeyService(BaseService):
    """Service for storing, listing and using provider API keys.

    Keys are encrypted before they reach the repository and are never
    returned by the listing operations. Only :meth:`reveal_key` decrypts,
    for server-side calls to the provider.
    """

    def __init__(
        self,
        repository: AccountRepository,
        cipher: CredentialCipher,
        clock: Callable = utcnow,
    ):
        super().__init__(repository, clock)
        self.cipher = cipher

    async def add_key(self, user_id: int, request: AddApiKeyRequest) -> ApiKeyInfo:
        """
        Encrypt and store a key for a provider.

        Raises:
            ConflictError: If the user already has a key for this provider
        """
        provider = request.provider.value
        if await self.repository.find_api_key_by_provider(user_id, provider) is not None:
            raise ConflictError(
                f"API key for {provider} already exists. Delete it first to add a new one.",
                field="provider",
            )

        encrypted = self.cipher.encrypt(request.key)
        try:
            row = await self.repository.create_api_key(
                user_id=user_id,
                provider=provider,
                encrypted_key=encrypted,
                label=request.label,
            )
        except DuplicateRecordError as e:
            raise ConflictError(
                f"API key for {provider} already exists. Delete it first to add a new one.",
                field="provider",
            ) from e

        return ApiKeyInfo.model_validate(row)

    async def list_keys(self, user_id: int) -> List[ApiKeyInfo]:
        rows = await self.repository.list_api_keys(user_id)
        return [ApiKeyInfo.model_validate(row) for row in rows]

    async def update_key(
        self, user_id: int, key_id: int, request: UpdateApiKeyRequest
    ) -> ApiKeyInfo:
        """
        Update a key's label or validity flag.

        Raises:
            NotFoundError: If the key doesn't exist or belongs to another user
        """
        try:
            row = await self.repository.update_api_key(
                key_id,
                user_id,
                label=request.label,
                is_valid=request.is_valid,
            )
        except ApiKeyNotFoundError as e:
            raise NotFoundError("API key not found", resource_type="api_key", resource_id=key_id) from e
        return ApiKeyInfo.model_validate(row)

    async def delete_key(self, user_id: int, key_id: int) -> None:
        """
        Delete a key.

        Raises:
            NotFoundError: If the key doesn't exist or belongs to another user
        """
        try:
            await self.repository.delete_api_key(key_id, user_id)
        except ApiKeyNotFoundError as e:
            raise NotFoundError("API key not found", resource_type="api_key", resource_id=key_id) from e

    async def reveal_key(self, user_id: int, provider: ApiKeyProvider) -> Optional[str]:
        """
        Decrypt a user's key for a provider call.

        A key that no longer decrypts (tampered with, or stored under a
        rotated master secret) is marked invalid.

        Returns:
            The plaintext key, or None if there is no usable key
        """
        row = await self.repository.find_api_key_by_provider(user_id, provider.value)
        if row is None or not row["is_valid"]:
            return None

        try:
            plaintext = self.cipher.decrypt(row["encrypted_key"])
        except AuthenticationError:
            self.logger.warning(
                "api_key_decrypt_failed", user_id=user_id, provider=provider.value, key_id=row["id"]
            )
            await self.repository.update_api_key(row["id"], user_id, is_valid=False)
            return None

        await self.repository.touch_api_key(row["id"])
        return plaintext
