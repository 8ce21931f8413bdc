"""Routes for managing the current user's third-party API keys."""

from fastapi import APIRouter, Depends, Path, status

from postforge.auth.schemas import (
    AddApiKeyRequest,
    ApiKeyListResponse,
    ApiKeyResponse,
    MessageResponse,
    UpdateApiKeyRequest,
    UserInfo,
)
from postforge.services import ApiKeyService

from ..dependencies import get_api_key_service, require_auth
from ..schemas.common import AUTH_ERROR_RESPONSES, COMMON_ERROR_RESPONSES

router = APIRouter(prefix="/api-keys", tags=["API Keys"])


@router.get(
    "",
    response_model=ApiKeyListResponse,
    summary="List stored API keys",
    responses={**AUTH_ERROR_RESPONSES},
)
async def list_api_keys(
    user: UserInfo = Depends(require_auth),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyListResponse:
    """List key metadata. The keys themselves are never returned."""
    return ApiKeyListResponse(api_keys=await service.list_keys(user.id))


@router.post(
    "",
    response_model=ApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store an API key",
    responses={400: COMMON_ERROR_RESPONSES[400], **AUTH_ERROR_RESPONSES},
)
async def add_api_key(
    request: AddApiKeyRequest,
    user: UserInfo = Depends(require_auth),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyResponse:
    """
    Encrypt and store a key for a provider.

    One key per provider; delete the existing key to replace it.
    """
    info = await service.add_key(user.id, request)
    return ApiKeyResponse(message="API key added successfully", api_key=info)


@router.put(
    "/{key_id}",
    response_model=ApiKeyResponse,
    summary="Update an API key's label or status",
    responses={404: COMMON_ERROR_RESPONSES[404], **AUTH_ERROR_RESPONSES},
)
async def update_api_key(
    request: UpdateApiKeyRequest,
    key_id: int = Path(..., ge=1),
    user: UserInfo = Depends(require_auth),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyResponse:
    info = await service.update_key(user.id, key_id, request)
    return ApiKeyResponse(message="API key updated successfully", api_key=info)


@router.delete(
    "/{key_id}",
    response_model=MessageResponse,
    summary="Delete an API key",
    responses={404: COMMON_ERROR_RESPONSES[404], **AUTH_ERROR_RESPONSES},
)
async def delete_api_key(
    key_id: int = Path(..., ge=1),
    user: UserInfo = Depends(require_auth),
    service: ApiKeyService = Depends(get_api_key_service),
) -> MessageResponse:
    await service.delete_key(user.id, key_id)
    return MessageResponse(message="API key deleted successfully")
