from fastapi import APIRouter

from app.api.envelope import ok
from app.schemas.auth import ValidateAccessKeyRequest
from app.services.access_key_service import AccessKeyService

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/validate")
async def validate_access_key(request: ValidateAccessKeyRequest):
    """Validation failures are reported in the payload, not as HTTP errors."""
    result = await AccessKeyService().validate(request.accessKey)
    return ok(result.model_dump())
