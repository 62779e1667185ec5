from pydantic import BaseModel


class ValidateAccessKeyRequest(BaseModel):
    accessKey: str = ""


class AccessKeyProfile(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class AccessKeyValidationResult(BaseModel):
    valid: bool
    error: str | None = None
    profile: AccessKeyProfile | None = None
