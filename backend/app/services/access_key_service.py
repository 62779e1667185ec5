"""Remote access-key validation."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from app.config.settings import get_settings
from app.schemas.auth import AccessKeyProfile, AccessKeyValidationResult

logger = logging.getLogger(__name__)

EMPTY_KEY_MESSAGE = "Please enter your access key"
INVALID_KEY_MESSAGE = "Invalid access key"
REQUEST_FAILED_MESSAGE = "Failed to validate access key. Please try again."

_PROFILE_FIELDS = {
    "first_name": ("first_name", "firstName"),
    "last_name": ("last_name", "lastName"),
    "email": ("email",),
}


def _invalid(message: str) -> AccessKeyValidationResult:
    return AccessKeyValidationResult(valid=False, error=message, profile=None)


def _extract_profile(body: dict[str, Any]) -> AccessKeyProfile | None:
    """Find profile fields at the top level or under data/user/profile."""
    candidates: list[dict[str, Any]] = [body]
    for key in ("data", "user", "profile", "user_data"):
        nested = body.get(key)
        if isinstance(nested, dict):
            candidates.append(nested)
            for inner_key in ("user", "profile"):
                inner = nested.get(inner_key)
                if isinstance(inner, dict):
                    candidates.append(inner)
    for candidate in reversed(candidates):
        values: dict[str, str | None] = {}
        for field, aliases in _PROFILE_FIELDS.items():
            value = next(
                (candidate[a] for a in aliases if isinstance(candidate.get(a), str)), None
            )
            values[field] = value.strip() if value and value.strip() else None
        if any(values.values()):
            return AccessKeyProfile(**values)
    return None


class AccessKeyService:
    def __init__(self, *, url: str | None = None, timeout: float | None = None) -> None:
        settings = get_settings()
        self._url = url if url is not None else settings.access_key_validation_url
        self._timeout = timeout if timeout is not None else settings.access_key_timeout_seconds

    async def validate(self, access_key: str) -> AccessKeyValidationResult:
        key = (access_key or "").strip()
        if not key:
            return _invalid(EMPTY_KEY_MESSAGE)
        if not self._url:
            logger.warning("Access key validation requested but no validation URL is configured")
            return _invalid("Access key validation is not configured")

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._url,
                    json={"accessKey": key},
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning("Access key validation request failed: %s", e)
            return _invalid(REQUEST_FAILED_MESSAGE)

        if response.status_code in (401, 403, 404):
            return _invalid(INVALID_KEY_MESSAGE)
        if response.status_code >= 400:
            logger.warning("Access key validation returned HTTP %s", response.status_code)
            return _invalid(REQUEST_FAILED_MESSAGE)

        body_text = (response.text or "").strip()
        if not body_text:
            return _invalid(INVALID_KEY_MESSAGE)
        try:
            body = json.loads(body_text)
        except json.JSONDecodeError:
            logger.warning("Access key validation returned non-JSON body")
            return _invalid(INVALID_KEY_MESSAGE)
        if not isinstance(body, dict) or not body:
            return _invalid(INVALID_KEY_MESSAGE)

        for flag in ("valid", "is_valid", "isValid", "success"):
            if body.get(flag) is False:
                message = body.get("error") or body.get("message")
                return _invalid(message if isinstance(message, str) and message else INVALID_KEY_MESSAGE)

        profile = _extract_profile(body)
        if profile is None:
            return _invalid(INVALID_KEY_MESSAGE)
        return AccessKeyValidationResult(valid=True, error=None, profile=profile)
