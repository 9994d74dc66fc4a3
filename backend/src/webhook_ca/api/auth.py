"""API key authentication for the operator endpoints."""

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from shared.security import is_api_key_format, verify_api_key

logger = logging.getLogger(__name__)

# Define API key header
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Argon2id hash of the operator key (set on startup)
_operator_key_hash: str | None = None


def set_operator_key_hash(key_hash: str) -> None:
    """Set the hash operator API keys are verified against."""
    global _operator_key_hash
    _operator_key_hash = key_hash


async def require_operator(api_key: str | None = Depends(api_key_header)) -> None:
    """
    Authenticate the operator via API key.

    - Extract API key from X-API-Key header
    - Verify format: wca_<base64url>
    - Verify against the configured Argon2id hash
    - Raise 401 UNAUTHORIZED otherwise

    Log: DEBUG auth_attempt {result: success|failure}
    """
    if not api_key:
        logger.debug("auth_attempt", extra={"result": "failure", "reason": "missing_key"})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    if not is_api_key_format(api_key):
        logger.debug("auth_attempt", extra={"result": "failure", "reason": "invalid_format"})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key format",
        )

    if _operator_key_hash is None or not verify_api_key(api_key, _operator_key_hash):
        logger.debug("auth_attempt", extra={"result": "failure", "reason": "invalid_key"})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    logger.debug("auth_attempt", extra={"result": "success"})
