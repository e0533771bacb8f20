from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fastapi import Depends, HTTPException, status
from config import config
import secrets
import logging

logger = logging.getLogger(__name__)

# auto_error=False so a missing header gets the same 401 as a bad token
bearer_scheme = HTTPBearer(auto_error=False)


def _is_known_token(token: str) -> bool:
    # compare_digest on every candidate keeps timing independent of which token matched
    matches = [secrets.compare_digest(token, valid) for valid in config.valid_tokens]
    return any(matches)


def get_current_client(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> str:
    """Guards the analysis API with the static client tokens from VALID_TOKENS."""
    if credentials is None or credentials.scheme.lower() != "bearer" or not _is_known_token(credentials.credentials):
        logger.info("rejected request with missing or unknown bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing Bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
