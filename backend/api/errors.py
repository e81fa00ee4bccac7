"""Map fax workflow errors onto HTTP errors."""
from fastapi import HTTPException

from backend.fax.exceptions import OpportunityStoreError, user_message


def store_http_error(exc: OpportunityStoreError, fallback: str) -> HTTPException:
    """404 passes through from the store; every other failure is a 502."""
    if exc.status_code == 404:
        return HTTPException(status_code=404, detail=user_message(exc, "Not found"))
    return HTTPException(status_code=502, detail=user_message(exc, fallback))
