"""Mapping of marketplace errors onto HTTP responses."""
import logging

from fastapi import HTTPException, status

from errors import MarketplaceError

logger = logging.getLogger(__name__)


def to_http_exception(error: MarketplaceError) -> HTTPException:
    """Build the HTTPException for a marketplace error.

    The detail body is ``{"error": <code>, "message": <text>, ...details}``.
    """
    if error.status_code >= 500:
        logger.error(f"{error.code}: {error.message}")
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={'error': error.code, 'message': 'Internal server error'}
        )
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


def internal_error(e: Exception) -> HTTPException:
    logger.exception(f"Unhandled error: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={'error': 'InternalError', 'message': 'Internal server error'}
    )
