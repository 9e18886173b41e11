"""Request parsing and error translation shared by the route handlers"""

import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from utils.exception_handler import CivicIssueError, to_http_exception

logger = logging.getLogger(__name__)


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Parse a JSON object body; an empty body is treated as {}"""
    body = await request.body()
    if not body:
        return {}
    try:
        data = await request.json()
    except Exception as e:
        logger.warning(f"⚠️ INVALID_JSON: {request.url.path}: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON format")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def first_of(data: Dict[str, Any], *keys: str) -> Optional[Any]:
    """Value of the first key present with a non-empty value"""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def translate_error(error: Exception, event: str) -> HTTPException:
    """Map an exception raised inside a handler to the HTTPException to raise"""
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, CivicIssueError):
        return to_http_exception(error)
    logger.error(f"❌ {event}: Unexpected error: {error}", exc_info=error)
    return HTTPException(status_code=500, detail="Internal server error")
