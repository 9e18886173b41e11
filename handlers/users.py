"""User routes: first-login registration and blocking"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request

from handlers.common import read_json_body, translate_error
from services.identity import verify_request

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/users")
async def register_user(request: Request):
    try:
        data = await read_json_body(request)
        user, created = request.app.state.user_service.ensure_user(
            data.get("email"),
            name=data.get("name"),
            image=data.get("image"),
        )
        return {"success": True, "created": created, "user": user.to_dict()}

    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "REGISTER_USER")


@router.put("/users/block")
async def block_user(request: Request, authorization: Optional[str] = Header(None)):
    try:
        identity = verify_request(request.app.state.identity_verifier, authorization)
        data = await read_json_body(request)
        user = request.app.state.user_service.set_blocked(
            data.get("email"),
            data.get("isBlocked"),
            blocked_by=identity.email,
        )
        return {"success": True, "user": user.to_dict()}

    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "BLOCK_USER")
