"""
Issue routes: report, read, upvote, status/field updates and admin removal
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request

from handlers.common import first_of, read_json_body, translate_error
from services.identity import verify_request
from services.issue_service import AlreadyExists, IssueDraft, TimelineNote
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/report-issue")
async def report_issue(request: Request):
    try:
        data = await read_json_body(request)
        draft = IssueDraft(
            title=data.get("title"),
            description=data.get("description"),
            category=data.get("category"),
            location=data.get("location"),
            image=data.get("image"),
            reporter_email=first_of(data, "reporterEmail", "email"),
        )
        outcome = request.app.state.issue_service.report(draft)

        if isinstance(outcome, AlreadyExists):
            return {
                "success": False,
                "message": "Issue already exists",
                "existingId": outcome.existing_id,
            }
        return {"success": True, "issue": outcome.to_dict()}

    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "REPORT_ISSUE")


@router.get("/issues/{issue_id}")
async def get_issue(issue_id: str, request: Request):
    try:
        return request.app.state.issue_service.get_issue(issue_id).to_dict()
    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "GET_ISSUE")


@router.put("/issues/upvote/{issue_id}")
async def upvote_issue(issue_id: str, request: Request):
    try:
        data = await read_json_body(request)
        voter = first_of(data, "voterEmail", "userEmail")
        result = request.app.state.issue_service.upvote(issue_id, voter)
        return {"applied": result.applied, "upvotes": result.upvotes, "message": result.message}

    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "UPVOTE_ISSUE")


@router.put("/issues/{issue_id}")
async def update_issue(issue_id: str, request: Request):
    """
    Edit issue fields and/or change its status.

    Body: editable fields plus an optional "timeline" object
    {status, message, updatedBy}. A status change must name updatedBy.
    """
    try:
        data = await read_json_body(request)
        timeline = data.pop("timeline", None)

        note = None
        if timeline is not None:
            if not isinstance(timeline, dict):
                raise ValidationError("timeline must be an object")
            note = TimelineNote(
                updated_by=timeline.get("updatedBy"),
                status=timeline.get("status"),
                message=timeline.get("message"),
            )

        issue = request.app.state.issue_service.update_issue(issue_id, data, note)
        return {"success": True, "issue": issue.to_dict()}

    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "UPDATE_ISSUE")


@router.delete("/issues/{issue_id}")
async def delete_issue(
    issue_id: str,
    request: Request,
    authorization: Optional[str] = Header(None),
):
    try:
        identity = verify_request(request.app.state.identity_verifier, authorization)
        request.app.state.issue_service.delete_issue(issue_id)
        logger.info(f"🗑️ ISSUE_REMOVED_BY: {issue_id} by {identity.email}")
        return {"success": True, "message": f"Issue {issue_id} deleted"}

    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "DELETE_ISSUE")
