"""
Form submissions from published sites.

- `POST /api/projects/{id}/submissions` is public: published sites post their
  contact/newsletter forms here. Limited per client address with the
  `external` limiter. Answers with permissive CORS since sites run on their own
  origins.
- `GET /api/projects/{id}/submissions` lists them for the project owner.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response

from backend.identity_access.policy import AUTHENTICATED
from backend.results import ApiError, Err, Ok

from .. import wiring
from ..guards import enforce_rate_limit, parse_paging, require
from ..responses import boundary, classify_exception, private_json, report_failure
from ..shaping import shape_submission

submissions_router = APIRouter(tags=["Submissions"])
logger = logging.getLogger("buildflow.web.submissions")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}
MAX_FIELDS = 50
MAX_FIELD_LEN = 5000
DEFAULT_FORM_TYPE = "contact"


def _with_cors(response: Response) -> Response:
    for key, value in CORS_HEADERS.items():
        response.headers[key] = value
    return response


def _clean_payload(raw: Any) -> Optional[dict[str, Any]]:
    """Keep flat scalar fields only; None when the body is not an object or too large."""
    if not isinstance(raw, dict) or len(raw) > MAX_FIELDS:
        return None
    out: dict[str, Any] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or len(key) > 100:
            return None
        if isinstance(value, str):
            if len(value) > MAX_FIELD_LEN:
                return None
            out[key] = value
        elif value is None or isinstance(value, (bool, int, float)):
            out[key] = value
        else:
            return None
    return out


@submissions_router.options("/api/projects/{project_id}/submissions")
async def submission_preflight(project_id: str):
    return Response(status_code=204, headers=CORS_HEADERS)


@submissions_router.post("/api/projects/{project_id}/submissions")
@boundary("submit form")
async def submit_form(request: Request, project_id: str):
    limited = await enforce_rate_limit(request, "external")
    if limited:
        return _with_cors(report_failure(limited.error, "submit form"))
    try:
        raw = await request.json()
    except ValueError:
        raw = None
    payload = _clean_payload(raw)
    if payload is None:
        return _with_cors(report_failure(ApiError.bad_input("Invalid form data"), "submit form"))
    form_type = payload.get("formType")
    form_type = form_type.strip()[:50] if isinstance(form_type, str) and form_type.strip() else DEFAULT_FORM_TYPE
    # Storage failures still carry CORS headers.
    try:
        submission = await wiring.run_io(
            wiring.project_repo().create_submission, project_id, form_type=form_type, payload=payload
        )
    except Exception as exc:
        return _with_cors(report_failure(classify_exception(exc), "submit form"))
    if submission is None:
        return _with_cors(report_failure(ApiError.not_found("Project"), "submit form"))
    logger.info("Form submitted project=%s type=%s", project_id[-6:], form_type)
    return _with_cors(
        private_json({"success": True, "message": "Form submitted successfully", "submissionId": submission.id})
    )


@submissions_router.get("/api/projects/{project_id}/submissions")
@boundary("fetch submissions")
async def list_submissions(request: Request, project_id: str, limit: Optional[int] = None, offset: Optional[int] = None):
    gate = require(request, AUTHENTICATED)
    if isinstance(gate, Err):
        return gate
    lim, off = parse_paging(limit, offset)
    repo = wiring.project_repo()
    items = await wiring.run_io(repo.list_submissions_owned, project_id, gate.value.id, limit=lim, offset=off)
    if items is None:
        return Err(ApiError.not_found("Project"))
    total = await wiring.run_io(repo.count_submissions_owned, project_id, gate.value.id)
    if total is None:
        # Project removed between the two reads.
        return Err(ApiError.not_found("Project"))
    return Ok({"submissions": [shape_submission(s) for s in items], "total": total})
