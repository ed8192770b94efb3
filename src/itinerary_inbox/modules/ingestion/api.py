from __future__ import annotations

import json
from dataclasses import asdict

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from itinerary_inbox.core.db import db_session
from itinerary_inbox.core.errors import IngestError, IngressError
from itinerary_inbox.core.logging import get_logger, log_event, log_exception
from itinerary_inbox.modules.identity.service import extract_forwarding_token, resolve_profile
from itinerary_inbox.modules.ingestion.ingress import InboundEmail, normalize_payload
from itinerary_inbox.modules.ingestion.models import IngestSource
from itinerary_inbox.modules.ingestion.schemas import ErrorResponse, IngestResponse
from itinerary_inbox.modules.ingestion.service import IngestResult, ingest_email

logger = get_logger(__name__)

router = APIRouter(tags=["ingestion"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


@router.options("/inbound-email")
def inbound_email_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post(
    "/inbound-email",
    response_model=IngestResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def inbound_email(request: Request, session: Session = Depends(db_session)):
    content_type = request.headers.get("content-type")
    try:
        payload = await _read_payload(request, content_type)
        email = normalize_payload(content_type, payload)
        result = await run_in_threadpool(_ingest_forwarded, session, email)
    except IngestError as e:
        log_event(
            logger,
            "ingest.rejected",
            status_code=e.status_code,
            error_type=type(e).__name__,
            error=str(e),
        )
        return JSONResponse(status_code=e.status_code, content={"error": str(e)})
    except Exception:
        log_exception(logger, "ingest.unhandled_error")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return IngestResponse(**asdict(result))


def _ingest_forwarded(session: Session, email: InboundEmail) -> IngestResult:
    token = extract_forwarding_token(email.recipient)
    profile = resolve_profile(session, token=token)
    return ingest_email(session, profile=profile, email=email, source=IngestSource.FORWARD)


async def _read_payload(request: Request, content_type: str | None) -> dict:
    ctype = (content_type or "").split(";", 1)[0].strip().lower()
    if ctype == "application/json":
        try:
            data = json.loads(await request.body() or b"{}")
        except ValueError as e:
            raise IngressError("Malformed JSON body") from e
        if not isinstance(data, dict):
            raise IngressError("JSON body must be an object")
        return data
    if ctype in {"application/x-www-form-urlencoded", "multipart/form-data"}:
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}
    # Let the normalizer produce the unsupported-content-type error.
    return {}
