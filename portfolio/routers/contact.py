from __future__ import annotations

import logging
import math
import time

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from ..abuse import AbuseGate, GateConfig, GateDecision, RejectReason, SubmissionContext, client_ip_from_headers
from ..config import settings
from ..schemas import ContactFields, ContactFormResponse, ContactResponse, ContactSubmission
from ..services.mailer import MailConfigurationError, MailDeliveryError, send_contact_email

router = APIRouter(prefix="/api/contact", tags=["contact"])
logger = logging.getLogger("portfolio.contact")

gate = AbuseGate(GateConfig.from_settings(settings))

GENERIC_REJECTION = "Unable to process your message."


def get_gate() -> AbuseGate:
    return gate


def current_time_ms() -> int:
    return int(time.time() * 1000)


def rejection_to_http(decision: GateDecision) -> HTTPException:
    reason = decision.reason
    if reason is RejectReason.RATE_LIMITED:
        retry_after_ms = decision.retry_after_ms or 0
        minutes = max(1, math.ceil(retry_after_ms / 60_000))
        return HTTPException(
            status_code=429,
            detail=f"Too many messages. Please try again in {minutes} minute{'s' if minutes != 1 else ''}.",
            headers={"Retry-After": str(math.ceil(retry_after_ms / 1000))},
        )
    if reason is RejectReason.DUPLICATE_SUBMISSION:
        return HTTPException(
            status_code=429,
            detail="This message was already sent. Please wait before sending it again.",
        )
    if reason is RejectReason.SUBMITTED_TOO_FAST:
        return HTTPException(status_code=400, detail="Please take a moment to complete the form and try again.")
    # Origin and bot rejections share one generic message.
    return HTTPException(status_code=400, detail=GENERIC_REJECTION)


@router.get("/form", response_model=ContactFormResponse)
async def contact_form(now: int = Depends(current_time_ms)) -> ContactFormResponse:
    """Timestamp the form render; the page posts it back as `started_at`."""

    return ContactFormResponse(started_at=now)


@router.post("", response_model=ContactResponse)
async def submit_contact(
    payload: ContactSubmission,
    request: Request,
    contact_gate: AbuseGate = Depends(get_gate),
    now: int = Depends(current_time_ms),
) -> ContactResponse:
    ctx = SubmissionContext(
        client_id=client_ip_from_headers(request.headers),
        arrived_at=now,
        rendered_at=payload.started_at,
        reply_to=payload.email,
        subject=payload.subject,
        body=payload.message,
        origin=request.headers.get("origin"),
        referer=request.headers.get("referer"),
        user_agent=request.headers.get("user-agent", ""),
        honeypot=payload.website,
    )

    decision = contact_gate.screen(ctx, now)
    if not decision.accepted:
        raise rejection_to_http(decision)

    try:
        fields = ContactFields(email=payload.email, subject=payload.subject, message=payload.message)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc

    # Invalid submissions must not reach the throttle state.
    decision = contact_gate.throttle(ctx, now)
    if not decision.accepted:
        raise rejection_to_http(decision)

    try:
        await send_contact_email(str(fields.email), fields.subject, fields.message)
    except MailConfigurationError as exc:
        logger.error(
            "Contact mail configuration error",
            extra={"event": "contact_configuration_error", "reason": str(exc), "path": "/api/contact"},
        )
        raise HTTPException(status_code=503, detail="Contact form is not configured") from exc
    except MailDeliveryError as exc:
        raise HTTPException(status_code=502, detail="Failed to send message. Please try again later.") from exc

    return ContactResponse(success=True, message="Thanks! Your message has been sent.")
