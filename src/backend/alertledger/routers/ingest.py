"""
Ingest router: SMS webhook and forwarded bank emails.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from alertledger.models.pending import InboundMessage, IngestResult
from alertledger.models.transaction import GeoPoint
from alertledger.services.email import EmailService
from alertledger.services.ingestion import IngestionService
from alertledger.routers.deps import get_ingestion

router = APIRouter(prefix="/ingest", tags=["ingest"])


class SmsWebhookRequest(BaseModel):
    """SMS forwarded by the user's phone."""
    user_id: str
    sender: str
    body: str
    timestamp: Optional[datetime] = None
    message_id: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class EmailForwardRequest(BaseModel):
    """Bank email forwarded to the intake address."""
    user_id: str
    sender: str
    subject: Optional[str] = None
    body: Optional[str] = None
    html: Optional[str] = None
    timestamp: Optional[datetime] = None
    message_id: Optional[str] = None


class IngestResponse(BaseModel):
    status: str
    duplicate: bool
    pending_id: Optional[str] = None
    confidence_score: Optional[float] = None
    needs_manual_review: Optional[bool] = None
    existing_id: Optional[str] = None


def _respond(result: IngestResult) -> IngestResponse:
    if result.status == 'error':
        raise HTTPException(status_code=500, detail=f"Ingestion failed: {result.error}")

    if result.duplicate:
        return IngestResponse(
            status=result.status,
            duplicate=True,
            existing_id=(result.existing or {}).get('id')
        )

    return IngestResponse(
        status=result.status,
        duplicate=False,
        pending_id=result.pending.id,
        confidence_score=result.pending.confidence_score,
        needs_manual_review=result.pending.needs_manual_review
    )


@router.post("/sms", response_model=IngestResponse)
async def ingest_sms(request: SmsWebhookRequest, ingestion: IngestionService = Depends(get_ingestion)):
    """
    Ingest one bank SMS.

    Returns:
        The created pending transaction, or the existing record for a duplicate
    """
    gps_hint = None
    if request.lat is not None and request.lng is not None:
        gps_hint = GeoPoint(lat=request.lat, lng=request.lng)

    message = InboundMessage(
        user_id=request.user_id,
        sender=request.sender,
        body=request.body,
        timestamp=request.timestamp,
        message_id=request.message_id,
        source_kind='sms',
        gps_hint=gps_hint
    )
    return _respond(ingestion.ingest(message))


@router.post("/email", response_model=IngestResponse)
async def ingest_email(request: EmailForwardRequest, ingestion: IngestionService = Depends(get_ingestion)):
    """Ingest one forwarded bank email, plain text preferred over HTML."""
    body = request.body
    if not body and request.html:
        body = EmailService.convert_html_to_text(request.html)
    if not body:
        raise HTTPException(status_code=400, detail="Email has no body")

    message = InboundMessage(
        user_id=request.user_id,
        sender=request.sender,
        subject=request.subject,
        body=body,
        timestamp=request.timestamp,
        message_id=request.message_id,
        source_kind='email'
    )
    return _respond(ingestion.ingest(message))
