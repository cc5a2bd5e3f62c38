"""
Sync router: trigger a Gmail poll, run the expiry sweep, check configuration.
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from typing import Optional

from alertledger.config import settings
from alertledger.services.errors import AlertLedgerError
from alertledger.services.email import EmailService
from alertledger.services.ingestion import IngestionService
from alertledger.services.pending import PendingTransactionWorkflow
from alertledger.services.poller import GmailPoller
from alertledger.routers.deps import get_ingestion, get_workflow, http_error

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncResponse(BaseModel):
    """Response model for sync endpoint."""
    success: bool
    disabled: bool
    messages_checked: int
    pending_created: int
    duplicates_skipped: int
    errors: list


class ExpireResponse(BaseModel):
    expired: int


def gmail_configured() -> bool:
    return bool(
        settings.GMAIL_CLIENT_ID and
        settings.GMAIL_CLIENT_SECRET and
        settings.GMAIL_REFRESH_TOKEN and
        settings.GMAIL_USER_ID
    )


def _poller(request: Request, ingestion: IngestionService) -> GmailPoller:
    poller: Optional[GmailPoller] = getattr(request.app.state, 'poller', None)
    if poller is None:
        poller = GmailPoller(EmailService(), ingestion)
        request.app.state.poller = poller
    return poller


@router.post("/gmail", response_model=SyncResponse)
async def sync_gmail(request: Request, ingestion: IngestionService = Depends(get_ingestion)):
    """
    Run one Gmail poll now instead of waiting for the schedule.

    Returns:
        Summary of the poll
    """
    if not gmail_configured():
        raise HTTPException(status_code=503, detail="Gmail sync is not configured")

    try:
        summary = await asyncio.to_thread(_poller(request, ingestion).poll_once)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Sync failed: {str(e)}"
        )

    return SyncResponse(
        success=not summary['errors'] and not summary['disabled'],
        disabled=summary['disabled'],
        messages_checked=summary['messages_checked'],
        pending_created=summary['pending_created'],
        duplicates_skipped=summary['duplicates_skipped'],
        errors=summary['errors']
    )


@router.post("/expire", response_model=ExpireResponse)
async def expire_pending(workflow: PendingTransactionWorkflow = Depends(get_workflow)):
    """Expire every pending transaction past its deadline. Safe to call repeatedly."""
    try:
        return ExpireResponse(expired=workflow.expire_stale())
    except AlertLedgerError as e:
        raise http_error(e)


@router.get("/status")
async def sync_status(request: Request):
    """
    Check if sync services are configured and ready.

    Returns:
        Configuration status and poller state
    """
    config_status = {
        "gmail_configured": gmail_configured(),
        "supabase_connected": bool(settings.SUPABASE_URL and
                                   settings.SUPABASE_SERVICE_KEY),
        "notifications_configured": bool(settings.FCM_SERVER_KEY)
    }

    poller: Optional[GmailPoller] = getattr(request.app.state, 'poller', None)
    poller_status = None
    if poller is not None:
        poller_status = {
            "disabled": poller.disabled,
            "disabled_reason": poller.disabled_reason,
            "consecutive_failures": poller.consecutive_failures,
            "next_delay_seconds": poller.next_delay,
            "seen_messages": len(poller.seen)
        }

    return {
        "ready": config_status["gmail_configured"] and config_status["supabase_connected"],
        "config": config_status,
        "poller": poller_status
    }
