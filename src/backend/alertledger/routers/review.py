"""
Review API router: the user's queue of pending transactions.

Approving materializes a transaction and feeds corrections to the learners;
rejecting only records the decision.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List, Optional

from alertledger.models.patterns import MerchantSuggestion
from alertledger.models.pending import CorrectedData, PendingTransaction
from alertledger.models.transaction import Transaction
from alertledger.services.errors import AlertLedgerError
from alertledger.services.merchant_patterns import MerchantPatternLearner
from alertledger.services.pending import PendingTransactionWorkflow
from alertledger.routers.deps import get_merchant_learner, get_workflow, http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pending", tags=["review"])


class ApproveRequest(BaseModel):
    user_id: str
    corrected_data: Optional[CorrectedData] = None


class RejectRequest(BaseModel):
    user_id: str
    reason: Optional[str] = None


class BulkApproveRequest(BaseModel):
    user_id: str
    pending_ids: List[str]


class SuggestionsResponse(BaseModel):
    pending_id: str
    suggestions: Optional[MerchantSuggestion] = None


@router.get("")
async def list_pending(
    user_id: str,
    status: str = 'pending',
    limit: int = 50,
    workflow: PendingTransactionWorkflow = Depends(get_workflow)
):
    """
    List the user's pending transactions, newest first.

    Returns:
        Records with the given status and their count
    """
    try:
        records = workflow.list(user_id, status=status, limit=limit)
        return {
            'pending': [record.model_dump(mode='json') for record in records],
            'total': len(records)
        }
    except AlertLedgerError as e:
        raise http_error(e)


@router.get("/count")
async def count_pending(user_id: str, workflow: PendingTransactionWorkflow = Depends(get_workflow)):
    try:
        return {'count': workflow.count(user_id)}
    except AlertLedgerError as e:
        raise http_error(e)


@router.post("/bulk-approve")
async def bulk_approve(request: BulkApproveRequest, workflow: PendingTransactionWorkflow = Depends(get_workflow)):
    """Approve several records as parsed; failures are reported per record."""
    results = workflow.bulk_approve(request.pending_ids, request.user_id)
    return {
        'success': not results['failed'],
        **results
    }


@router.get("/{pending_id}", response_model=PendingTransaction)
async def get_pending(
    pending_id: str,
    user_id: str,
    workflow: PendingTransactionWorkflow = Depends(get_workflow)
):
    try:
        return workflow.get(pending_id, user_id)
    except AlertLedgerError as e:
        raise http_error(e)


@router.get("/{pending_id}/suggestions", response_model=SuggestionsResponse)
async def get_suggestions(
    pending_id: str,
    user_id: str,
    workflow: PendingTransactionWorkflow = Depends(get_workflow),
    learner: MerchantPatternLearner = Depends(get_merchant_learner)
):
    """
    Learned merchant, category and payment method suggestions for a record.

    Suggestions are recomputed so patterns learned after ingestion are included.
    """
    try:
        pending = workflow.get(pending_id, user_id)
        suggestions = None
        if pending.parsed_data is not None:
            suggestions = learner.suggest(user_id, pending.parsed_data)
        return SuggestionsResponse(pending_id=pending_id, suggestions=suggestions or pending.suggestions)
    except AlertLedgerError as e:
        raise http_error(e)


@router.post("/{pending_id}/approve", response_model=Transaction)
async def approve_pending(
    pending_id: str,
    request: ApproveRequest,
    workflow: PendingTransactionWorkflow = Depends(get_workflow)
):
    """
    Approve a pending transaction, optionally with corrections.

    Returns:
        The materialized transaction
    """
    try:
        return workflow.approve(pending_id, request.corrected_data, user_id=request.user_id)
    except AlertLedgerError as e:
        raise http_error(e)
    except Exception as e:
        logger.error("Failed to approve pending transaction", extra={
            "pending_id": pending_id
        }, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to approve: {str(e)}"
        )


@router.post("/{pending_id}/reject", response_model=PendingTransaction)
async def reject_pending(
    pending_id: str,
    request: RejectRequest,
    workflow: PendingTransactionWorkflow = Depends(get_workflow)
):
    try:
        return workflow.reject(pending_id, request.reason, user_id=request.user_id)
    except AlertLedgerError as e:
        raise http_error(e)
