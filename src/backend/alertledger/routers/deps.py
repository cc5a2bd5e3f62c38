"""
Shared router dependencies and error translation.
"""

from typing import Optional

from fastapi import Depends, HTTPException

from alertledger.services.errors import AlertLedgerError, ErrorCode
from alertledger.services.geocoding import Geocoder
from alertledger.services.ingestion import IngestionService
from alertledger.services.merchant_patterns import MerchantPatternLearner
from alertledger.services.notifications import NotificationService
from alertledger.services.pending import PendingTransactionWorkflow
from alertledger.services.store import SupabaseStore

STATUS_CODES = {
    ErrorCode.PENDING_NOT_FOUND: 404,
    ErrorCode.ALREADY_PROCESSED: 409,
    ErrorCode.CORRECTION_REQUIRED: 422,
    ErrorCode.AMOUNT_NOT_FOUND: 422,
    ErrorCode.INVALID_AMOUNT: 422,
}


def http_error(error: AlertLedgerError) -> HTTPException:
    return HTTPException(status_code=STATUS_CODES.get(error.code, 500), detail=error.to_dict())


def get_store() -> SupabaseStore:
    return SupabaseStore()


def get_geocoder() -> Optional[Geocoder]:
    return Geocoder()


def get_notifier(store: SupabaseStore = Depends(get_store)) -> NotificationService:
    return NotificationService(store)


def get_ingestion(
    store: SupabaseStore = Depends(get_store),
    geocoder: Optional[Geocoder] = Depends(get_geocoder),
    notifier: NotificationService = Depends(get_notifier)
) -> IngestionService:
    return IngestionService(store, geocoder=geocoder, notifier=notifier)


def get_workflow(
    store: SupabaseStore = Depends(get_store),
    geocoder: Optional[Geocoder] = Depends(get_geocoder)
) -> PendingTransactionWorkflow:
    return PendingTransactionWorkflow(store, geocoder=geocoder)


def get_merchant_learner(store: SupabaseStore = Depends(get_store)) -> MerchantPatternLearner:
    return MerchantPatternLearner(store)
