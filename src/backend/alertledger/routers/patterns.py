"""
Merchant patterns router: what has been learned from the user's approvals.
"""

from fastapi import APIRouter, Depends, HTTPException

from alertledger.models.patterns import MerchantPattern
from alertledger.services.errors import AlertLedgerError
from alertledger.services.merchant_patterns import MerchantPatternLearner
from alertledger.utils.similarity import normalize_merchant_name
from alertledger.routers.deps import get_merchant_learner, http_error

router = APIRouter(prefix="/merchant-patterns", tags=["patterns"])


@router.get("")
async def list_patterns(user_id: str, learner: MerchantPatternLearner = Depends(get_merchant_learner)):
    try:
        patterns = learner.list_patterns(user_id)
        return {
            'patterns': [p.model_dump(mode='json') for p in patterns],
            'total': len(patterns)
        }
    except AlertLedgerError as e:
        raise http_error(e)


@router.get("/{merchant}", response_model=MerchantPattern)
async def get_pattern(
    merchant: str,
    user_id: str,
    learner: MerchantPatternLearner = Depends(get_merchant_learner)
):
    """Pattern for a merchant, by exact key or fuzzy match on any learned spelling."""
    try:
        pattern = learner.get_pattern(user_id, normalize_merchant_name(merchant))
        if pattern is None:
            found = learner.find_pattern(user_id, merchant)
            pattern = found[0] if found else None
    except AlertLedgerError as e:
        raise http_error(e)

    if pattern is None:
        raise HTTPException(status_code=404, detail=f"No pattern learned for {merchant}")
    return pattern


@router.delete("/{pattern_id}")
async def delete_pattern(
    pattern_id: str,
    user_id: str,
    learner: MerchantPatternLearner = Depends(get_merchant_learner)
):
    try:
        deleted = learner.delete_pattern(user_id, pattern_id)
    except AlertLedgerError as e:
        raise http_error(e)

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Pattern {pattern_id} not found")
    return {'success': True, 'pattern_id': pattern_id}
