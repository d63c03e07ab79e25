from fastapi import APIRouter, Depends

from .. import schemas
from ..notifications import Notifier
from .common import get_notifier

router = APIRouter()


@router.post("/check-expiring", response_model=schemas.ExpirationCheckResult)
async def check_expiring(notifier: Notifier = Depends(get_notifier)) -> schemas.ExpirationCheckResult:
    result = await notifier.check_expiring_items()
    return schemas.ExpirationCheckResult(**result)
