"""FX rate routes."""

from fastapi import APIRouter, Depends, Query

from catalog_engine.api.deps import get_context
from catalog_engine.context import EngineContext

router = APIRouter(prefix="/api/rates", tags=["rates"])


@router.get("")
async def get_rate(
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    context: EngineContext = Depends(get_context),
):
    """Current rate for one unit of `from` in `to`."""
    rate = await context.fx.get_rate(from_currency, to_currency)
    return {"from": from_currency.upper(), "to": to_currency.upper(), "rate": rate}


@router.get("/convert")
async def convert_amount(
    amount: float,
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    context: EngineContext = Depends(get_context),
):
    """Convert an amount. Never fails: unknown rates fall back to 1.0."""
    converted = await context.fx.convert(amount, from_currency, to_currency)
    return {
        "amount": amount,
        "from": from_currency.upper(),
        "to": to_currency.upper(),
        "converted": converted,
    }
