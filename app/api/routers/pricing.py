# app/api/routers/pricing.py
from __future__ import annotations

from fastapi import APIRouter, Query

from app.models.enums import Campus, City
from app.schemas.orders import QuoteOut
from app.services.pricing import calculate_delivery_fee, route_description

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/quote", response_model=QuoteOut)
async def quote(
    city: City = Query(...),
    campus: Campus = Query(...),
):
    route = calculate_delivery_fee(city, campus)
    return QuoteOut(
        city=city,
        campus=campus,
        fee=route.fee,
        eta=route.eta,
        category=route.category.value,
        description=route_description(city, campus),
    )
