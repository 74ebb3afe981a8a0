from datetime import date
from typing import Optional

from fastapi import APIRouter, Query

from app.models.api_models import (
    AvailabilityResponse,
    NextAvailableResponse,
    PriceRequest,
    PriceResponse,
)
from app.services.booking_service import BookingService

router = APIRouter()
booking_service = BookingService()

@router.get("/availability", response_model=AvailabilityResponse)
async def availability(
    id: str = Query(..., description="Resource id or business id"),
    target_date: date = Query(..., alias="date"),
    duration: Optional[int] = None,
    party_size: Optional[int] = None,
):
    slots = await booking_service.availability(id, target_date, duration, party_size)
    return AvailabilityResponse(slots=slots)

@router.get("/availability/next", response_model=NextAvailableResponse)
async def next_available(
    id: str = Query(..., description="Resource id or business id"),
    from_date: Optional[date] = None,
    duration: Optional[int] = None,
    party_size: Optional[int] = None,
):
    day, slots = await booking_service.find_soonest(id, from_date, duration, party_size)
    return NextAvailableResponse(day=day, slots=slots)

@router.post("/pricing/resolve", response_model=PriceResponse)
async def resolve_price(req: PriceRequest):
    final_price = await booking_service.quote_price(
        req.base_price, req.business_id, req.bookable_type_id, req.package_id, req.at
    )
    return PriceResponse(final_price=final_price)
