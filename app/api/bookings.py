from fastapi import APIRouter

from app.models.api_models import (
    BookingResponse,
    CheckoutRequest,
    HoldRequest,
    HoldResponse,
)
from app.services.booking_service import BookingService

router = APIRouter()
booking_service = BookingService()

@router.post("/bookings", response_model=BookingResponse, status_code=201)
async def checkout(req: CheckoutRequest):
    # Conflicts and price changes surface as 409 through the app's error handler
    booking = await booking_service.checkout(
        req.resource_id,
        req.start_time,
        duration=req.duration,
        quoted_price=req.quoted_price,
        package_id=req.package_id,
        hold_id=req.hold_id,
        session_id=req.session_id,
        guest_name=req.guest_name,
        guest_email=req.guest_email,
    )
    return BookingResponse.from_booking(booking)

@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str):
    booking = await booking_service.get_booking(booking_id)
    return BookingResponse.from_booking(booking)

@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(booking_id: str):
    booking = await booking_service.cancel_booking(booking_id)
    return BookingResponse.from_booking(booking)

@router.post("/holds", response_model=HoldResponse, status_code=201)
async def create_hold(req: HoldRequest):
    hold = await booking_service.hold_slot(
        req.resource_id, req.start_time, duration=req.duration, session_id=req.session_id
    )
    return HoldResponse.from_hold(hold)

@router.post("/holds/{hold_id}/release", response_model=HoldResponse)
async def release_hold(hold_id: str):
    hold = await booking_service.release_hold(hold_id)
    return HoldResponse.from_hold(hold)
