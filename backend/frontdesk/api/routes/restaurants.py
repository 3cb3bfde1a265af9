"""Restaurant setup, day views, availability and the public booking page."""

from datetime import date, time
from typing import List

from fastapi import APIRouter, Query, Request

from frontdesk.core.config import settings
from frontdesk.core.rate_limit import limiter
from frontdesk.db.session import DbSession
from frontdesk.schemas.reservations import (
    BookingRequest,
    BookingRequestResponse,
    BookingResponse,
    PromoteNextRequest,
    PromoteNextResponse,
    WaitingListEntryResponse,
)
from frontdesk.schemas.restaurants import (
    OperatingHoursResponse,
    OperatingHoursUpdate,
    RestaurantCreate,
    RestaurantResponse,
    SlotAvailabilityResponse,
    TimeSlotResponse,
)
from frontdesk.schemas.tables import AvailableTableResponse, TableResponse
from frontdesk.services.allocation_engine import AllocationEngine
from frontdesk.services.booking_intake import BookingIntake, CustomerDetails
from frontdesk.services.capacity_matcher import (
    find_available_tables,
    generate_time_slots,
    get_time_slot_availability,
)
from frontdesk.services.restaurant_service import RestaurantService

router = APIRouter()


@router.post("/", response_model=RestaurantResponse, status_code=201)
def create_restaurant(db: DbSession, body: RestaurantCreate):
    """Create a restaurant."""
    return RestaurantService(db).create_restaurant(
        name=body.name,
        slug=body.slug,
        time_slot_duration_minutes=body.time_slot_duration_minutes,
    )


@router.get("/by-slug/{slug}", response_model=RestaurantResponse)
def get_restaurant_by_slug(db: DbSession, slug: str):
    return RestaurantService(db).get_by_slug(slug)


@router.get("/{restaurant_id}", response_model=RestaurantResponse)
def get_restaurant(db: DbSession, restaurant_id: int):
    return RestaurantService(db).get_restaurant(restaurant_id)


@router.get("/{restaurant_id}/hours", response_model=List[OperatingHoursResponse])
def get_operating_hours(db: DbSession, restaurant_id: int):
    return RestaurantService(db).get_operating_hours(restaurant_id)


@router.put("/{restaurant_id}/hours", response_model=List[OperatingHoursResponse])
def set_operating_hours(db: DbSession, restaurant_id: int, body: OperatingHoursUpdate):
    """Set weekly operating hours; days not in the body are left unchanged."""
    return RestaurantService(db).set_operating_hours(
        restaurant_id, [day.model_dump() for day in body.days]
    )


@router.get("/{restaurant_id}/tables", response_model=List[TableResponse])
def list_tables(db: DbSession, restaurant_id: int):
    return RestaurantService(db).list_tables(restaurant_id)


@router.get("/{restaurant_id}/bookings", response_model=List[BookingResponse])
def list_bookings(db: DbSession, restaurant_id: int, service_date: date = Query(..., alias="date")):
    """Bookings of one service day, ordered by time."""
    return RestaurantService(db).list_bookings(restaurant_id, service_date)


@router.get("/{restaurant_id}/waitlist", response_model=List[WaitingListEntryResponse])
def list_waiting_list(db: DbSession, restaurant_id: int, service_date: date = Query(..., alias="date")):
    """Waiting parties of one service day, in service order."""
    return RestaurantService(db).list_waiting_list(restaurant_id, service_date)


@router.get("/{restaurant_id}/available-tables", response_model=List[AvailableTableResponse])
def available_tables(
    db: DbSession,
    restaurant_id: int,
    service_date: date = Query(..., alias="date"),
    service_time: time = Query(..., alias="time"),
    party_size: int = Query(..., ge=1),
):
    """Tables that can seat the party in the slot, smallest first."""
    RestaurantService(db).get_restaurant(restaurant_id)
    return find_available_tables(db, restaurant_id, service_date, service_time, party_size)


@router.get("/{restaurant_id}/slots", response_model=List[TimeSlotResponse])
def list_slots(db: DbSession, restaurant_id: int, service_date: date = Query(..., alias="date")):
    return generate_time_slots(db, restaurant_id, service_date)


@router.get("/{restaurant_id}/availability", response_model=SlotAvailabilityResponse)
def slot_availability(
    db: DbSession,
    restaurant_id: int,
    service_date: date = Query(..., alias="date"),
    service_time: time = Query(..., alias="time"),
):
    RestaurantService(db).get_restaurant(restaurant_id)
    return get_time_slot_availability(db, restaurant_id, service_date, service_time)


@router.post("/{restaurant_id}/waitlist/promote-next", response_model=PromoteNextResponse)
def promote_next(db: DbSession, restaurant_id: int, body: PromoteNextRequest):
    """Offer a free table to the first waiting party of a slot."""
    engine = AllocationEngine(db)
    engine.get_restaurant(restaurant_id)
    booking = engine.promote_next(restaurant_id, body.booking_date, body.booking_time)
    return PromoteNextResponse(
        promoted=booking is not None,
        booking=BookingResponse.model_validate(booking) if booking is not None else None,
    )


@router.post("/{slug}/book", response_model=BookingRequestResponse, status_code=201)
@limiter.limit(settings.public_booking_rate_limit)
def request_booking(request: Request, db: DbSession, slug: str, body: BookingRequest):
    """Public booking page: confirm on a free table or join the waiting list."""
    restaurant = RestaurantService(db).get_by_slug(slug)
    intake = BookingIntake(AllocationEngine(db))
    result = intake.request_booking(
        restaurant_id=restaurant.id,
        customer=CustomerDetails(
            name=body.customer.name,
            phone=body.customer.phone,
            email=body.customer.email,
        ),
        booking_date=body.booking_date,
        booking_time=body.booking_time,
        party_size=body.party_size,
        notes=body.notes,
    )
    return BookingRequestResponse.model_validate(result)
