"""Unit tests for parcel delivery verification."""

import pytest

from seatline.core.exceptions import InvalidStateTransitionError, NotFoundError, OtpMismatchError, ValidationError
from seatline.models.parcel import ParcelStatus
from seatline.schemas.parcel import CreateParcelRequest, DeliverParcelRequest, MarkFailedRequest, MarkInTransitRequest
from seatline.services import ParcelService
from seatline.services.parcel_service import generate_otp, generate_parcel_code


def parcel_service(session, clock) -> ParcelService:
    return ParcelService(session, clock, otp_factory=lambda: "483920", code_factory=lambda: "PCL-001")


def parcel_request(trip=None) -> CreateParcelRequest:
    return CreateParcelRequest(
        sender_name="Rosa Quispe",
        sender_phone="+51 999 111 222",
        receiver_name="Luis Ramos",
        receiver_phone="+51 999 333 444",
        price=1500,
        trip_id=trip.id if trip else None,
    )


def test_generated_codes():
    otp = generate_otp()
    assert len(otp) == 6
    assert otp.isdigit()

    code = generate_parcel_code()
    assert code.startswith("PCL-")
    assert len(code) == 12


@pytest.mark.asyncio
async def test_parcel_delivery(test_session, trip, clock):
    """Create, dispatch, then deliver with the right OTP."""
    service = parcel_service(test_session, clock)

    parcel = await service.create_parcel(parcel_request(trip))
    assert parcel.code == "PCL-001"
    assert parcel.delivery_otp == "483920"
    assert parcel.status == ParcelStatus.CREATED

    in_transit = await service.mark_in_transit(MarkInTransitRequest(code="PCL-001"))
    assert in_transit.status == ParcelStatus.IN_TRANSIT

    delivered = await service.deliver(
        DeliverParcelRequest(code="PCL-001", otp="483920", proof_url="https://cdn.example.com/pod/1.jpg")
    )
    assert delivered.status == ParcelStatus.DELIVERED
    assert delivered.delivered_at == clock.now
    assert delivered.proof_url == "https://cdn.example.com/pod/1.jpg"

    with pytest.raises(InvalidStateTransitionError):
        await service.mark_failed(MarkFailedRequest(code="PCL-001", reason="Too late"))


@pytest.mark.asyncio
async def test_wrong_otp_changes_nothing(test_session, trip, clock):
    service = parcel_service(test_session, clock)
    await service.create_parcel(parcel_request(trip))
    await service.mark_in_transit(MarkInTransitRequest(code="PCL-001"))

    with pytest.raises(OtpMismatchError) as exc_info:
        await service.deliver(DeliverParcelRequest(code="PCL-001", otp="000000"))
    assert exc_info.value.code == "OTP_MISMATCH"
    assert exc_info.value.status_code == 422

    parcel = await service.get_parcel_by_code_or_raise("PCL-001", refresh=True)
    assert parcel.status == ParcelStatus.IN_TRANSIT
    assert parcel.delivered_at is None

    delivered = await service.deliver(DeliverParcelRequest(code="PCL-001", otp="483920"))
    assert delivered.status == ParcelStatus.DELIVERED


@pytest.mark.asyncio
async def test_deliver_requires_transit(test_session, trip, clock):
    service = parcel_service(test_session, clock)
    await service.create_parcel(parcel_request(trip))

    with pytest.raises(InvalidStateTransitionError):
        await service.deliver(DeliverParcelRequest(code="PCL-001", otp="483920"))


@pytest.mark.asyncio
async def test_in_transit_needs_a_trip(test_session, trip, clock):
    service = parcel_service(test_session, clock)
    await service.create_parcel(parcel_request())

    with pytest.raises(ValidationError):
        await service.mark_in_transit(MarkInTransitRequest(code="PCL-001"))

    loaded = await service.mark_in_transit(MarkInTransitRequest(code="PCL-001", trip_id=trip.id))
    assert loaded.trip_id == trip.id


@pytest.mark.asyncio
async def test_failed_delivery_is_terminal(test_session, trip, clock):
    service = parcel_service(test_session, clock)
    await service.create_parcel(parcel_request(trip))
    await service.mark_in_transit(MarkInTransitRequest(code="PCL-001"))

    failed = await service.mark_failed(MarkFailedRequest(code="PCL-001", reason="Receiver unreachable"))
    assert failed.status == ParcelStatus.FAILED
    assert failed.failure_reason == "Receiver unreachable"

    with pytest.raises(InvalidStateTransitionError):
        await service.deliver(DeliverParcelRequest(code="PCL-001", otp="483920"))


@pytest.mark.asyncio
async def test_unknown_parcel(test_session, clock):
    with pytest.raises(NotFoundError):
        await parcel_service(test_session, clock).deliver(DeliverParcelRequest(code="PCL-404", otp="123456"))
