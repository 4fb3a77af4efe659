"""Parcel delivery service with OTP-gated handover."""

import logging
import secrets
import string
from collections.abc import Awaitable, Callable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.concurrency import run_atomic
from ..core.database import utcnow
from ..core.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    OtpMismatchError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.parcel import Parcel, ParcelStatus
from ..schemas.parcel import CreateParcelRequest, DeliverParcelRequest, MarkFailedRequest, MarkInTransitRequest
from .trip_service import TripService

logger = logging.getLogger(__name__)


# DELIVERED and FAILED are terminal; the OTP is never re-issued
PARCEL_TRANSITIONS: dict[ParcelStatus, frozenset[ParcelStatus]] = {
    ParcelStatus.CREATED: frozenset({ParcelStatus.IN_TRANSIT}),
    ParcelStatus.IN_TRANSIT: frozenset({ParcelStatus.DELIVERED, ParcelStatus.FAILED}),
    ParcelStatus.DELIVERED: frozenset(),
    ParcelStatus.FAILED: frozenset(),
}


def generate_otp() -> str:
    """Six random digits."""
    return f"{secrets.randbelow(10 ** 6):06d}"


def generate_parcel_code(length: int = 8) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "PCL-" + ''.join(secrets.choice(alphabet) for _ in range(length))


class ParcelService:
    """Service for parcel registration, dispatch and delivery."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        otp_factory: Callable[[], str] = generate_otp,
        code_factory: Callable[[], str] = generate_parcel_code,
    ):
        self.db = db
        self.clock = clock
        self.otp_factory = otp_factory
        self.code_factory = code_factory
        self.trip_service = TripService(db, clock)

    async def create_parcel(self, request: CreateParcelRequest) -> Parcel:
        """
        Register a parcel with a fresh code and delivery OTP.

        Raises:
            NotFoundError: If the given trip does not exist
        """
        if request.trip_id is not None:
            await self.trip_service.get_trip_by_id_or_raise(request.trip_id)

        code = self.code_factory()
        while await self.get_parcel_by_code(code):
            code = self.code_factory()

        parcel = Parcel(
            code=code,
            trip_id=request.trip_id,
            sender_name=request.sender_name,
            sender_phone=request.sender_phone,
            receiver_name=request.receiver_name,
            receiver_phone=request.receiver_phone,
            price=request.price,
            status=ParcelStatus.CREATED,
            delivery_otp=self.otp_factory(),
        )
        self.db.add(parcel)
        await self.db.commit()

        logger.info(
            "Parcel registered",
            extra={
                "parcel_id": str(parcel.id),
                "parcel_code": parcel.code,
                "trip_id": str(parcel.trip_id) if parcel.trip_id else None,
            }
        )
        return parcel

    async def mark_in_transit(self, request: MarkInTransitRequest) -> Parcel:
        """
        Load a CREATED parcel on its trip.

        Raises:
            NotFoundError: If the parcel or trip does not exist
            ValidationError: If no trip is known for the parcel
            InvalidStateTransitionError: If the parcel is not CREATED
        """
        if request.trip_id is not None:
            await self.trip_service.get_trip_by_id_or_raise(request.trip_id)

        async def mutate(parcel: Parcel, now: datetime) -> None:
            self._guard(parcel, ParcelStatus.IN_TRANSIT)
            trip_id = request.trip_id or parcel.trip_id
            if trip_id is None:
                raise ValidationError(
                    detail=f"Parcel {parcel.code} has no trip; provide trip_id",
                    violations=[{"path": "trip_id", "message": "Field required"}],
                )
            parcel.trip_id = trip_id
            parcel.status = ParcelStatus.IN_TRANSIT

        parcel = await self._update(request.code, mutate, "parcel_in_transit")
        logger.info(
            "Parcel in transit",
            extra={"parcel_code": parcel.code, "trip_id": str(parcel.trip_id)}
        )
        return parcel

    async def deliver(self, request: DeliverParcelRequest) -> Parcel:
        """
        Hand an IN_TRANSIT parcel to its receiver against the delivery OTP.

        A wrong OTP changes nothing. There is no attempt limit; mismatches are
        logged and counted.

        Raises:
            NotFoundError: If the parcel does not exist
            InvalidStateTransitionError: If the parcel is not IN_TRANSIT
            OtpMismatchError: If the OTP does not match
        """
        async def mutate(parcel: Parcel, now: datetime) -> None:
            self._guard(parcel, ParcelStatus.DELIVERED)
            if not secrets.compare_digest(parcel.delivery_otp.encode(), request.otp.encode()):
                metrics_collector.record_otp_mismatch()
                logger.warning("Parcel delivery rejected - OTP mismatch", extra={"parcel_code": parcel.code})
                raise OtpMismatchError(parcel.code)
            parcel.status = ParcelStatus.DELIVERED
            parcel.delivered_at = now
            parcel.proof_url = request.proof_url

        parcel = await self._update(request.code, mutate, "parcel_deliver")
        metrics_collector.record_parcel_delivered()
        logger.info("Parcel delivered", extra={"parcel_code": parcel.code})
        return parcel

    async def mark_failed(self, request: MarkFailedRequest) -> Parcel:
        """
        Record a failed delivery. FAILED is terminal.

        Raises:
            NotFoundError: If the parcel does not exist
            InvalidStateTransitionError: If the parcel is not IN_TRANSIT
        """
        async def mutate(parcel: Parcel, now: datetime) -> None:
            self._guard(parcel, ParcelStatus.FAILED)
            parcel.status = ParcelStatus.FAILED
            parcel.failure_reason = request.reason

        parcel = await self._update(request.code, mutate, "parcel_failed")
        logger.info("Parcel delivery failed", extra={"parcel_code": parcel.code, "reason": request.reason})
        return parcel

    async def get_parcel_by_code(self, code: str, refresh: bool = False) -> Parcel | None:
        stmt = select(Parcel).where(Parcel.code == code)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_parcel_by_code_or_raise(self, code: str, refresh: bool = False) -> Parcel:
        parcel = await self.get_parcel_by_code(code, refresh)
        if not parcel:
            raise NotFoundError(resource_type="parcel", resource_id=code)
        return parcel

    async def get_parcel_by_id(self, parcel_id: UUID) -> Parcel | None:
        result = await self.db.execute(select(Parcel).where(Parcel.id == parcel_id))
        return result.scalar_one_or_none()

    async def _update(
        self,
        code: str,
        mutate: Callable[[Parcel, datetime], Awaitable[None]],
        name: str,
    ) -> Parcel:
        async def operation() -> Parcel:
            parcel = await self.get_parcel_by_code_or_raise(code, refresh=True)
            await mutate(parcel, self.clock())
            return parcel

        return await run_atomic(
            self.db,
            operation,
            lambda: ConflictError(detail=f"Parcel {code} was modified concurrently, please retry"),
            name,
        )

    @staticmethod
    def _guard(parcel: Parcel, target: ParcelStatus) -> None:
        if target not in PARCEL_TRANSITIONS[ParcelStatus(parcel.status)]:
            logger.warning(
                "Parcel transition rejected",
                extra={"parcel_code": parcel.code, "status": parcel.status, "target": target.value}
            )
            raise InvalidStateTransitionError("parcel", parcel.code, parcel.status, target)
