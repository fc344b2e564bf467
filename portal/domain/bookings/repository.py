"""Booking repository - Database operations for bookings and their status history"""

from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ...exceptions import ConflictError
from ...models import Asset, Booking, BookingStatusHistory, Service, utcnow


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_booking(db: Session, booking_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_booking_for_user(
        db: Session, booking_id: str, tenant_id: str, user_id: str
    ) -> Optional[Booking]:
        """Get a booking scoped to its owner"""
        return (
            db.query(Booking)
            .filter(
                Booking.id == booking_id,
                Booking.tenant_id == tenant_id,
                Booking.user_id == user_id,
            )
            .first()
        )

    @staticmethod
    def list_bookings(
        db: Session, tenant_id: str, user_id: str, status: Optional[str] = None
    ) -> list[Booking]:
        query = db.query(Booking).filter(Booking.tenant_id == tenant_id, Booking.user_id == user_id)
        if status:
            query = query.filter(Booking.status == status)
        return query.order_by(Booking.created_at.desc()).all()

    @staticmethod
    def get_service(db: Session, service_id: str) -> Optional[Service]:
        return db.query(Service).filter(Service.id == service_id, Service.active.is_(True)).first()

    @staticmethod
    def create_booking(
        db: Session,
        actor: str,
        note: Optional[str] = None,
        before_commit: Optional[Callable[[Booking], None]] = None,
        **booking_data,
    ) -> Booking:
        """
        Insert a booking together with its first history entry.

        ``before_commit`` runs inside the same transaction (used to stage events).
        """
        booking = Booking(**booking_data)
        try:
            db.add(booking)
            db.flush()
            db.add(
                BookingStatusHistory(
                    booking_id=booking.id, status=booking.status, actor=actor, note=note
                )
            )
            if before_commit:
                before_commit(booking)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(booking)
        return booking

    @staticmethod
    def conditional_update(
        db: Session,
        booking_id: str,
        expected_status: str,
        patch: dict,
        actor: str,
        note: Optional[str] = None,
        before_commit: Optional[Callable[[Booking], None]] = None,
        record_history: bool = True,
    ) -> Booking:
        """
        Apply ``patch`` only if the stored status still equals ``expected_status``.

        The status change, its history entry and whatever ``before_commit`` adds
        (it receives the updated row) commit together. Raises ConflictError when
        another writer changed the status first.
        """
        values = dict(patch)
        values["updated_at"] = utcnow()
        try:
            result = db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == expected_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ConflictError(booking_id, expected_status)

            if record_history:
                db.add(
                    BookingStatusHistory(
                        booking_id=booking_id,
                        status=values.get("status", expected_status),
                        actor=actor,
                        note=note,
                    )
                )
            if before_commit:
                db.flush()
                db.expire_all()
                before_commit(BookingRepository.get_booking(db, booking_id))
            db.commit()
        except ConflictError:
            raise
        except Exception:
            db.rollback()
            raise

        # Drop cached state so the caller sees the committed row
        db.expire_all()
        return BookingRepository.get_booking(db, booking_id)

    @staticmethod
    def get_history(db: Session, booking_id: str) -> list[BookingStatusHistory]:
        return (
            db.query(BookingStatusHistory)
            .filter(BookingStatusHistory.booking_id == booking_id)
            .order_by(BookingStatusHistory.id.asc())
            .all()
        )

    @staticmethod
    def create_asset(
        db: Session, before_commit: Optional[Callable[[Asset], None]] = None, **asset_data
    ) -> Asset:
        asset = Asset(**asset_data)
        try:
            db.add(asset)
            db.flush()
            if before_commit:
                before_commit(asset)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(asset)
        return asset
