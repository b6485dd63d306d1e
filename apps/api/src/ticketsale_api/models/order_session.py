"""Order session aggregate persisted for the settlement flow."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, Integer, String, func

from ticketsale_api.db.base import Base, enum_values


def new_identifier() -> str:
    return uuid4().hex


class OrderSessionStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    CANCELLED = "cancelled"


class PointsReservationState(str, Enum):
    NONE = "none"
    RESERVED = "reserved"
    CAPTURED = "captured"
    RELEASED = "released"


_RESERVATION_TRANSITIONS: dict[PointsReservationState, frozenset[PointsReservationState]] = {
    PointsReservationState.NONE: frozenset({PointsReservationState.RESERVED}),
    PointsReservationState.RESERVED: frozenset({PointsReservationState.CAPTURED, PointsReservationState.RELEASED}),
    PointsReservationState.CAPTURED: frozenset(),
    PointsReservationState.RELEASED: frozenset(),
}


class InvalidReservationTransition(ValueError):
    """Raised when a points reservation is moved through an illegal transition."""

    def __init__(self, current: PointsReservationState, requested: PointsReservationState) -> None:
        super().__init__(f"Cannot move points reservation from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class OrderSession(Base):
    __tablename__ = "order_sessions"

    id = Column(String(32), primary_key=True, default=new_identifier)
    tenant_id = Column(String(32), nullable=False, index=True)
    guild_id = Column(String(32), nullable=False)
    ticket_channel_id = Column(String(32), nullable=False)
    staff_user_id = Column(String(32), nullable=False)
    customer_discord_id = Column(String(32), nullable=False)
    product_id = Column(String(32), nullable=False)
    variant_id = Column(String(32), nullable=False)
    basket_items = Column(JSON, nullable=False, default=list)
    coupon_code = Column(String, nullable=True)
    coupon_discount_minor = Column(Integer, nullable=False, default=0)
    customer_email_normalized = Column(String, nullable=True)
    points_reserved = Column(Integer, nullable=False, default=0)
    points_discount_minor = Column(Integer, nullable=False, default=0)
    points_reservation_state = Column(
        SqlEnum(PointsReservationState, name="points_reservation_state_enum", values_callable=enum_values),
        nullable=False,
        default=PointsReservationState.NONE,
        server_default=PointsReservationState.NONE.value,
    )
    points_config_snapshot = Column(JSON, nullable=False, default=dict)
    referral_reward_minor_snapshot = Column(Integer, nullable=False, default=0)
    tip_minor = Column(Integer, nullable=False, default=0)
    subtotal_minor = Column(Integer, nullable=False, default=0)
    total_minor = Column(Integer, nullable=False, default=0)
    status = Column(
        SqlEnum(OrderSessionStatus, name="order_session_status_enum", values_callable=enum_values),
        nullable=False,
        default=OrderSessionStatus.PENDING_PAYMENT,
        server_default=OrderSessionStatus.PENDING_PAYMENT.value,
    )
    answers = Column(JSON, nullable=False, default=dict)
    checkout_url = Column(String, nullable=True)
    checkout_token_expires_at = Column(DateTime(timezone=True), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def reservation_state(self) -> PointsReservationState:
        return PointsReservationState(self.points_reservation_state or PointsReservationState.NONE)

    def transition_reservation(self, target: PointsReservationState) -> None:
        current = self.reservation_state
        if target not in _RESERVATION_TRANSITIONS[current]:
            raise InvalidReservationTransition(current, target)
        self.points_reservation_state = target
