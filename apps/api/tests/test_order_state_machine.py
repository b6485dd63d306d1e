from datetime import datetime, timedelta, timezone

import pytest

from ticketsale_api.models import (
    OrderSession,
    OrderSessionStatus,
    PointsReservationState,
    WebhookEvent,
    WebhookEventStatus,
    WebhookProviderEnum,
)
from ticketsale_api.services.loyalty.points_service import ManualAdjustAction, PointsService
from ticketsale_api.services.orders.state_machine import (
    InvalidOrderTransitionError,
    OrderSessionNotFoundError,
    OrderSessionStateMachine,
    PaidTransitionOutcome,
)


TENANT = "tenant-1"
GUILD = "guild-1"
EMAIL = "fan@example.com"


def _order_session(**overrides) -> OrderSession:
    values = dict(
        tenant_id=TENANT,
        guild_id=GUILD,
        ticket_channel_id="chan-1",
        staff_user_id="staff-1",
        customer_discord_id="cust-1",
        product_id="prod-1",
        variant_id="var-1",
        status=OrderSessionStatus.PENDING_PAYMENT,
        points_reservation_state=PointsReservationState.NONE,
        checkout_token_expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    values.update(overrides)
    return OrderSession(**values)


def _webhook_event(order_session_id: str, fingerprint: str) -> WebhookEvent:
    return WebhookEvent(
        provider=WebhookProviderEnum.WOOCOMMERCE,
        tenant_id=TENANT,
        guild_id=GUILD,
        order_session_id=order_session_id,
        delivery_fingerprint=fingerprint,
        signature_valid=True,
        status=WebhookEventStatus.RECEIVED,
        payload_json={},
    )


@pytest.mark.asyncio
async def test_mark_paid_transitions_once(session_factory) -> None:
    async with session_factory() as session:
        order_session = _order_session()
        session.add(order_session)
        await session.flush()
        first = _webhook_event(order_session.id, "wc-first")
        second = _webhook_event(order_session.id, "wc-second")
        session.add_all([first, second])
        await session.flush()

        machine = OrderSessionStateMachine(session)
        paid = await machine.mark_paid(order_session_id=order_session.id, webhook_event=first, tenant_id=TENANT)
        replay = await machine.mark_paid(order_session_id=order_session.id, webhook_event=first, tenant_id=TENANT)
        another = await machine.mark_paid(order_session_id=order_session.id, webhook_event=second, tenant_id=TENANT)
        await session.commit()

    assert paid.outcome == PaidTransitionOutcome.PAID
    assert paid.first_paid
    assert paid.order_session.paid_at is not None
    assert first.status == WebhookEventStatus.PROCESSED

    assert replay.outcome == PaidTransitionOutcome.DUPLICATE
    assert not replay.first_paid

    assert another.outcome == PaidTransitionOutcome.DUPLICATE
    assert not another.first_paid
    assert second.status == WebhookEventStatus.DUPLICATE


@pytest.mark.asyncio
async def test_mark_paid_consumes_reserved_points(session_factory) -> None:
    async with session_factory() as session:
        points = PointsService(session)
        await points.manual_adjust(
            tenant_id=TENANT, guild_id=GUILD, email=EMAIL, action=ManualAdjustAction.ADD, points=8
        )
        order_session = _order_session(customer_email_normalized=EMAIL, points_reserved=3, points_discount_minor=300)
        session.add(order_session)
        await session.flush()
        await points.reserve_points_for_order(
            tenant_id=TENANT,
            guild_id=GUILD,
            email_normalized=EMAIL,
            email_display=EMAIL,
            points=3,
            order_session_id=order_session.id,
        )
        order_session.transition_reservation(PointsReservationState.RESERVED)
        event = _webhook_event(order_session.id, "wc-paid")
        session.add(event)
        await session.flush()

        transition = await OrderSessionStateMachine(session, points_service=points).mark_paid(
            order_session_id=order_session.id, webhook_event=event
        )
        await session.commit()

        balance = await points.get_balance(tenant_id=TENANT, guild_id=GUILD, email=EMAIL)

    assert transition.points_consumed == 3
    assert order_session.reservation_state == PointsReservationState.CAPTURED
    assert balance.balance_points == 5
    assert balance.reserved_points == 0


@pytest.mark.asyncio
async def test_cancel_releases_reservation(session_factory) -> None:
    async with session_factory() as session:
        points = PointsService(session)
        await points.manual_adjust(
            tenant_id=TENANT, guild_id=GUILD, email=EMAIL, action=ManualAdjustAction.ADD, points=8
        )
        order_session = _order_session(customer_email_normalized=EMAIL, points_reserved=8, points_discount_minor=800)
        session.add(order_session)
        await session.flush()
        await points.reserve_points_for_order(
            tenant_id=TENANT,
            guild_id=GUILD,
            email_normalized=EMAIL,
            email_display=EMAIL,
            points=8,
            order_session_id=order_session.id,
        )
        order_session.transition_reservation(PointsReservationState.RESERVED)
        await session.commit()

        cancelled = await OrderSessionStateMachine(session, points_service=points).cancel(
            order_session_id=order_session.id, tenant_id=TENANT
        )
        balance = await points.get_balance(tenant_id=TENANT, guild_id=GUILD, email=EMAIL)

    assert cancelled.status == OrderSessionStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.reservation_state == PointsReservationState.RELEASED
    assert cancelled.points_discount_minor == 800
    assert balance.available_points == 8


@pytest.mark.asyncio
async def test_terminal_states_reject_transitions(session_factory) -> None:
    async with session_factory() as session:
        paid = _order_session(status=OrderSessionStatus.PAID)
        cancelled = _order_session(status=OrderSessionStatus.CANCELLED)
        session.add_all([paid, cancelled])
        await session.flush()
        event = _webhook_event(cancelled.id, "wc-late")
        session.add(event)
        await session.flush()
        machine = OrderSessionStateMachine(session)

        with pytest.raises(InvalidOrderTransitionError) as excinfo:
            await machine.cancel(order_session_id=paid.id)
        assert excinfo.value.status_code == 409
        assert excinfo.value.details == {"current_status": "paid", "requested_status": "cancelled"}

        with pytest.raises(InvalidOrderTransitionError):
            await machine.mark_paid(order_session_id=cancelled.id, webhook_event=event)


@pytest.mark.asyncio
async def test_order_session_lookup_is_tenant_scoped(session_factory) -> None:
    async with session_factory() as session:
        order_session = _order_session()
        session.add(order_session)
        await session.commit()
        machine = OrderSessionStateMachine(session)

        assert (await machine.get_order_session(order_session.id, tenant_id=TENANT)).id == order_session.id
        with pytest.raises(OrderSessionNotFoundError):
            await machine.get_order_session(order_session.id, tenant_id="tenant-2")


def test_transition_table_and_checkout_expiry() -> None:
    assert OrderSessionStateMachine.can_transition(OrderSessionStatus.PENDING_PAYMENT, OrderSessionStatus.PAID)
    assert not OrderSessionStateMachine.can_transition(OrderSessionStatus.PAID, OrderSessionStatus.CANCELLED)
    assert not OrderSessionStateMachine.can_transition(OrderSessionStatus.CANCELLED, OrderSessionStatus.PAID)

    now = datetime.now(timezone.utc)
    lapsed = _order_session(checkout_token_expires_at=now - timedelta(minutes=1))
    assert OrderSessionStateMachine.is_checkout_expired(lapsed, now=now)
    assert not OrderSessionStateMachine.is_checkout_expired(_order_session(), now=now)
    paid = _order_session(status=OrderSessionStatus.PAID, checkout_token_expires_at=now - timedelta(minutes=1))
    assert not OrderSessionStateMachine.is_checkout_expired(paid, now=now)
