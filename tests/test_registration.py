"""Tests del registro: pase gratis, pase pagado, idempotencia y cupos"""
import asyncio
import re
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from shared.database.models import (
    Registration, Ticket, Pass, PaymentOrder, User, Event,
    REGISTRATION_CONFIRMED, REGISTRATION_PENDING_PAYMENT, REGISTRATION_CANCELLED,
    ORDER_CREATED, ORDER_FAILED,
)
from shared.exceptions import (
    EventNotFound, PassNotFound, PolicyViolation, CapacityExceeded,
    Forbidden, IntentNotFound, PaymentGatewayError,
)
from app.core.config import settings
from services.registration.services.registration_service import RegistrationService
from tests.support import SlowGateway


async def register(db_maker, gateway, event_id, attendee_id, **kwargs):
    async with db_maker() as db:
        return await RegistrationService(gateway).register(db, event_id, attendee_id, **kwargs)


async def count(db_maker, model, *where):
    async with db_maker() as db:
        stmt = select(func.count()).select_from(model)
        if where:
            stmt = stmt.where(*where)
        return (await db.execute(stmt)).scalar_one()


async def test_free_pass_issues_ticket_immediately(db_maker, gateway, world):
    attendee = world.attendees[0]
    result = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.free_pass.id)

    ticket = result["ticket"]
    assert result["already_registered"] is False
    assert result["payment_order"] is None
    assert result["registration"].status == REGISTRATION_CONFIRMED
    assert ticket.checked_in is False
    assert ticket.checked_in_at is None
    assert ticket.checked_in_via is None
    assert re.fullmatch(r"[0-9A-F]{4}-00001", ticket.ticket_number)
    assert re.fullmatch(r"[0-9a-f]{64}", ticket.scan_code)
    assert gateway.orders == []


async def test_ticket_numbers_are_sequential_per_event(db_maker, gateway, world):
    first = await register(db_maker, gateway, world.event.id, world.attendees[0].id, pass_id=world.free_pass.id)
    second = await register(db_maker, gateway, world.event.id, world.attendees[2].id, pass_id=world.free_pass.id)

    assert first["ticket"].ticket_number.endswith("-00001")
    assert second["ticket"].ticket_number.endswith("-00002")
    assert first["ticket"].scan_code != second["ticket"].scan_code


async def test_repeated_registration_returns_existing_ticket(db_maker, gateway, world):
    attendee = world.attendees[0]
    first = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.free_pass.id)
    second = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.free_pass.id)

    assert second["already_registered"] is True
    assert second["ticket"].id == first["ticket"].id
    assert await count(db_maker, Ticket) == 1


async def test_concurrent_registrations_mint_one_ticket(db_maker, gateway, world):
    """Doble click masivo: N registros simultáneos del mismo asistente"""
    attendee = world.attendees[0]
    results = await asyncio.gather(*[
        register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.free_pass.id)
        for _ in range(8)
    ])

    ticket_ids = {r["ticket"].id for r in results}
    assert len(ticket_ids) == 1
    assert sum(1 for r in results if not r["already_registered"]) == 1
    assert await count(db_maker, Ticket) == 1
    assert await count(db_maker, Registration) == 1


async def test_paid_pass_opens_order_without_ticket(db_maker, gateway, world):
    attendee = world.attendees[0]
    result = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)

    order = result["payment_order"]
    assert result["ticket"] is None
    assert result["registration"].status == REGISTRATION_PENDING_PAYMENT
    assert order.status == ORDER_CREATED
    assert order.amount == Decimal("100.00")
    assert order.currency == "INR"
    assert gateway.orders[0]["amount"] == 10000
    assert await count(db_maker, Ticket) == 0


async def test_repeated_paid_registration_returns_open_order(db_maker, gateway, world):
    attendee = world.attendees[0]
    first = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)
    second = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)

    assert second["already_registered"] is True
    assert second["payment_order"].order_ref == first["payment_order"].order_ref
    assert len(gateway.orders) == 1


async def test_unknown_event(db_maker, gateway, world):
    with pytest.raises(EventNotFound):
        await register(db_maker, gateway, world.outsider.id, world.attendees[0].id)


async def test_pass_from_another_event_is_rejected(db_maker, gateway, world):
    with pytest.raises(PassNotFound):
        await register(
            db_maker, gateway, world.event.id, world.attendees[0].id,
            pass_id=world.other_free_pass.id
        )
    assert await count(db_maker, Registration) == 0


async def test_pass_required_when_event_has_passes(db_maker, gateway, world):
    with pytest.raises(PassNotFound):
        await register(db_maker, gateway, world.event.id, world.attendees[0].id)


async def test_event_without_passes_registers_free(db_maker, gateway, world):
    async with db_maker() as db:
        event = Event(organizer_id=world.organizer.id, title="Meetup sin pases")
        db.add(event)
        await db.commit()

    result = await register(db_maker, gateway, event.id, world.attendees[0].id)
    assert result["registration"].pass_id is None
    assert result["ticket"] is not None


class TestWomenOnly:

    @pytest.fixture
    async def women_only_event(self, db_maker, world):
        async with db_maker() as db:
            event = Event(organizer_id=world.organizer.id, title="Solo mujeres", is_women_only=True)
            db.add(event)
            await db.flush()
            ticket_pass = Pass(event_id=event.id, name="General", price=Decimal("0"), capacity=5)
            db.add(ticket_pass)
            await db.commit()
        return event, ticket_pass

    async def test_male_attendee_rejected_without_writing_state(self, db_maker, gateway, world, women_only_event):
        event, ticket_pass = women_only_event
        male = world.attendees[1]

        with pytest.raises(PolicyViolation):
            await register(db_maker, gateway, event.id, male.id, pass_id=ticket_pass.id)

        assert await count(db_maker, Registration, Registration.event_id == event.id) == 0
        async with db_maker() as db:
            refreshed = await db.get(Pass, ticket_pass.id)
            assert refreshed.reserved_count == 0

    async def test_gender_is_required(self, db_maker, gateway, world, women_only_event):
        event, ticket_pass = women_only_event
        async with db_maker() as db:
            unknown = User(name="Sin género")
            db.add(unknown)
            await db.commit()

        with pytest.raises(PolicyViolation):
            await register(db_maker, gateway, event.id, unknown.id, pass_id=ticket_pass.id)

        result = await register(db_maker, gateway, event.id, unknown.id, pass_id=ticket_pass.id, gender="Female")
        assert result["ticket"] is not None

    async def test_female_attendee_registers(self, db_maker, gateway, world, women_only_event):
        event, ticket_pass = women_only_event
        result = await register(db_maker, gateway, event.id, world.attendees[0].id, pass_id=ticket_pass.id)
        assert result["registration"].status == REGISTRATION_CONFIRMED


class TestCapacity:

    @pytest.fixture
    async def limited_pass(self, db_maker, world):
        async with db_maker() as db:
            ticket_pass = Pass(event_id=world.event.id, name="Early bird", price=Decimal("0"), capacity=1)
            db.add(ticket_pass)
            await db.commit()
        return ticket_pass

    async def test_capacity_exceeded(self, db_maker, gateway, world, limited_pass):
        await register(db_maker, gateway, world.event.id, world.attendees[0].id, pass_id=limited_pass.id)

        with pytest.raises(CapacityExceeded):
            await register(db_maker, gateway, world.event.id, world.attendees[2].id, pass_id=limited_pass.id)

        assert await count(db_maker, Registration, Registration.attendee_id == world.attendees[2].id) == 0

    async def test_concurrent_registrations_do_not_oversell(self, db_maker, gateway, world, limited_pass):
        outcomes = await asyncio.gather(*[
            register(db_maker, gateway, world.event.id, attendee.id, pass_id=limited_pass.id)
            for attendee in world.attendees[:6]
        ], return_exceptions=True)

        successes = [o for o in outcomes if isinstance(o, dict)]
        rejected = [o for o in outcomes if isinstance(o, CapacityExceeded)]
        assert len(successes) == 1
        assert len(rejected) == 5

        async with db_maker() as db:
            refreshed = await db.get(Pass, limited_pass.id)
            assert refreshed.reserved_count == 1
        assert await count(db_maker, Ticket, Ticket.pass_id == limited_pass.id) == 1


class TestCancel:

    async def test_cancel_pending_releases_capacity(self, db_maker, gateway, world):
        attendee = world.attendees[0]
        result = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)
        registration_id = result["registration"].id

        async with db_maker() as db:
            cancelled = await RegistrationService(gateway).cancel(db, registration_id, attendee.id)
        assert cancelled.status == REGISTRATION_CANCELLED

        async with db_maker() as db:
            assert (await db.get(Pass, world.paid_pass.id)).reserved_count == 0
            order = (await db.execute(select(PaymentOrder))).scalar_one()
            assert order.status == ORDER_FAILED

    async def test_register_again_after_cancel_reuses_row(self, db_maker, gateway, world):
        attendee = world.attendees[0]
        first = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)
        async with db_maker() as db:
            await RegistrationService(gateway).cancel(db, first["registration"].id, attendee.id)

        second = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.free_pass.id)

        assert second["registration"].id == first["registration"].id
        assert second["registration"].status == REGISTRATION_CONFIRMED
        assert second["ticket"] is not None
        assert await count(db_maker, Registration) == 1

    async def test_cancel_is_idempotent(self, db_maker, gateway, world):
        attendee = world.attendees[0]
        result = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)
        service = RegistrationService(gateway)

        async with db_maker() as db:
            await service.cancel(db, result["registration"].id, attendee.id)
        async with db_maker() as db:
            again = await service.cancel(db, result["registration"].id, attendee.id)

        assert again.status == REGISTRATION_CANCELLED
        async with db_maker() as db:
            assert (await db.get(Pass, world.paid_pass.id)).reserved_count == 0

    async def test_only_owner_can_cancel(self, db_maker, gateway, world):
        result = await register(db_maker, gateway, world.event.id, world.attendees[0].id, pass_id=world.paid_pass.id)

        with pytest.raises(Forbidden):
            async with db_maker() as db:
                await RegistrationService(gateway).cancel(db, result["registration"].id, world.outsider.id)

    async def test_confirmed_registration_cannot_be_cancelled(self, db_maker, gateway, world):
        attendee = world.attendees[0]
        result = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.free_pass.id)

        with pytest.raises(PolicyViolation):
            async with db_maker() as db:
                await RegistrationService(gateway).cancel(db, result["registration"].id, attendee.id)


class TestIntents:

    async def test_replay_registers_once(self, db_maker, gateway, world):
        service = RegistrationService(gateway)
        intent = await service.create_intent(world.event.id, world.free_pass.id)
        attendee = world.attendees[0]

        async with db_maker() as db:
            result = await service.replay_intent(db, intent["intent_id"], attendee.id)
        assert result["ticket"].attendee_id == attendee.id

        with pytest.raises(IntentNotFound):
            async with db_maker() as db:
                await service.replay_intent(db, intent["intent_id"], attendee.id)

    async def test_intent_expires(self, db_maker, gateway, world, fake_redis):
        service = RegistrationService(gateway)
        intent = await service.create_intent(world.event.id, world.free_pass.id)

        ttl = await fake_redis.ttl(f"registration:intent:{intent['intent_id']}")
        assert 0 < ttl <= 900

        await fake_redis.delete(f"registration:intent:{intent['intent_id']}")
        with pytest.raises(IntentNotFound):
            async with db_maker() as db:
                await service.replay_intent(db, intent["intent_id"], world.attendees[0].id)


async def test_gateway_failure_keeps_registration_pending(db_maker, gateway, world, monkeypatch):
    original = gateway.create_order

    async def unavailable(registration_id, amount, currency):
        raise PaymentGatewayError()

    monkeypatch.setattr(gateway, "create_order", unavailable)
    with pytest.raises(PaymentGatewayError):
        await register(db_maker, gateway, world.event.id, world.attendees[0].id, pass_id=world.paid_pass.id)

    async with db_maker() as db:
        registration = (await db.execute(select(Registration))).scalar_one()
        assert registration.status == REGISTRATION_PENDING_PAYMENT

    monkeypatch.setattr(gateway, "create_order", original)
    retried = await register(db_maker, gateway, world.event.id, world.attendees[0].id, pass_id=world.paid_pass.id)
    assert retried["already_registered"] is True
    assert retried["payment_order"].order_ref == gateway.orders[0]["id"]
    assert await count(db_maker, PaymentOrder, PaymentOrder.status == ORDER_FAILED) == 1


class StaleReadRegistrationService(RegistrationService):
    """La primera lectura no ve el registro que otra solicitud ya escribió"""

    def __init__(self, gateway):
        super().__init__(gateway)
        self.stale_reads = 1

    async def _get_registration(self, db, event_id, attendee_id):
        if self.stale_reads:
            self.stale_reads -= 1
            return None
        return await RegistrationService._get_registration(db, event_id, attendee_id)


class TestPaidDoubleSubmit:

    async def test_concurrent_submits_open_one_order(self, db_maker, world):
        gateway = SlowGateway(delay=0.2)
        attendee = world.attendees[0]

        results = await asyncio.gather(*[
            register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)
            for _ in range(3)
        ])

        assert len(gateway.orders) == 1
        assert {r["payment_order"].order_ref for r in results} == {gateway.orders[0]["id"]}
        assert sum(1 for r in results if not r["already_registered"]) == 1
        assert await count(db_maker, PaymentOrder) == 1
        assert await count(db_maker, Registration) == 1

    async def test_abandoned_reservation_is_replaced(self, db_maker, gateway, world, monkeypatch):
        monkeypatch.setattr(settings, "PAYMENT_ORDER_WAIT_SECONDS", 0.1)
        attendee = world.attendees[0]
        async with db_maker() as db:
            registration = Registration(
                event_id=world.event.id,
                attendee_id=attendee.id,
                pass_id=world.paid_pass.id,
                status=REGISTRATION_PENDING_PAYMENT,
                price_paid=Decimal("100.00"),
            )
            db.add(registration)
            await db.flush()
            abandoned = PaymentOrder(
                registration_id=registration.id, amount=Decimal("100.00"), currency="INR", status=ORDER_CREATED
            )
            db.add(abandoned)
            await db.commit()

        result = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)

        assert result["already_registered"] is True
        assert result["payment_order"].order_ref == gateway.orders[0]["id"]
        async with db_maker() as db:
            assert (await db.get(PaymentOrder, abandoned.id)).status == ORDER_FAILED

    async def test_cancelled_winner_is_reused(self, db_maker, gateway, world):
        attendee = world.attendees[0]
        first = await register(db_maker, gateway, world.event.id, attendee.id, pass_id=world.paid_pass.id)
        async with db_maker() as db:
            await RegistrationService(gateway).cancel(db, first["registration"].id, attendee.id)

        async with db_maker() as db:
            result = await StaleReadRegistrationService(gateway).register(
                db, world.event.id, attendee.id, pass_id=world.paid_pass.id
            )

        assert result["registration"].id == first["registration"].id
        assert result["registration"].status == REGISTRATION_PENDING_PAYMENT
        assert len(gateway.orders) == 2
        assert result["payment_order"].order_ref == gateway.orders[1]["id"]
        assert await count(db_maker, PaymentOrder, PaymentOrder.status == ORDER_CREATED) == 1
        assert await count(db_maker, Registration) == 1
        async with db_maker() as db:
            assert (await db.get(Pass, world.paid_pass.id)).reserved_count == 1
