import os

# Configuración de tests: debe quedar definida antes de importar la app
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "rzp_webhook_secret"
os.environ["QR_SECRET"] = "test-qr-secret"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["DB_CREATE_ALL"] = "false"

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fakeredis import aioredis as fake_aioredis

from shared.cache import redis_client as redis_module
from shared.database import connection
from shared.database.models import User, Event, EventOperator, Pass
from shared.utils.rate_limiter import limiter
from tests.support import FakeGateway


@pytest.fixture(autouse=True)
def disable_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture(autouse=True)
async def fake_redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    redis_module.redis_client = client
    yield client
    await client.flushall()
    redis_module.redis_client = None


@pytest.fixture
async def db_maker(tmp_path):
    await connection.init_db(f"sqlite:///{tmp_path / 'tickets.db'}")
    await connection.create_all()
    yield connection.async_session_maker
    await connection.close_db()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def world(db_maker):
    """
    Organizador con dos eventos, un operador delegado, un usuario ajeno
    y varios asistentes. El evento principal tiene un pase gratis (P0)
    y uno pagado de 100 INR (P1).
    """
    async with db_maker() as db:
        organizer = User(name="Organizadora")
        operator = User(name="Operador")
        outsider = User(name="Ajeno")
        attendees = [
            User(name=f"Asistente {i}", gender="female" if i % 2 == 0 else "male")
            for i in range(10)
        ]
        db.add_all([organizer, operator, outsider, *attendees])
        await db.flush()

        event = Event(
            organizer_id=organizer.id,
            title="Carrera nocturna",
            location_text="Parque central",
            guest_list_visible=True,
        )
        other_event = Event(organizer_id=organizer.id, title="Carrera matinal")
        db.add_all([event, other_event])
        await db.flush()

        free_pass = Pass(event_id=event.id, name="P0", price=Decimal("0"))
        paid_pass = Pass(event_id=event.id, name="P1", price=Decimal("100.00"))
        other_free_pass = Pass(event_id=other_event.id, name="General", price=Decimal("0"))
        db.add_all([free_pass, paid_pass, other_free_pass])
        db.add(EventOperator(event_id=event.id, user_id=operator.id))
        await db.commit()

    return SimpleNamespace(
        organizer=organizer,
        operator=operator,
        outsider=outsider,
        attendees=attendees,
        event=event,
        other_event=other_event,
        free_pass=free_pass,
        paid_pass=paid_pass,
        other_free_pass=other_free_pass,
    )
