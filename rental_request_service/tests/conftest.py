# Shared fixtures: an in-memory Mongo seeded with parties, and a fully wired engine
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from mongomock_motor import AsyncMongoMockClient

from rental_request_service.app.models import UserDB, UserRole, UnitDB, BuildingDB
from rental_request_service.app.service.commands.handlers import RequestLifecycleEngine
from rental_request_service.app.service.events.projectors import SyncEngine
from rental_request_service.app.service.interfaces.document_generator import AbstractDocumentGenerator, GeneratedAgreement
from rental_request_service.infrastructure.database.party_store import MongoPartyDirectory
from rental_request_service.infrastructure.database.payment_ledger_store import MongoPaymentLedger
from rental_request_service.infrastructure.database.read_models import MongoNotifier
from rental_request_service.tests.lifecycle_helpers import (
    ADMIN_ID, SECOND_ADMIN_ID, VISITOR_ID, OTHER_VISITOR_ID, OWNER_ID, STRANGER_ID, BUILDING_ID,
    LEASE_UNIT_ID, SALE_UNIT_ID, RENT_ONLY_UNIT_ID, BARE_UNIT_ID, submit, accept,
)

USERS = [
    UserDB(id=ADMIN_ID, first_name="Alice", last_name="Martin", role=UserRole.ADMIN),
    UserDB(id=SECOND_ADMIN_ID, first_name="Bruno", last_name="Leroy", role=UserRole.ADMIN),
    UserDB(id=VISITOR_ID, first_name="Chloe", last_name="Petit", role=UserRole.VISITOR, monthly_income=3000.0),
    UserDB(id=OTHER_VISITOR_ID, first_name="David", last_name="Moreau", role=UserRole.VISITOR),
    UserDB(id=OWNER_ID, first_name="Emma", last_name="Bernard", role=UserRole.OWNER),
    UserDB(id=STRANGER_ID, first_name="Farid", last_name="Haddad", role=UserRole.TENANT),
]

UNITS = [
    UnitDB(id=LEASE_UNIT_ID, unit_number="A-101", building_id=BUILDING_ID, owner_id=OWNER_ID, rent_price=1200.0),
    UnitDB(id=SALE_UNIT_ID, unit_number="A-201", building_id=BUILDING_ID, owner_id=OWNER_ID, sale_price=250000.0, rent_price=1500.0),
    UnitDB(id=RENT_ONLY_UNIT_ID, unit_number="B-102", building_id=BUILDING_ID, owner_id=OWNER_ID, sale_price=0.0, rent_price=1200.0),
    UnitDB(id=BARE_UNIT_ID, unit_number="B-305", building_id=BUILDING_ID, sale_price=0.0, rent_price=0.0),
]


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return client["rental_request_test_db"]


@pytest_asyncio.fixture
async def seeded_db(db):
    for user in USERS:
        await db.users.insert_one(user.model_dump())
    for unit in UNITS:
        await db.units.insert_one(unit.model_dump())
    await db.buildings.insert_one(BuildingDB(id=BUILDING_ID, name="Les Tilleuls", address="12 rue des Lilas", admin_id=ADMIN_ID).model_dump())
    return db


async def _fake_agreement(request, unit, building, requester, owner, kind):
    return GeneratedAgreement(
        filename=f"{kind.value}-{request.id}.pdf",
        storage_locator=f"s3://agreements/{request.id}/{kind.value}.pdf",
        kind=kind,
    )


@pytest.fixture
def document_generator():
    generator = AsyncMock(spec=AbstractDocumentGenerator)
    generator.generate_agreement.side_effect = _fake_agreement
    return generator


@pytest.fixture
def kafka_producer():
    return MagicMock()


@pytest.fixture
def party_directory(seeded_db):
    return MongoPartyDirectory(seeded_db)


@pytest.fixture
def payment_ledger(seeded_db):
    return MongoPaymentLedger(seeded_db)


@pytest_asyncio.fixture
async def sync_engine(seeded_db, party_directory, kafka_producer):
    engine = SyncEngine(seeded_db, MongoNotifier(seeded_db), party_directory, kafka_producer=kafka_producer)
    yield engine
    await engine.drain()


@pytest.fixture
def engine(seeded_db, party_directory, document_generator, payment_ledger, sync_engine):
    return RequestLifecycleEngine(
        db=seeded_db,
        party_directory=party_directory,
        document_generator=document_generator,
        payment_ledger=payment_ledger,
        sync_engine=sync_engine,
    )


@pytest_asyncio.fixture
async def accepted_lease(engine):
    request = await submit(engine)
    return await accept(engine, request.id)
