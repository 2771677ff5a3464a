import os
import sys
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure backend package is on sys.path for imports during tests
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from app.core.database import Base
from app.models.contract import Contract, ContractStage
from app.models.escrow import EscrowTransaction, EscrowAccount
from app.repositories.contract_repo import ContractRepository
from app.repositories.escrow_repo import EscrowRepository
from app.schemas.split_payment_schema import SplitPaymentConfig
from app.services.split_payment_service import SplitPaymentService, MILESTONE_ORDER

PROVIDER_ID = "host-0000-0000-0000-000000000001"
REQUESTER_ID = "trav-0000-0000-0000-000000000001"

PLAN_RATES = {
    "single": (100, 0, 0),
    "two_step": (30, 0, 70),
    "three_step": (30, 30, 40),
}


def make_config(plan="three_step", rates=None, **due_dates):
    deposit, interim, final = rates or PLAN_RATES[plan]
    return SplitPaymentConfig(
        payment_plan=plan,
        deposit_rate=deposit,
        interim_rate=interim,
        final_rate=final,
        **due_dates
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(db):
    return SplitPaymentService(db)


@pytest.fixture
def make_contract(db):
    async def _make(total_amount="1000", provider_id=PROVIDER_ID, requester_id=REQUESTER_ID):
        contract = Contract(
            requester_id=requester_id,
            provider_id=provider_id,
            total_amount=Decimal(str(total_amount)),
            status="active",
        )
        db.add(contract)
        await db.commit()
        await db.refresh(contract)
        return contract
    return _make


@pytest.fixture
def make_split_contract(make_contract, service, db):
    """Creates a contract with a configured plan; returns (contract, {milestone: transaction})."""
    async def _make(total_amount="1000", plan="three_step", rates=None, provider_id=PROVIDER_ID, **due_dates):
        contract = await make_contract(total_amount=total_amount, provider_id=provider_id)
        result = await service.setup_split_payment(
            contract.contract_id, make_config(plan, rates, **due_dates)
        )
        assert result.success, result.error
        transactions = await list_transactions(db, contract.contract_id)
        return contract, {tx.milestone_type: tx for tx in transactions}
    return _make


@pytest.fixture
def make_stage(db):
    async def _make(contract_id, name, amount, stage_order, status="pending"):
        stage = ContractStage(
            contract_id=contract_id,
            name=name,
            amount=Decimal(str(amount)),
            stage_order=stage_order,
            status=status,
        )
        db.add(stage)
        await db.commit()
        return stage
    return _make


async def list_transactions(db, contract_id):
    transactions = await EscrowRepository(db).list_transactions_by_contract(contract_id)
    return sorted(transactions, key=lambda tx: MILESTONE_ORDER.index(tx.milestone_type))


async def get_host_account(db, user_id=PROVIDER_ID):
    return await EscrowRepository(db).get_account(user_id, "host")


async def fetch_transaction(db, transaction_id):
    return await EscrowRepository(db).get_transaction_by_id(transaction_id)


async def fetch_contract(db, contract_id):
    return await ContractRepository(db).get_contract_by_id(contract_id)


def ids_and_amounts(transactions):
    ids = {milestone: tx.transaction_id for milestone, tx in transactions.items()}
    amounts = {milestone: tx.amount for milestone, tx in transactions.items()}
    return ids, amounts
