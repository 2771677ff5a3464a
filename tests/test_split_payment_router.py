from decimal import Decimal

import httpx
import pytest_asyncio

from conftest import PROVIDER_ID, list_transactions
from app.main import app
from app.core.database import get_db


@pytest_asyncio.fixture
async def client(db):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def setup_plan(client, db, contract_id, **body):
    body.setdefault("payment_plan", "three_step")
    response = await client.post(f"/split-payments/contracts/{contract_id}", json=body)
    assert response.status_code == 200, response.text
    transactions = await list_transactions(db, contract_id)
    return {tx.milestone_type: tx.transaction_id for tx in transactions}


async def test_read_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "success"


async def test_default_rates(client):
    response = await client.get("/split-payments/default-rates/two_step")
    assert response.status_code == 200
    rates = {key: Decimal(str(value)) for key, value in response.json().items()}
    assert rates == {"deposit": 30, "interim": 0, "final": 70}


async def test_setup_fills_default_rates(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    contract_id = contract.contract_id

    ids = await setup_plan(client, db, contract_id, payment_plan="two_step")
    assert set(ids) == {"deposit", "final"}

    response = await client.get(f"/split-payments/contracts/{contract_id}/summary")
    assert response.status_code == 200
    summary = response.json()
    assert [m["type"] for m in summary["milestones"]] == ["deposit", "final"]
    assert Decimal(str(summary["milestones"][1]["amount"])) == 700
    assert summary["next_payment_due"]["type"] == "deposit"


async def test_setup_errors_map_to_http_status(client, make_contract):
    response = await client.post("/split-payments/contracts/missing", json={"payment_plan": "single"})
    assert response.status_code == 404
    assert response.json()["detail"] == "Contract not found"

    contract = await make_contract()
    response = await client.post(
        f"/split-payments/contracts/{contract.contract_id}",
        json={"payment_plan": "three_step", "deposit_rate": 50, "interim_rate": 30, "final_rate": 30},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Rate sum must be 100%, got 110%"


async def test_summary_unknown_contract(client):
    response = await client.get("/split-payments/contracts/missing/summary")
    assert response.status_code == 404


async def test_pay_endpoint(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    ids = await setup_plan(client, db, contract.contract_id)

    response = await client.post(
        f"/split-payments/transactions/{ids['deposit']}/pay",
        json={"payment_id": "psp-1", "payment_method": "card", "paid_amount": 300},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["next_milestone"] == "interim"


async def test_replayed_payment_callback_is_acknowledged(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    ids = await setup_plan(client, db, contract.contract_id)
    body = {"payment_id": "psp-1", "payment_method": "card", "paid_amount": 300}
    await client.post(f"/split-payments/transactions/{ids['deposit']}/pay", json=body)

    response = await client.post(f"/split-payments/transactions/{ids['interim']}/pay", json=body)
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["error_code"] == "duplicate_payment"


async def test_same_callback_resent_to_funded_transaction_is_acknowledged(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    ids = await setup_plan(client, db, contract.contract_id)
    body = {"payment_id": "psp-1", "payment_method": "card", "paid_amount": 300}

    first = await client.post(f"/split-payments/transactions/{ids['deposit']}/pay", json=body)
    assert first.status_code == 200
    assert first.json()["success"] is True

    response = await client.post(f"/split-payments/transactions/{ids['deposit']}/pay", json=body)
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["error"] == "Invalid status: funded"
    assert response.json()["error_code"] == "duplicate_payment"


async def test_new_payment_on_funded_transaction_is_rejected(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    ids = await setup_plan(client, db, contract.contract_id)
    url = f"/split-payments/transactions/{ids['deposit']}/pay"
    await client.post(url, json={"payment_id": "psp-1", "payment_method": "card", "paid_amount": 300})

    response = await client.post(url, json={"payment_id": "psp-2", "payment_method": "card", "paid_amount": 300})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid status: funded"


async def test_amount_mismatch_is_unprocessable(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    ids = await setup_plan(client, db, contract.contract_id)

    response = await client.post(
        f"/split-payments/transactions/{ids['deposit']}/pay",
        json={"payment_id": "psp-1", "payment_method": "card", "paid_amount": 250},
    )
    assert response.status_code == 422
    assert response.json()["detail"].startswith("Amount mismatch")


async def test_release_refund_and_complete_endpoints(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    contract_id = contract.contract_id
    ids = await setup_plan(client, db, contract_id, payment_plan="single")

    response = await client.post(f"/split-payments/transactions/{ids['deposit']}/release")
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot release: status is pending"

    await client.post(
        f"/split-payments/transactions/{ids['deposit']}/pay",
        json={"payment_id": "psp-1", "payment_method": "card", "paid_amount": 1000},
    )
    response = await client.post(f"/split-payments/transactions/{ids['deposit']}/release")
    assert response.status_code == 200

    response = await client.get(f"/split-payments/escrow-accounts/{PROVIDER_ID}")
    assert response.status_code == 200
    assert Decimal(str(response.json()["withdrawable_balance"])) == 1000

    response = await client.post(f"/split-payments/contracts/{contract_id}/complete")
    assert response.status_code == 200
    assert response.json()["success"] is True


async def test_partial_and_full_refund_endpoints(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    contract_id = contract.contract_id
    ids = await setup_plan(client, db, contract_id)
    await client.post(
        f"/split-payments/transactions/{ids['deposit']}/pay",
        json={"payment_id": "psp-1", "payment_method": "card", "paid_amount": 300},
    )

    response = await client.post(
        f"/split-payments/transactions/{ids['deposit']}/partial-refund",
        json={"amount": 100, "reason": "late"},
    )
    assert response.status_code == 200
    assert response.json()["new_status"] == "partial_refund"

    response = await client.post(
        f"/split-payments/contracts/{contract_id}/complete"
    )
    assert response.status_code == 400

    response = await client.post(
        f"/split-payments/contracts/{contract_id}/full-refund", json={"reason": "cancelled"}
    )
    assert response.status_code == 200
    assert response.json()["refunded_transactions"] == [ids["deposit"]]


async def test_overdue_endpoint(client, db, make_contract):
    contract = await make_contract(total_amount="1000")
    ids = await setup_plan(client, db, contract.contract_id, deposit_due_date="2000-01-01")

    response = await client.get("/split-payments/overdue")
    assert response.status_code == 200
    assert [tx["transaction_id"] for tx in response.json()] == [ids["deposit"]]


async def test_escrow_account_not_found(client):
    response = await client.get("/split-payments/escrow-accounts/nobody")
    assert response.status_code == 404


async def test_init_models_creates_engine_tables():
    from sqlalchemy import inspect
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool
    from app.core.database import init_models

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_models(engine)
    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    await engine.dispose()

    assert {"contracts", "contract_stages", "escrow_transactions", "escrow_accounts"} <= set(tables)
