# app/repositories/escrow_repo.py

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql.expression import exists
from datetime import date
from typing import List, Optional, Sequence

from app.models.escrow import EscrowTransaction, EscrowAccount


class EscrowRepository:
    """
    封裝對 'escrow_transactions' / 'escrow_accounts' 資料表的操作
    (不負責 commit，交易邊界由 Service 層決定)
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    # --- 託管交易 ---

    async def create_transaction(self, transaction: EscrowTransaction) -> EscrowTransaction:
        """
        (C) 新增一筆託管交易
        """
        self.db.add(transaction)
        await self.db.flush()
        return transaction

    async def get_transaction_by_id(
        self, transaction_id: str, for_update: bool = False
    ) -> Optional[EscrowTransaction]:
        """
        (R) 依 ID 獲取託管交易
        狀態檢查後要寫入時請用 for_update=True
        """
        stmt = select(EscrowTransaction).where(EscrowTransaction.transaction_id == transaction_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_transaction_by_payment_id(
        self, payment_id: str, exclude_transaction_id: Optional[str] = None
    ) -> Optional[EscrowTransaction]:
        """
        (R) 找出已使用此 payment_id 的交易 (冪等檢查)
        """
        stmt = select(EscrowTransaction).where(EscrowTransaction.payment_id == payment_id)
        if exclude_transaction_id:
            stmt = stmt.where(EscrowTransaction.transaction_id != exclude_transaction_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def check_transactions_exist(self, contract_id: str) -> bool:
        """
        (R) 合約是否已建立過託管交易
        """
        stmt = select(exists().where(EscrowTransaction.contract_id == contract_id))
        result = await self.db.execute(stmt)
        return bool(result.scalar())

    async def list_transactions_by_contract(
        self,
        contract_id: str,
        statuses: Optional[Sequence[str]] = None,
        for_update: bool = False
    ) -> List[EscrowTransaction]:
        """
        (R) 獲取合約的託管交易，可依狀態過濾
        """
        stmt = select(EscrowTransaction).where(EscrowTransaction.contract_id == contract_id)
        if statuses:
            stmt = stmt.where(EscrowTransaction.status.in_(list(statuses)))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def list_overdue_transactions(self, today: date) -> List[EscrowTransaction]:
        """
        (R) 尚未付款且到期日早於今天的交易 (只比較日期)
        """
        stmt = (
            select(EscrowTransaction)
            .where(
                EscrowTransaction.status == 'pending',
                EscrowTransaction.due_date.is_not(None),
                EscrowTransaction.due_date < today
            )
            .order_by(EscrowTransaction.due_date)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def update_transaction(self, transaction: EscrowTransaction) -> EscrowTransaction:
        """
        (U) 送出對交易物件的變更
        """
        await self.db.flush()
        return transaction

    # --- 託管帳戶 ---

    async def get_account(
        self, user_id: str, account_type: str = "host", for_update: bool = False
    ) -> Optional[EscrowAccount]:
        """
        (R) 依擁有者與帳戶類型獲取託管帳戶
        餘額是 read-modify-write，寫入前請用 for_update=True
        """
        stmt = select(EscrowAccount).where(
            EscrowAccount.user_id == user_id,
            EscrowAccount.account_type == account_type
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def create_account(self, account: EscrowAccount) -> EscrowAccount:
        """
        (C) 新增託管帳戶
        """
        self.db.add(account)
        await self.db.flush()
        return account

    async def update_account(self, account: EscrowAccount) -> EscrowAccount:
        """
        (U) 送出對帳戶餘額的變更
        """
        await self.db.flush()
        return account
