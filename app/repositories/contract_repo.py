# app/repositories/contract_repo.py

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import List, Optional

from app.models.contract import Contract, ContractStage


class ContractRepository:
    """
    封裝對 'contracts' / 'contract_stages' 資料表的操作
    (不負責 commit，交易邊界由 Service 層決定)
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_contract_by_id(self, contract_id: str, for_update: bool = False) -> Optional[Contract]:
        """
        (R) 透過 ID 獲取單一合約
        for_update=True 時加上列鎖 (SELECT ... FOR UPDATE)
        """
        stmt = select(Contract).where(Contract.contract_id == contract_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_stages_by_contract(self, contract_id: str) -> List[ContractStage]:
        """
        (R) 舊版合約的付款階段，依 stage_order 排序
        """
        stmt = (
            select(ContractStage)
            .where(ContractStage.contract_id == contract_id)
            .order_by(ContractStage.stage_order)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def update_contract(self, contract: Contract) -> Contract:
        """
        (U) 將對 Contract 物件的變更送出 (flush)，由呼叫端 commit
        """
        await self.db.flush()
        return contract
