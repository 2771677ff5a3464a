# app/models/contract.py

import uuid
from sqlalchemy import (
    Column, String, TEXT, DECIMAL, DATE, TIMESTAMP, INT, ForeignKey, Enum, CHAR, func
)
from sqlalchemy.orm import relationship
from app.core.database import Base

# --- ( M10 分期付款 ) ---
# 合約本身由訂單流程建立，這裡只關心付款計畫相關欄位
ContractStatusEnum = Enum(
    'active', 'completed', 'cancelled',
    name="contract_status_enum"
)

PaymentPlanEnum = Enum(
    'single', 'two_step', 'three_step',
    name="payment_plan_enum"
)

PaymentTypeEnum = Enum(
    'full', 'split',
    name="payment_type_enum"
)

# 目前應付款的階段 (全部付清後為 'completed')
CurrentMilestoneEnum = Enum(
    'deposit', 'interim', 'final', 'completed',
    name="current_milestone_enum"
)
# --- ( M10 結束 ) ---

class Contract(Base):
    __tablename__ = "contracts"

    contract_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # --- 關聯 ---
    requester_id = Column(CHAR(36), nullable=False, index=True) # 付款方 (旅客)
    provider_id = Column(CHAR(36), nullable=False, index=True)  # 收款方 (host，託管帳戶擁有者)

    # --- 金額 ---
    total_amount = Column(DECIMAL(12, 2), nullable=False)

    # --- 付款計畫 (由 setup_split_payment 寫入) ---
    payment_type = Column(PaymentTypeEnum, nullable=True)
    payment_plan = Column(PaymentPlanEnum, nullable=True)
    deposit_rate = Column(DECIMAL(5, 2), nullable=True)
    interim_rate = Column(DECIMAL(5, 2), nullable=True)
    final_rate = Column(DECIMAL(5, 2), nullable=True)
    deposit_amount = Column(DECIMAL(12, 2), nullable=True)
    interim_amount = Column(DECIMAL(12, 2), nullable=True) # 0 時存 NULL
    final_amount = Column(DECIMAL(12, 2), nullable=True)   # 0 時存 NULL
    deposit_due_date = Column(DATE, nullable=True)
    interim_due_date = Column(DATE, nullable=True)
    final_due_date = Column(DATE, nullable=True)
    current_milestone = Column(CurrentMilestoneEnum, nullable=True)

    # --- 狀態管理 ---
    status = Column(ContractStatusEnum, default='active', nullable=False)
    cancel_reason = Column(TEXT, nullable=True)
    cancelled_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    # --- SQLAlchemy Relationships ---

    # 1-to-Many 舊版階段 (只讀)
    stages = relationship(
        "ContractStage",
        back_populates="contract",
        order_by="ContractStage.stage_order"
    )

    # 1-to-Many 託管交易 (每個階段一筆)
    escrow_transactions = relationship(
        "EscrowTransaction",
        back_populates="contract"
    )


class ContractStage(Base):
    """
    舊版合約的付款階段。
    只有在合約沒有任何 EscrowTransaction 時才會被讀取 (付款摘要的相容路徑)。
    """
    __tablename__ = "contract_stages"

    stage_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    contract_id = Column(CHAR(36), ForeignKey("contracts.contract_id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(50), nullable=False) # 'deposit' / 'interim' / 其他一律視為 'final'
    stage_order = Column(INT, nullable=False, default=0)
    amount = Column(DECIMAL(12, 2), nullable=False)
    status = Column(String(20), default='pending') # 'paid' 代表已付

    created_at = Column(TIMESTAMP, server_default=func.now())

    contract = relationship("Contract", back_populates="stages")
