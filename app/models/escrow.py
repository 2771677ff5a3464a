# app/models/escrow.py

import uuid
from sqlalchemy import (
    Column, String, TEXT, DECIMAL, DATE, TIMESTAMP, ForeignKey, Enum, CHAR,
    UniqueConstraint, func
)
from sqlalchemy.orm import relationship
from app.core.database import Base

MilestoneTypeEnum = Enum(
    'deposit', 'interim', 'final',
    name="milestone_type_enum"
)

# pending -> funded -> released
# funded / released -> partial_refund -> refunded
EscrowStatusEnum = Enum(
    'pending', 'funded', 'released', 'partial_refund', 'refunded',
    name="escrow_status_enum"
)

class EscrowTransaction(Base):
    __tablename__ = "escrow_transactions"

    transaction_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    contract_id = Column(CHAR(36), ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False, index=True)

    milestone_type = Column(MilestoneTypeEnum, nullable=False)

    # --- 金額 ---
    # (不變式) outstanding_amount == amount - refunded_amount >= 0
    amount = Column(DECIMAL(12, 2), nullable=False)
    refunded_amount = Column(DECIMAL(12, 2), nullable=False, default=0)
    outstanding_amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    platform_fee = Column(DECIMAL(12, 2), nullable=True) # 建立時計算，僅供對帳

    status = Column(EscrowStatusEnum, default='pending', nullable=False, index=True)
    due_date = Column(DATE, nullable=True)

    # --- 金流 (PSP 回呼帶入) ---
    # (關鍵) payment_id 全系統唯一，一筆付款只能入帳一次
    payment_id = Column(String(255), unique=True, nullable=True, index=True)
    payment_method = Column(String(50), nullable=True)

    funded_at = Column(TIMESTAMP, nullable=True)
    released_at = Column(TIMESTAMP, nullable=True)
    refunded_at = Column(TIMESTAMP, nullable=True)
    refund_reason = Column(TEXT, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    contract = relationship("Contract", back_populates="escrow_transactions")


class EscrowAccount(Base):
    """
    使用者的託管彙總帳戶 (host 每人一個)
    - pending_balance: 已入帳但尚未撥款
    - withdrawable_balance: 已撥款、可提領
    兩者皆不得小於 0
    """
    __tablename__ = "escrow_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "account_type", name="uq_escrow_account_user_type"),
    )

    account_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(CHAR(36), nullable=False, index=True)
    account_type = Column(String(20), nullable=False, default="host")
    currency = Column(String(3), nullable=False, default="USD")

    pending_balance = Column(DECIMAL(14, 2), nullable=False, default=0)
    withdrawable_balance = Column(DECIMAL(14, 2), nullable=False, default=0)
    kyc_status = Column(String(20), nullable=False, default="pending")

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
