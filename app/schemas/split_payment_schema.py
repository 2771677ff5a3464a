# app/schemas/split_payment_schema.py

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Literal, Optional
from datetime import date, datetime
from decimal import Decimal

PaymentPlan = Literal['single', 'two_step', 'three_step']
MilestoneType = Literal['deposit', 'interim', 'final']

# 錯誤分類，讓呼叫端不必解析錯誤字串
ErrorCode = Literal[
    'not_found', 'invalid_state', 'validation',
    'duplicate_payment', 'amount_mismatch', 'internal'
]

# --- 1. 付款計畫設定 (Input) ---
class SplitPaymentConfig(BaseModel):
    payment_plan: PaymentPlan
    deposit_rate: Decimal
    interim_rate: Decimal
    final_rate: Decimal
    deposit_due_date: Optional[date] = None
    interim_due_date: Optional[date] = None
    final_due_date: Optional[date] = None

# (API 用) 比例可省略，由 Router 依方案補上預設值
class SplitPaymentSetupRequest(BaseModel):
    payment_plan: PaymentPlan
    deposit_rate: Optional[Decimal] = None
    interim_rate: Optional[Decimal] = None
    final_rate: Optional[Decimal] = None
    deposit_due_date: Optional[date] = None
    interim_due_date: Optional[date] = None
    final_due_date: Optional[date] = None

class DefaultRates(BaseModel):
    deposit: Decimal
    interim: Decimal
    final: Decimal

class ConfigValidation(BaseModel):
    valid: bool
    error: Optional[str] = None

class MilestoneAmounts(BaseModel):
    deposit_amount: Decimal
    interim_amount: Decimal
    final_amount: Decimal

# --- 2. 付款 / 退款請求 (Input) ---
class MilestonePaymentRequest(BaseModel):
    payment_id: str = Field(..., min_length=1, max_length=255)
    payment_method: str = Field(..., max_length=50)
    paid_amount: Decimal

class PartialRefundRequest(BaseModel):
    amount: Decimal
    reason: str

class FullRefundRequest(BaseModel):
    reason: str

# --- 3. 操作結果 (Output) ---
# 所有公開方法都回傳結果物件，不丟例外
class OperationResult(BaseModel):
    success: bool
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

class MilestonePaymentResult(OperationResult):
    next_milestone: Optional[str] = None

class PartialRefundResult(OperationResult):
    new_status: Optional[str] = None

class FullRefundResult(OperationResult):
    refunded_transactions: List[str] = Field(default_factory=list)

# --- 4. 付款摘要 (Output) ---
class MilestoneInfo(BaseModel):
    type: MilestoneType
    amount: Decimal
    rate: Decimal
    due_date: Optional[date] = None
    status: str
    is_paid: bool
    escrow_transaction_id: Optional[str] = None

class NextPaymentDue(BaseModel):
    type: MilestoneType
    amount: Decimal
    due_date: Optional[date] = None

class ContractPaymentSummary(BaseModel):
    contract_id: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    current_milestone: str
    milestones: List[MilestoneInfo]
    next_payment_due: Optional[NextPaymentDue] = None

# --- 5. 資料列 (Output) ---
class EscrowTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: str
    contract_id: str
    milestone_type: MilestoneType
    amount: Decimal
    refunded_amount: Decimal
    outstanding_amount: Decimal
    currency: str
    status: str
    platform_fee: Optional[Decimal] = None
    due_date: Optional[date] = None
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    funded_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None

class EscrowAccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: str
    user_id: str
    account_type: str
    currency: str
    pending_balance: Decimal
    withdrawable_balance: Decimal
    kyc_status: str
