# app/routers/split_payment_router.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

# 匯入 M10
from app.services.split_payment_service import SplitPaymentService
from app.schemas.split_payment_schema import (
    SplitPaymentConfig, SplitPaymentSetupRequest, DefaultRates,
    MilestonePaymentRequest, PartialRefundRequest, FullRefundRequest,
    OperationResult, MilestonePaymentResult, PartialRefundResult, FullRefundResult,
    ContractPaymentSummary, EscrowTransactionOut, EscrowAccountOut
)
from app.core.database import get_db # 依賴注入：獲取 DB Session

router = APIRouter(
    prefix="/split-payments",
    tags=["Split Payments"] # API 文件分組
)

# 錯誤分類 -> HTTP 狀態碼
ERROR_STATUS_CODES = {
    'not_found': status.HTTP_404_NOT_FOUND,
    'invalid_state': status.HTTP_400_BAD_REQUEST,
    'validation': status.HTTP_400_BAD_REQUEST,
    'amount_mismatch': 422, # Unprocessable Content
    'internal': status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# 輔助函式：在路由中快速實例化 Service
def get_split_payment_service(db: AsyncSession = Depends(get_db)) -> SplitPaymentService:
    return SplitPaymentService(db)

def _raise_for_failure(result: OperationResult) -> None:
    if not result.success:
        raise HTTPException(
            ERROR_STATUS_CODES.get(result.error_code, status.HTTP_400_BAD_REQUEST),
            result.error
        )

@router.get(
    "/default-rates/{payment_plan}",
    response_model=DefaultRates,
    summary="M10 查詢方案預設比例"
)
async def api_get_default_rates(
    payment_plan: str,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    return service.get_default_rates(payment_plan)

@router.post(
    "/contracts/{contract_id}",
    response_model=OperationResult,
    summary="M10 設定合約分期付款"
)
async def api_setup_split_payment(
    contract_id: str,
    data: SplitPaymentSetupRequest,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    """
    設定付款計畫並建立各階段託管交易。
    未傳入的比例依方案預設值補上 (single 100/0/0、two_step 30/0/70、three_step 30/30/40)。
    """
    defaults = service.get_default_rates(data.payment_plan)
    config = SplitPaymentConfig(
        payment_plan=data.payment_plan,
        deposit_rate=data.deposit_rate if data.deposit_rate is not None else defaults.deposit,
        interim_rate=data.interim_rate if data.interim_rate is not None else defaults.interim,
        final_rate=data.final_rate if data.final_rate is not None else defaults.final,
        deposit_due_date=data.deposit_due_date,
        interim_due_date=data.interim_due_date,
        final_due_date=data.final_due_date,
    )
    result = await service.setup_split_payment(contract_id, config)
    _raise_for_failure(result)
    return result

@router.get(
    "/contracts/{contract_id}/summary",
    response_model=ContractPaymentSummary,
    summary="M10 合約付款摘要"
)
async def api_get_payment_summary(
    contract_id: str,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    summary = await service.get_contract_payment_summary(contract_id)
    if not summary:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Contract not found")
    return summary

@router.post(
    "/transactions/{transaction_id}/pay",
    response_model=MilestonePaymentResult,
    summary="M10 階段付款 (PSP 回呼)"
)
async def api_pay_milestone(
    transaction_id: str,
    data: MilestonePaymentRequest,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    """
    PSP 確認付款後呼叫。
    重複的 payment_id 回 200 (success=false, error_code=duplicate_payment)，
    讓 PSP 的重送視為已處理，不當作錯誤。
    """
    result = await service.process_milestone_payment(
        transaction_id, data.payment_id, data.payment_method, data.paid_amount
    )
    if result.error_code == 'duplicate_payment':
        return result
    _raise_for_failure(result)
    return result

@router.post(
    "/transactions/{transaction_id}/release",
    response_model=OperationResult,
    summary="M10 階段撥款"
)
async def api_release_milestone(
    transaction_id: str,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    result = await service.release_milestone(transaction_id)
    _raise_for_failure(result)
    return result

@router.post(
    "/transactions/{transaction_id}/partial-refund",
    response_model=PartialRefundResult,
    summary="M10 部分退款"
)
async def api_partial_refund(
    transaction_id: str,
    data: PartialRefundRequest,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    result = await service.process_partial_refund(transaction_id, data.amount, data.reason)
    _raise_for_failure(result)
    return result

@router.post(
    "/contracts/{contract_id}/full-refund",
    response_model=FullRefundResult,
    summary="M10 全額退款並取消合約"
)
async def api_full_refund(
    contract_id: str,
    data: FullRefundRequest,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    result = await service.process_full_refund(contract_id, data.reason)
    _raise_for_failure(result)
    return result

@router.post(
    "/contracts/{contract_id}/complete",
    response_model=OperationResult,
    summary="M10 完成合約 (所有階段已撥款)"
)
async def api_complete_contract(
    contract_id: str,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    result = await service.complete_contract(contract_id)
    _raise_for_failure(result)
    return result

@router.get(
    "/overdue",
    response_model=List[EscrowTransactionOut],
    summary="M10 逾期未付階段"
)
async def api_get_overdue_milestones(
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    return await service.get_overdue_milestones()

@router.get(
    "/escrow-accounts/{user_id}",
    response_model=EscrowAccountOut,
    summary="M10 查詢 host 託管帳戶"
)
async def api_get_escrow_account(
    user_id: str,
    service: SplitPaymentService = Depends(get_split_payment_service)
):
    account = await service.get_escrow_account(user_id)
    if not account:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Escrow account not found")
    return account
