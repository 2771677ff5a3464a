# app/services/split_payment_service.py

from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple, Type
import logging

from app.core.config import settings
from app.models.contract import Contract, ContractStage
from app.models.escrow import EscrowTransaction, EscrowAccount
from app.repositories.contract_repo import ContractRepository
from app.repositories.escrow_repo import EscrowRepository
from app.schemas.split_payment_schema import (
    SplitPaymentConfig, DefaultRates, ConfigValidation, MilestoneAmounts,
    OperationResult, MilestonePaymentResult, PartialRefundResult, FullRefundResult,
    MilestoneInfo, NextPaymentDue, ContractPaymentSummary
)

logger = logging.getLogger(__name__)

# --- 方案預設比例 (deposit, interim, final) ---
DEFAULT_RATES = {
    'single': (Decimal("100"), Decimal("0"), Decimal("0")),
    'two_step': (Decimal("30"), Decimal("0"), Decimal("70")),
    'three_step': (Decimal("30"), Decimal("30"), Decimal("40")),
}

# 付款摘要一律依此順序排列，不依賴資料庫回傳順序
MILESTONE_ORDER = ('deposit', 'interim', 'final')

NEXT_MILESTONE = {
    'deposit': 'interim',
    'interim': 'final',
    'final': 'completed',
}

PAID_STATUSES = ('funded', 'released')
REFUNDABLE_STATUSES = ('funded', 'released', 'partial_refund')

HOST_ACCOUNT = "host"


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _round_unit(value: Decimal) -> Decimal:
    """四捨五入到整數貨幣單位"""
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def _was_released(transaction: EscrowTransaction) -> bool:
    # 部分退款後狀態會變成 partial_refund，以 released_at 判斷資金是否已撥到可提領餘額
    return transaction.status == 'released' or transaction.released_at is not None


class SplitPaymentService:
    """
    (M10) 分期付款 / 託管引擎

    管理合約的付款計畫 (訂金 / 中期款 / 尾款)：
    - 設定付款計畫並建立每個階段的託管交易
    - 處理 PSP 付款回呼 (冪等 + 金額比對)
    - 推進合約目前應付階段
    - 撥款給 host (pending -> withdrawable)
    - 部分 / 全額退款並從正確的餘額扣回

    每個公開方法都是一個完整的交易單位：成功時 commit 一次，
    任何失敗都 rollback，並回傳 success=False 的結果物件而不是丟例外。
    """
    def __init__(self, db: AsyncSession):
        self.db = db
        self.contract_repo = ContractRepository(db)
        self.escrow_repo = EscrowRepository(db)

    # ------------------------------------------------------------------
    # 設定驗證 / 金額計算 (純函式，無副作用)
    # ------------------------------------------------------------------

    def validate_config(self, config: SplitPaymentConfig) -> ConfigValidation:
        """依序檢查，回傳第一個違反的規則"""
        deposit_rate = _to_decimal(config.deposit_rate)
        interim_rate = _to_decimal(config.interim_rate)
        final_rate = _to_decimal(config.final_rate)
        plan = config.payment_plan

        total_rate = deposit_rate + interim_rate + final_rate
        if abs(total_rate - 100) > settings.AMOUNT_TOLERANCE:
            return ConfigValidation(valid=False, error=f"Rate sum must be 100%, got {total_rate}%")

        if plan == 'single' and (deposit_rate != 100 or interim_rate != 0 or final_rate != 0):
            return ConfigValidation(valid=False, error="Single payment must be 100% deposit")

        if plan == 'two_step' and interim_rate != 0:
            return ConfigValidation(valid=False, error="Two-step payment cannot have interim rate")

        if plan == 'three_step' and interim_rate <= 0:
            return ConfigValidation(valid=False, error="Three-step payment must have interim rate > 0")

        if deposit_rate < 0 or interim_rate < 0 or final_rate < 0:
            return ConfigValidation(valid=False, error="Rates cannot be negative")

        return ConfigValidation(valid=True)

    def get_default_rates(self, payment_plan: str) -> DefaultRates:
        deposit, interim, final = DEFAULT_RATES.get(payment_plan, DEFAULT_RATES['single'])
        return DefaultRates(deposit=deposit, interim=interim, final=final)

    def calculate_milestone_amounts(self, total_amount, config: SplitPaymentConfig) -> MilestoneAmounts:
        """
        訂金與中期款各自四捨五入，尾款取餘數，
        三者相加必等於 total_amount (不會有捨入誤差)
        """
        total = _to_decimal(total_amount)
        deposit_amount = _round_unit(total * _to_decimal(config.deposit_rate) / 100)
        interim_amount = _round_unit(total * _to_decimal(config.interim_rate) / 100)
        final_amount = total - deposit_amount - interim_amount

        return MilestoneAmounts(
            deposit_amount=deposit_amount,
            interim_amount=interim_amount,
            final_amount=final_amount
        )

    # ------------------------------------------------------------------
    # 付款計畫設定
    # ------------------------------------------------------------------

    async def setup_split_payment(self, contract_id: str, config: SplitPaymentConfig) -> OperationResult:
        try:
            validation = self.validate_config(config)
            if not validation.valid:
                return await self._reject(validation.error, 'validation')

            contract = await self.contract_repo.get_contract_by_id(contract_id, for_update=True)
            if not contract:
                return await self._reject("Contract not found", 'not_found')

            # 同一合約只能設定一次，否則會產生重複的託管交易
            if await self.escrow_repo.check_transactions_exist(contract_id):
                return await self._reject(
                    "Split payment already configured for this contract", 'invalid_state'
                )

            amounts = self.calculate_milestone_amounts(contract.total_amount, config)

            contract.payment_type = 'full' if config.payment_plan == 'single' else 'split'
            contract.payment_plan = config.payment_plan
            contract.deposit_rate = _to_decimal(config.deposit_rate)
            contract.interim_rate = _to_decimal(config.interim_rate)
            contract.final_rate = _to_decimal(config.final_rate)
            contract.deposit_amount = amounts.deposit_amount
            contract.interim_amount = amounts.interim_amount if amounts.interim_amount > 0 else None
            contract.final_amount = amounts.final_amount if amounts.final_amount > 0 else None
            contract.deposit_due_date = config.deposit_due_date
            contract.interim_due_date = config.interim_due_date
            contract.final_due_date = config.final_due_date
            contract.current_milestone = 'deposit'
            contract.updated_at = datetime.now()
            await self.contract_repo.update_contract(contract)

            await self._create_milestone_transactions(contract_id, config, amounts)

            await self.db.commit()
            logger.info(f"分期付款設定完成: contract={contract_id}, plan={config.payment_plan}")
            return OperationResult(success=True)
        except Exception as e:
            return await self._internal_error("setup_split_payment", e, "Failed to setup split payment")

    async def _create_milestone_transactions(
        self,
        contract_id: str,
        config: SplitPaymentConfig,
        amounts: MilestoneAmounts
    ) -> List[EscrowTransaction]:
        """金額為 0 的階段不建立交易"""
        milestones = [
            ('deposit', amounts.deposit_amount, config.deposit_due_date),
            ('interim', amounts.interim_amount, config.interim_due_date),
            ('final', amounts.final_amount, config.final_due_date),
        ]

        created = []
        for milestone_type, amount, due_date in milestones:
            if amount <= 0:
                continue
            transaction = EscrowTransaction(
                contract_id=contract_id,
                milestone_type=milestone_type,
                amount=amount,
                refunded_amount=Decimal("0"),
                outstanding_amount=amount,
                currency=settings.DEFAULT_CURRENCY,
                status='pending',
                platform_fee=_round_unit(amount * settings.PLATFORM_FEE_RATE),
                due_date=due_date,
            )
            created.append(await self.escrow_repo.create_transaction(transaction))
        return created

    # ------------------------------------------------------------------
    # 付款摘要 (唯讀)
    # ------------------------------------------------------------------

    async def get_contract_payment_summary(self, contract_id: str) -> Optional[ContractPaymentSummary]:
        try:
            contract = await self.contract_repo.get_contract_by_id(contract_id)
            if not contract:
                return None

            total_amount = _to_decimal(contract.total_amount)
            transactions = await self.escrow_repo.list_transactions_by_contract(contract_id)

            if transactions:
                milestones, paid_amount = self._summarize_escrow_transactions(transactions, total_amount)
            else:
                # 舊版合約：沒有託管交易，改讀 contract_stages
                stages = await self.contract_repo.list_stages_by_contract(contract_id)
                milestones, paid_amount = self._summarize_legacy_stages(stages, total_amount)

            pending = next((m for m in milestones if not m.is_paid), None)
            next_payment_due = None
            if pending:
                next_payment_due = NextPaymentDue(
                    type=pending.type,
                    amount=pending.amount,
                    due_date=pending.due_date
                )

            return ContractPaymentSummary(
                contract_id=contract_id,
                total_amount=total_amount,
                paid_amount=paid_amount,
                remaining_amount=total_amount - paid_amount,
                current_milestone=contract.current_milestone or 'deposit',
                milestones=milestones,
                next_payment_due=next_payment_due
            )
        except Exception as e:
            logger.error(f"get_contract_payment_summary 失敗: contract={contract_id}, {e}", exc_info=True)
            return None

    def _summarize_escrow_transactions(
        self, transactions: List[EscrowTransaction], total_amount: Decimal
    ) -> Tuple[List[MilestoneInfo], Decimal]:
        ordered = sorted(transactions, key=lambda tx: MILESTONE_ORDER.index(tx.milestone_type))

        milestones = []
        paid_amount = Decimal("0")
        for tx in ordered:
            amount = _to_decimal(tx.amount)
            is_paid = tx.status in PAID_STATUSES
            if is_paid:
                paid_amount += amount - _to_decimal(tx.refunded_amount)

            milestones.append(MilestoneInfo(
                type=tx.milestone_type,
                amount=amount,
                rate=self._calculate_rate(amount, total_amount),
                due_date=tx.due_date,
                status=tx.status or 'pending',
                is_paid=is_paid,
                escrow_transaction_id=tx.transaction_id
            ))
        return milestones, paid_amount

    def _summarize_legacy_stages(
        self, stages: List[ContractStage], total_amount: Decimal
    ) -> Tuple[List[MilestoneInfo], Decimal]:
        # 舊資料沒有到期日與退款紀錄
        milestones = []
        paid_amount = Decimal("0")
        for stage in stages:
            amount = _to_decimal(stage.amount)
            is_paid = stage.status == 'paid'
            if is_paid:
                paid_amount += amount

            milestones.append(MilestoneInfo(
                type=stage.name if stage.name in ('deposit', 'interim') else 'final',
                amount=amount,
                rate=self._calculate_rate(amount, total_amount),
                due_date=None,
                status=stage.status or 'pending',
                is_paid=is_paid
            ))
        return milestones, paid_amount

    def _calculate_rate(self, amount: Decimal, total: Decimal) -> Decimal:
        if not total:
            return Decimal("0")
        return (amount / total * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    # ------------------------------------------------------------------
    # 階段付款 (PSP 回呼)
    # ------------------------------------------------------------------

    async def process_milestone_payment(
        self,
        transaction_id: str,
        payment_id: str,
        payment_method: str,
        paid_amount
    ) -> MilestonePaymentResult:
        """
        - 冪等：同一個 payment_id 只能入帳一次
        - 金額比對：一定要與預先計算的階段金額相符 (不可略過)
        """
        result_cls = MilestonePaymentResult
        try:
            tx = await self.escrow_repo.get_transaction_by_id(transaction_id, for_update=True)
            if not tx:
                return await self._reject("Transaction not found", 'not_found', result_cls)

            if tx.status != 'pending':
                # 已入帳的交易收到同一筆 payment_id：PSP 重送，不視為錯誤
                if tx.payment_id == payment_id:
                    logger.info(f"重複的付款回呼 (已入帳): transaction={transaction_id}, payment_id={payment_id}")
                    return await self._reject(f"Invalid status: {tx.status}", 'duplicate_payment', result_cls)
                return await self._reject(f"Invalid status: {tx.status}", 'invalid_state', result_cls)

            if tx.payment_id == payment_id:
                logger.info(f"重複的付款回呼: transaction={transaction_id}, payment_id={payment_id}")
                return await self._reject(
                    "Duplicate payment: already processed with this paymentId", 'duplicate_payment', result_cls
                )

            existing = await self.escrow_repo.find_transaction_by_payment_id(
                payment_id, exclude_transaction_id=tx.transaction_id
            )
            if existing:
                logger.info(
                    f"payment_id 已被其他交易使用: payment_id={payment_id}, "
                    f"transaction={transaction_id}, used_by={existing.transaction_id}"
                )
                return await self._reject(
                    "Payment ID already used for another transaction", 'duplicate_payment', result_cls
                )

            expected_amount = _to_decimal(tx.amount)
            received_amount = _to_decimal(paid_amount)
            if abs(received_amount - expected_amount) > settings.AMOUNT_TOLERANCE:
                # (重要) 金額不符可能是串接錯誤或詐欺，獨立記錄以便告警
                logger.error(
                    f"[AMOUNT_MISMATCH] transaction={transaction_id}, payment_id={payment_id}, "
                    f"expected={expected_amount}, got={received_amount}"
                )
                return await self._reject(
                    f"Amount mismatch: expected {expected_amount}, got {received_amount}",
                    'amount_mismatch', result_cls
                )

            contract = await self.contract_repo.get_contract_by_id(tx.contract_id, for_update=True)
            if not contract:
                return await self._reject("Contract not found", 'not_found', result_cls)

            now = datetime.now()
            tx.status = 'funded'
            tx.payment_id = payment_id
            tx.payment_method = payment_method
            tx.funded_at = now
            tx.updated_at = now
            await self.escrow_repo.update_transaction(tx)

            await self._credit_pending_balance(contract.provider_id, expected_amount, tx.currency)

            next_milestone = await self._advance_milestone(contract, tx.milestone_type)

            await self.db.commit()
            logger.info(
                f"階段付款完成: contract={contract.contract_id}, milestone={tx.milestone_type}, "
                f"next={next_milestone}"
            )
            return MilestonePaymentResult(success=True, next_milestone=next_milestone)
        except Exception as e:
            return await self._internal_error(
                "process_milestone_payment", e, "Payment processing failed", result_cls
            )

    async def _advance_milestone(self, contract: Contract, completed_milestone: str) -> str:
        """
        推進合約目前應付階段
        - single: 一律 completed
        - two_step: deposit -> final (跳過 interim)
        - three_step: deposit -> interim -> final -> completed
        """
        if contract.payment_plan == 'single':
            next_milestone = 'completed'
        elif contract.payment_plan == 'two_step' and completed_milestone == 'deposit':
            next_milestone = 'final'
        else:
            next_milestone = NEXT_MILESTONE[completed_milestone]

        contract.current_milestone = next_milestone
        contract.updated_at = datetime.now()
        await self.contract_repo.update_contract(contract)
        return next_milestone

    # ------------------------------------------------------------------
    # 撥款
    # ------------------------------------------------------------------

    async def release_milestone(self, transaction_id: str) -> OperationResult:
        """服務完成後撥款：host 餘額 pending -> withdrawable"""
        try:
            tx = await self.escrow_repo.get_transaction_by_id(transaction_id, for_update=True)
            if not tx:
                return await self._reject("Transaction not found", 'not_found')

            if tx.status == 'released':
                return await self._reject("Already released: duplicate request", 'invalid_state')

            if tx.status != 'funded':
                return await self._reject(f"Cannot release: status is {tx.status}", 'invalid_state')

            contract = await self.contract_repo.get_contract_by_id(tx.contract_id)
            if not contract:
                return await self._reject("Contract not found", 'not_found')

            now = datetime.now()
            tx.status = 'released'
            tx.released_at = now
            tx.updated_at = now
            await self.escrow_repo.update_transaction(tx)

            await self._move_to_withdrawable_balance(contract.provider_id, _to_decimal(tx.amount))

            await self.db.commit()
            logger.info(f"階段撥款完成: contract={tx.contract_id}, milestone={tx.milestone_type}")
            return OperationResult(success=True)
        except Exception as e:
            return await self._internal_error("release_milestone", e, "Release failed")

    # ------------------------------------------------------------------
    # 退款
    # ------------------------------------------------------------------

    async def process_partial_refund(
        self,
        transaction_id: str,
        refund_amount,
        reason: str
    ) -> PartialRefundResult:
        """部分退款，從資金目前所在的餘額 (pending 或 withdrawable) 扣回"""
        result_cls = PartialRefundResult
        try:
            tx = await self.escrow_repo.get_transaction_by_id(transaction_id, for_update=True)
            if not tx:
                return await self._reject("Transaction not found", 'not_found', result_cls)

            if tx.status not in REFUNDABLE_STATUSES:
                return await self._reject(f"Cannot refund: status is {tx.status}", 'invalid_state', result_cls)

            refund = _to_decimal(refund_amount)
            if refund <= 0:
                return await self._reject("Refund amount must be positive", 'validation', result_cls)

            amount = _to_decimal(tx.amount)
            current_refunded = _to_decimal(tx.refunded_amount)
            total_refunded = current_refunded + refund
            if total_refunded > amount:
                return await self._reject(
                    f"Refund exceeds available amount ({amount - current_refunded})", 'validation', result_cls
                )

            contract = await self.contract_repo.get_contract_by_id(tx.contract_id)
            if not contract:
                return await self._reject("Contract not found", 'not_found', result_cls)

            outstanding = amount - total_refunded
            new_status = 'refunded' if outstanding == 0 else 'partial_refund'
            was_released = _was_released(tx)

            now = datetime.now()
            tx.refunded_amount = total_refunded
            tx.outstanding_amount = outstanding
            tx.status = new_status
            tx.refund_reason = reason
            if outstanding == 0:
                tx.refunded_at = now
            tx.updated_at = now
            await self.escrow_repo.update_transaction(tx)

            await self._deduct_host_balance(contract.provider_id, refund, was_released)

            await self.db.commit()
            logger.info(f"部分退款 {refund}: transaction={transaction_id}, status={new_status}")
            return PartialRefundResult(success=True, new_status=new_status)
        except Exception as e:
            return await self._internal_error(
                "process_partial_refund", e, "Refund processing failed", result_cls
            )

    async def process_full_refund(self, contract_id: str, reason: str) -> FullRefundResult:
        """
        全額退款並取消合約
        餘額只扣兩次 (pending 一次、withdrawable 一次)，不逐筆更新
        """
        result_cls = FullRefundResult
        try:
            contract = await self.contract_repo.get_contract_by_id(contract_id, for_update=True)
            if not contract:
                return await self._reject("Contract not found", 'not_found', result_cls)

            transactions = await self.escrow_repo.list_transactions_by_contract(
                contract_id, statuses=REFUNDABLE_STATUSES, for_update=True
            )

            refunded_ids = []
            pending_refund = Decimal("0")
            released_refund = Decimal("0")
            now = datetime.now()

            for tx in transactions:
                amount = _to_decimal(tx.amount)
                remaining = amount - _to_decimal(tx.refunded_amount)
                if remaining <= 0:
                    continue

                if _was_released(tx):
                    released_refund += remaining
                else:
                    pending_refund += remaining

                tx.refunded_amount = amount
                tx.outstanding_amount = Decimal("0")
                tx.status = 'refunded'
                tx.refund_reason = reason
                tx.refunded_at = now
                tx.updated_at = now
                await self.escrow_repo.update_transaction(tx)
                refunded_ids.append(tx.transaction_id)

            if pending_refund > 0:
                await self._deduct_host_balance(contract.provider_id, pending_refund, was_released=False)
            if released_refund > 0:
                await self._deduct_host_balance(contract.provider_id, released_refund, was_released=True)

            contract.status = 'cancelled'
            contract.cancel_reason = reason
            contract.cancelled_at = now
            contract.updated_at = now
            await self.contract_repo.update_contract(contract)

            await self.db.commit()
            logger.info(
                f"全額退款: contract={contract_id}, {len(refunded_ids)} 筆交易, "
                f"total={pending_refund + released_refund}"
            )
            return FullRefundResult(success=True, refunded_transactions=refunded_ids)
        except Exception as e:
            return await self._internal_error("process_full_refund", e, "Refund processing failed", result_cls)

    # ------------------------------------------------------------------
    # Host 託管帳戶餘額
    # ------------------------------------------------------------------

    async def get_escrow_account(self, user_id: str, account_type: str = HOST_ACCOUNT) -> Optional[EscrowAccount]:
        try:
            return await self.escrow_repo.get_account(user_id, account_type)
        except Exception as e:
            logger.error(f"get_escrow_account 失敗: user={user_id}, {e}", exc_info=True)
            return None

    async def _credit_pending_balance(self, provider_id: str, amount: Decimal, currency: str) -> EscrowAccount:
        """入帳：加到 pending_balance，沒有帳戶就建立"""
        account = await self.escrow_repo.get_account(provider_id, HOST_ACCOUNT, for_update=True)
        if account:
            account.pending_balance = _to_decimal(account.pending_balance) + amount
            account.updated_at = datetime.now()
            return await self.escrow_repo.update_account(account)

        logger.info(f"建立 host 託管帳戶: user={provider_id}")
        return await self.escrow_repo.create_account(EscrowAccount(
            user_id=provider_id,
            account_type=HOST_ACCOUNT,
            currency=currency or settings.DEFAULT_CURRENCY,
            pending_balance=amount,
            withdrawable_balance=Decimal("0"),
            kyc_status='pending',
        ))

    async def _move_to_withdrawable_balance(self, provider_id: str, amount: Decimal) -> None:
        account = await self.escrow_repo.get_account(provider_id, HOST_ACCOUNT, for_update=True)
        if not account:
            logger.warning(f"找不到 host 託管帳戶，略過餘額移轉: user={provider_id}, amount={amount}")
            return

        account.pending_balance = max(Decimal("0"), _to_decimal(account.pending_balance) - amount)
        account.withdrawable_balance = _to_decimal(account.withdrawable_balance) + amount
        account.updated_at = datetime.now()
        await self.escrow_repo.update_account(account)
        logger.info(f"餘額移轉至可提領: user={provider_id}, amount={amount}")

    async def _deduct_host_balance(self, provider_id: str, amount: Decimal, was_released: bool) -> None:
        """退款扣回，餘額最低為 0"""
        account = await self.escrow_repo.get_account(provider_id, HOST_ACCOUNT, for_update=True)
        if not account:
            logger.warning(f"找不到 host 託管帳戶，略過扣款: user={provider_id}, amount={amount}")
            return

        if was_released:
            account.withdrawable_balance = max(Decimal("0"), _to_decimal(account.withdrawable_balance) - amount)
        else:
            account.pending_balance = max(Decimal("0"), _to_decimal(account.pending_balance) - amount)
        account.updated_at = datetime.now()
        await self.escrow_repo.update_account(account)
        logger.info(f"host 餘額扣回: user={provider_id}, amount={amount}, was_released={was_released}")

    # ------------------------------------------------------------------
    # 逾期 / 完成
    # ------------------------------------------------------------------

    async def get_overdue_milestones(self, today: Optional[date] = None) -> List[EscrowTransaction]:
        """尚未付款且已過到期日的階段 (供催繳流程使用)"""
        try:
            return await self.escrow_repo.list_overdue_transactions(today or date.today())
        except Exception as e:
            logger.error(f"get_overdue_milestones 失敗: {e}", exc_info=True)
            return []

    async def check_all_milestones_complete(self, contract_id: str) -> bool:
        try:
            transactions = await self.escrow_repo.list_transactions_by_contract(contract_id)
            return all(tx.status == 'released' for tx in transactions)
        except Exception as e:
            logger.error(f"check_all_milestones_complete 失敗: contract={contract_id}, {e}", exc_info=True)
            return False

    async def complete_contract(self, contract_id: str) -> OperationResult:
        try:
            contract = await self.contract_repo.get_contract_by_id(contract_id, for_update=True)
            if not contract:
                return await self._reject("Contract not found", 'not_found')

            if not await self.check_all_milestones_complete(contract_id):
                return await self._reject("Not all milestones are released", 'invalid_state')

            now = datetime.now()
            contract.status = 'completed'
            contract.current_milestone = 'completed'
            contract.completed_at = now
            contract.updated_at = now
            await self.contract_repo.update_contract(contract)

            await self.db.commit()
            logger.info(f"合約完成: contract={contract_id}")
            return OperationResult(success=True)
        except Exception as e:
            return await self._internal_error("complete_contract", e, "Failed to complete contract")

    # ------------------------------------------------------------------
    # 結果輔助
    # ------------------------------------------------------------------

    async def _reject(
        self,
        error: str,
        error_code: str,
        result_cls: Type[OperationResult] = OperationResult
    ) -> OperationResult:
        # 放掉已取得的列鎖，確保沒有寫入外洩
        await self._rollback()
        return result_cls(success=False, error=error, error_code=error_code)

    async def _internal_error(
        self,
        operation: str,
        exc: Exception,
        error: str,
        result_cls: Type[OperationResult] = OperationResult
    ) -> OperationResult:
        logger.error(f"{operation} 失敗: {exc}", exc_info=True)
        await self._rollback()
        return result_cls(success=False, error=error, error_code='internal')

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            logger.error(f"rollback 失敗: {e}", exc_info=True)
