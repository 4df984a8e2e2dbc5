from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from referral_market.api.dependencies.users import get_current_user_id, require_admin
from referral_market.api.errors import to_http_exception
from referral_market.api.schemas.wallet import (
    RechargeEvent,
    WalletBalanceResponse,
    WalletHoldResponse,
    WalletSummaryResponse,
    WalletTransactionResponse,
    WithdrawableBalanceResponse,
    WithdrawalCreate,
    WithdrawalResponse,
)
from referral_market.core.exceptions import MarketplaceError
from referral_market.db.dependencies import get_db_session
from referral_market.db.pagination import PaginatedResponse, PaginationParams
from referral_market.wallets.dependencies import get_wallet_ledger, get_withdrawal_desk
from referral_market.wallets.enums import HoldStatus, TransactionType
from referral_market.wallets.service import WalletLedger
from referral_market.wallets.withdrawals import PayoutDestination, WithdrawalDesk

router = APIRouter(prefix="/api/v1/wallet", tags=["wallet"])

TransactionPage = PaginatedResponse[WalletTransactionResponse]
WithdrawalPage = PaginatedResponse[WithdrawalResponse]


@router.get("/balance", response_model=WalletBalanceResponse, summary="Wallet balance")
async def get_wallet_balance(
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> WalletBalanceResponse:
    balance = await ledger.get_balance(session, current_user_id)
    return WalletBalanceResponse.model_validate(balance)


@router.get(
    "/transactions",
    response_model=TransactionPage,
    summary="Ledger entries of the current user, newest first",
)
async def list_wallet_transactions(
    pagination: PaginationParams = Depends(),
    transaction_type: TransactionType | None = Query(None, alias="type"),
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> TransactionPage:
    items, total = await ledger.get_transactions(
        session, current_user_id, pagination, transaction_type=transaction_type
    )
    return TransactionPage.build(
        [WalletTransactionResponse.model_validate(item) for item in items],
        total,
        pagination,
    )


@router.get(
    "/holds", response_model=list[WalletHoldResponse], summary="Wallet holds"
)
async def list_wallet_holds(
    hold_status: HoldStatus | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> list[WalletHoldResponse]:
    holds = await ledger.get_holds(session, current_user_id, status=hold_status)
    return [WalletHoldResponse.model_validate(hold) for hold in holds]


@router.get("/summary", response_model=WalletSummaryResponse, summary="Wallet summary")
async def get_wallet_summary(
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> WalletSummaryResponse:
    summary = await ledger.get_wallet_summary(session, current_user_id)
    return WalletSummaryResponse.model_validate(summary)


@router.post(
    "/recharges",
    response_model=WalletTransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Apply a gateway-verified recharge",
)
async def apply_wallet_recharge(
    payload: RechargeEvent,
    session: AsyncSession = Depends(get_db_session),
    _: uuid.UUID = Depends(require_admin),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> WalletTransactionResponse:
    try:
        entry = await ledger.credit_recharge(
            session,
            payload.owner_id,
            payload.amount,
            payment_reference=payload.payment_reference,
            description=payload.description,
        )
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return WalletTransactionResponse.model_validate(entry)


@router.get(
    "/withdrawable",
    response_model=WithdrawableBalanceResponse,
    summary="Referral earnings available for payout",
)
async def get_withdrawable_balance(
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    desk: WithdrawalDesk = Depends(get_withdrawal_desk),
) -> WithdrawableBalanceResponse:
    summary = await desk.get_withdrawable_balance(session, current_user_id)
    return WithdrawableBalanceResponse.model_validate(summary)


@router.post(
    "/withdrawals",
    response_model=WithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a payout of referral earnings",
)
async def request_withdrawal(
    payload: WithdrawalCreate,
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    desk: WithdrawalDesk = Depends(get_withdrawal_desk),
) -> WithdrawalResponse:
    destination = PayoutDestination(
        upi_id=payload.upi_id,
        bank_account_number=payload.bank_account_number,
        bank_ifsc=payload.bank_ifsc,
        account_holder_name=payload.account_holder_name,
    )
    try:
        withdrawal = await desk.request_withdrawal(
            session, current_user_id, payload.amount, destination
        )
        await session.commit()
    except MarketplaceError as exc:
        await session.rollback()
        raise to_http_exception(exc) from exc
    return WithdrawalResponse.model_validate(withdrawal)


@router.get(
    "/withdrawals",
    response_model=WithdrawalPage,
    summary="Withdrawals of the current user, newest first",
)
async def list_withdrawals(
    pagination: PaginationParams = Depends(),
    session: AsyncSession = Depends(get_db_session),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    desk: WithdrawalDesk = Depends(get_withdrawal_desk),
) -> WithdrawalPage:
    items, total = await desk.list_withdrawals(
        session, pagination, owner_id=current_user_id
    )
    return WithdrawalPage.build(
        [WithdrawalResponse.model_validate(item) for item in items], total, pagination
    )
