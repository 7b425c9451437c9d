"""
Credit balance endpoints: balances, deposits and the usage log.
"""

import asyncio
from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from cognitive_profiler.api.routes.analysis import get_orchestrator
from cognitive_profiler.core import CREDIT_PACKAGES, CreditLedger, Orchestrator
from cognitive_profiler.schemas import (
    BalanceView,
    CreditBalancesResponse,
    CreditHistoryResponse,
    DepositRequest,
    DepositResponse,
)

logger = structlog.get_logger(__name__)
router = APIRouter()


def get_ledger(orchestrator: Orchestrator = Depends(get_orchestrator)) -> CreditLedger:
    return orchestrator.ledger


def package_credits(price_usd: int) -> int:
    """Credits granted by the package with the given price."""
    for package in CREDIT_PACKAGES:
        if package["price_usd"] == price_usd:
            return int(package["credits"])
    raise HTTPException(status_code=400, detail=f"No credit package priced at ${price_usd}")


@router.get("/accounts/{account_id}/credits", response_model=CreditBalancesResponse)
async def get_credits(
    account_id: str,
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditBalancesResponse:
    """Balances for every provider; providers never funded report zero."""
    balances = await asyncio.to_thread(ledger.get_balances, account_id)
    return CreditBalancesResponse(
        account_id=account_id,
        balances=[BalanceView.from_balance(b) for b in balances],
    )


@router.post("/accounts/{account_id}/credits", response_model=DepositResponse)
async def deposit_credits(
    account_id: str,
    body: DepositRequest,
    ledger: CreditLedger = Depends(get_ledger),
) -> DepositResponse:
    """
    Add credits to one provider balance.

    Either a raw ``amount`` or the price of a credit package is accepted.
    """
    if body.amount is not None:
        amount, action = body.amount, "deposit"
    else:
        amount, action = package_credits(body.package_price_usd), "purchase"

    balance_after = await asyncio.to_thread(ledger.deposit, account_id, body.provider, amount, action)

    logger.info(
        "Deposited credits",
        account_id=account_id,
        provider=body.provider.value,
        amount=amount,
        action=action,
    )
    return DepositResponse(
        account_id=account_id,
        provider=body.provider,
        deposited=amount,
        balance_after=balance_after,
    )


@router.get("/accounts/{account_id}/credits/history", response_model=CreditHistoryResponse)
async def get_credit_history(
    account_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditHistoryResponse:
    """Most recent balance mutations, newest first."""
    entries = await asyncio.to_thread(ledger.history, account_id, limit)
    return CreditHistoryResponse(account_id=account_id, entries=entries)
