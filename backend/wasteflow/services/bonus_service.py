# Overview: Service-layer operations for bonus points; accounts, the transaction ledger and balance moves.

"""
Bonus Points

RULES:
- One account per user, opened lazily with balance 0
- earn / spend / expire carry a positive amount; the type decides the sign
- adjust carries a signed, non-zero amount
- the balance never goes below zero; an overdraw is a Conflict
- the balance moves by compare-and-swap on (balance, lifetime totals); a
  lost race is retried, never applied twice
- every move appends one BonusTransaction with the resulting balance

lifetimeEarned counts earn and positive adjust; lifetimeSpent counts spend.
"""

from __future__ import annotations

from .. import messages
from ..errors import Conflict, ValidationError
from ..models import BonusAccount, BonusTransaction
from ..models.engagement import BONUS_TRANSACTION_TYPES
from ..storage import Storage, new_id
from ..validation import BONUS_TRANSACTION_POLICY, MAX_AMOUNT, validate_payload
from . import audit_service, event_service, user_service
from wasteflow.time_utils import utcnow

SIGN = {"earn": 1, "spend": -1, "expire": -1, "adjust": 1}

PRODUCT_EVENT_FOR_TYPE = {
    "earn": "bonus.earned",
    "spend": "bonus.redeemed",
    "expire": "bonus.expired",
}

BALANCE_RETRIES = 5


def get_account(store: Storage, user_id: str) -> BonusAccount:
    """The user's account, opened on first access."""
    user_service.get_user_or_404(store, user_id)
    account = store.get_bonus_account(user_id)
    if account is None:
        account = store.open_bonus_account(BonusAccount(
            user_id=user_id,
            balance=0,
            lifetime_earned=0,
            lifetime_spent=0,
            updated_at=utcnow(),
        ))
        if account is None:
            account = store.get_bonus_account(user_id)
    return account


def _validate_amount(transaction_type: str, amount: int) -> None:
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(params={"field": "amount", "reason": "max", "max": MAX_AMOUNT})
    if transaction_type == "adjust":
        if amount == 0:
            raise ValidationError(params={"field": "amount", "reason": "non_zero"})
    elif amount <= 0:
        raise ValidationError(params={"field": "amount", "reason": "positive"})


def _move_balance(store: Storage, user_id: str, transaction_type: str, delta: int) -> BonusAccount:
    for _ in range(BALANCE_RETRIES):
        account = get_account(store, user_id)
        balance = account.balance + delta
        if balance < 0:
            raise Conflict(
                messages.BONUS_INSUFFICIENT_BALANCE,
                {"userId": user_id, "balance": account.balance, "amount": -delta},
            )
        changes = {"balance": balance, "updated_at": utcnow()}
        if delta > 0 and transaction_type in ("earn", "adjust"):
            changes["lifetime_earned"] = account.lifetime_earned + delta
        if transaction_type == "spend":
            changes["lifetime_spent"] = account.lifetime_spent - delta
        updated = store.update_bonus_account(
            user_id,
            changes,
            expected={
                "balance": account.balance,
                "lifetime_earned": account.lifetime_earned,
                "lifetime_spent": account.lifetime_spent,
            },
        )
        if updated is not None:
            return updated
    raise Conflict(messages.COMMON_CONFLICT, {"userId": user_id})


def post_transaction(store: Storage, actor, payload: dict) -> BonusTransaction:
    """Apply one ledger entry to the user's balance (bonus.manage)."""
    patch = validate_payload(model=BonusTransaction, payload=payload, policy=BONUS_TRANSACTION_POLICY, partial=False)
    user_id = patch["user_id"]
    transaction_type = patch["type"]
    amount = patch["amount"]
    _validate_amount(transaction_type, amount)

    account = _move_balance(store, user_id, transaction_type, SIGN[transaction_type] * amount)

    transaction = store.add_bonus_transaction(BonusTransaction(
        id=new_id(),
        user_id=user_id,
        type=transaction_type,
        amount=amount,
        reason=patch["reason"],
        reference_type=patch.get("reference_type"),
        reference_id=patch.get("reference_id"),
        balance_after=account.balance,
        created_by=actor.id,
        created_at=utcnow(),
    ))

    audit_service.record(
        store,
        actor=actor,
        action="CREATE_BONUS_TRANSACTION",
        entity="bonus_account",
        entity_id=user_id,
        changes=audit_service.diff_changes(
            {"balance": account.balance - SIGN[transaction_type] * amount},
            {"balance": account.balance},
        ),
        metadata={"transactionId": transaction.id, "type": transaction_type, "reason": transaction.reason},
    )

    event_type = PRODUCT_EVENT_FOR_TYPE.get(transaction_type)
    if event_type is not None:
        event_service.emit(
            store,
            event_type,
            actor=actor,
            entity_type="bonus_account",
            entity_id=user_id,
            payload={
                "userId": user_id,
                "transactionId": transaction.id,
                "amount": amount,
                "reason": transaction.reason,
                "balance": account.balance,
            },
        )
    return transaction


def list_transactions(store: Storage, user_id: str, filters: dict, page: int, per_page: int):
    """Newest first; filters: type, since, until."""
    transaction_type = filters.get("type") or None
    if transaction_type is not None and transaction_type not in BONUS_TRANSACTION_TYPES:
        raise ValidationError(params={"field": "type", "reason": "choice", "allowed": list(BONUS_TRANSACTION_TYPES)})
    return store.list_bonus_transactions(
        user_id,
        transaction_type=transaction_type,
        since=filters.get("since"),
        until=filters.get("until"),
        page=page,
        per_page=per_page,
    )
