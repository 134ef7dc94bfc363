"""AI token balance: consumption and purchase credit."""

import uuid
from typing import Any

import structlog

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import InsufficientTokens, ValidationFailed
from wacrm.models import TokenBalance, TokenTransaction, TokenTransactionType
from wacrm.services.billing.checkout import TOKEN_PURCHASE_TYPE
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()


def _thousands(value: int) -> str:
    """pt-BR digit grouping: 10000 -> 10.000."""
    return f"{value:,}".replace(",", ".")


class TokenLedger:
    """Debits and credits a user's AI token balance, recording each move."""

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    async def consume(
        self,
        user_id: str,
        tokens: Any,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Debit ``tokens`` from the balance.

        Raises:
            ValidationFailed: If tokens is not a positive integer
            InsufficientTokens: If the balance cannot cover the amount
        """
        if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens <= 0:
            raise ValidationFailed("tokens must be a positive number")

        balance = await self.storage.get_token_balance(user_id)
        current = balance.balance if balance else 0
        if balance is None or current < tokens:
            logger.info("Insufficient token balance", user_id=user_id, balance=current, required=tokens)
            raise InsufficientTokens(balance=current, required=tokens)

        balance.balance = current - tokens
        balance.total_consumed += tokens
        balance.updated_at = utcnow()
        await self.storage.save_token_balance(balance)

        await self.storage.save_token_transaction(
            TokenTransaction(
                id=str(uuid.uuid4()),
                user_id=user_id,
                type=TokenTransactionType.CONSUMPTION,
                amount=-tokens,
                balance_after=balance.balance,
                description=description or "Consumo de tokens AI",
                metadata=metadata or {},
            )
        )

        logger.info("Tokens consumed", user_id=user_id, consumed=tokens, balance=balance.balance)
        return {
            "success": True,
            "consumed": tokens,
            "balance": balance.balance,
            "message": f"{_thousands(tokens)} tokens consumidos com sucesso.",
        }

    async def credit_purchase(
        self,
        user_id: str,
        tokens: int,
        package_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        transaction_id: str | None = None,
    ) -> TokenBalance:
        """Add purchased tokens, creating the balance row on first purchase."""
        if tokens <= 0:
            raise ValidationFailed("tokens must be a positive number")

        balance = await self.storage.get_token_balance(user_id) or TokenBalance(user_id=user_id)
        balance.balance += tokens
        balance.total_purchased += tokens
        balance.updated_at = utcnow()
        await self.storage.save_token_balance(balance)

        await self.storage.save_token_transaction(
            TokenTransaction(
                id=transaction_id or str(uuid.uuid4()),
                user_id=user_id,
                type=TokenTransactionType.PURCHASE,
                amount=tokens,
                balance_after=balance.balance,
                description=f"Compra de pacote de {_thousands(tokens)} tokens",
                package_id=package_id,
                metadata=metadata or {},
            )
        )

        logger.info("Tokens credited", user_id=user_id, tokens=tokens, balance=balance.balance)
        return balance

    async def handle_checkout_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """Apply a payment processor webhook event.

        Only completed checkouts tagged as token purchases move the balance.
        """
        if event.get("type") != "checkout.session.completed":
            return {"received": True}

        session = event.get("data", {}).get("object", {})
        metadata = session.get("metadata") or {}
        if metadata.get("type") != TOKEN_PURCHASE_TYPE:
            logger.info("Checkout is not a token purchase, skipping", session_id=session.get("id"))
            return {"received": True, "skipped": True}

        user_id = metadata.get("user_id")
        try:
            tokens = int(metadata.get("tokens") or 0)
        except ValueError:
            tokens = 0
        if not user_id or tokens <= 0:
            raise ValidationFailed("Missing user_id or tokens in metadata")

        # Deliveries are at-least-once; one ledger entry per checkout session
        session_id = session.get("id")
        transaction_id = f"checkout-{session_id}" if session_id else None
        if transaction_id and await self.storage.get_token_transaction(transaction_id):
            logger.info("Checkout already credited, skipping", session_id=session_id, user_id=user_id)
            return {"received": True, "duplicate": True}

        await self.credit_purchase(
            user_id,
            tokens,
            package_id=metadata.get("package_id"),
            metadata={
                "checkout_session_id": session_id,
                "payment_intent_id": session.get("payment_intent"),
                "customer_email": session.get("customer_email"),
                "amount_total": session.get("amount_total"),
                "currency": session.get("currency"),
            },
            transaction_id=transaction_id,
        )
        return {"received": True}
