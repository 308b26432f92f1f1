"""Quote state store — the only shared mutable resource in the pipeline.

Every operation opens its own short transaction. Status changes are single
compare-and-set UPDATEs (``WHERE id = :id AND status IN (:allowed_from)``);
nothing reads a status and then writes one, and no transaction is held
across a gateway or email call. A transition that is already reflected in
the row simply matches zero rows and returns False.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quotepay.calculators.totals import line_total, to_money
from quotepay.errors import InvalidTransition, QuoteNotFound
from quotepay.events.bus import emit
from quotepay.models.base import utcnow
from quotepay.models.checkout import CheckoutSession
from quotepay.models.email_attempt import EmailAttempt
from quotepay.models.enums import CheckoutSessionStatus, PaymentMode, QuoteStatus
from quotepay.models.quote import Quote, QuoteItem
from quotepay.quotes.states import EDITABLE, TRANSITIONS, Transition, payment_transition
from quotepay.schemas.events import EventType, SystemEvent
from quotepay.schemas.quotes import ItemInput

logger = logging.getLogger(__name__)

_POLICY_FIELDS = ("deposit_pct", "tax_pct", "gratuity_pct", "total_override")


def generate_quote_number(now: datetime | None = None) -> str:
    """Human-facing quote number, e.g. ``Q-2026-3FA9C1``."""
    year = (now or utcnow()).year
    return f"Q-{year}-{secrets.token_hex(3).upper()}"


class QuoteStore:
    """Persistence and state transitions for quotes, sessions and email attempts."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ── Reads ────────────────────────────────────────────────────────

    async def get_quote(self, quote_id: uuid.UUID) -> Quote | None:
        """Quote with its inquiry and items loaded."""
        async with self._session_factory() as db:
            result = await db.execute(select(Quote).where(Quote.id == quote_id))
            return result.unique().scalar_one_or_none()

    async def get_quote_by_number(self, quote_number: str) -> Quote | None:
        async with self._session_factory() as db:
            result = await db.execute(select(Quote).where(Quote.quote_number == quote_number))
            return result.unique().scalar_one_or_none()

    async def require_quote(self, quote_id: uuid.UUID) -> Quote:
        quote = await self.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFound(quote_id)
        return quote

    # ── Authoring (DRAFT only) ───────────────────────────────────────

    async def create_quote(
        self,
        inquiry_id: uuid.UUID,
        items: Sequence[ItemInput],
        *,
        quote_number: str | None = None,
        deposit_pct: Decimal | None = None,
        tax_pct: Decimal | None = None,
        gratuity_pct: Decimal | None = None,
        total_override: Decimal | None = None,
        valid_until: datetime | None = None,
        terms: str | None = None,
        notes: str | None = None,
        created_by: str | None = None,
    ) -> Quote:
        """Create a DRAFT quote with its items and cached subtotal."""
        _validate_policy(
            deposit_pct=deposit_pct,
            tax_pct=tax_pct,
            gratuity_pct=gratuity_pct,
            total_override=total_override,
        )
        rows = _build_items(items)
        quote = Quote(
            id=uuid.uuid4(),
            quote_number=quote_number or generate_quote_number(),
            inquiry_id=inquiry_id,
            status=QuoteStatus.DRAFT.value,
            deposit_pct=deposit_pct,
            tax_pct=tax_pct,
            gratuity_pct=gratuity_pct,
            total_override=total_override,
            subtotal=_items_subtotal(rows),
            valid_until=valid_until,
            terms=terms,
            notes=notes,
            created_by=created_by,
            items=rows,
        )
        async with self._session_factory() as db:
            db.add(quote)
            await db.commit()
            quote_id = quote.id

        logger.info("Created quote %s (%s) for inquiry %s", quote.quote_number, quote_id, inquiry_id)
        return await self.require_quote(quote_id)

    async def replace_items(self, quote_id: uuid.UUID, items: Sequence[ItemInput]) -> Quote:
        """Replace every line item and rewrite the cached subtotal.

        The guarded UPDATE takes the row lock first, so a concurrent status
        transition cannot interleave with the item rewrite.
        """
        rows = _build_items(items)
        async with self._session_factory() as db:
            result = await db.execute(
                update(Quote)
                .where(Quote.id == quote_id, Quote.status.in_(_values(EDITABLE)))
                .values(subtotal=_items_subtotal(rows))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                await self._raise_not_editable(quote_id, "change items")
            await db.execute(delete(QuoteItem).where(QuoteItem.quote_id == quote_id))
            for row in rows:
                row.quote_id = quote_id
                db.add(row)
            await db.commit()

        logger.info("Replaced items on quote %s (%d items)", quote_id, len(rows))
        return await self.require_quote(quote_id)

    async def update_policy(self, quote_id: uuid.UUID, **changes: Decimal | None) -> Quote:
        """Set deposit/tax/gratuity percentages or the total override (DRAFT only).

        Passing ``None`` for a percentage restores the configured default.
        """
        unknown = set(changes) - set(_POLICY_FIELDS)
        if unknown:
            msg = f"Unknown policy fields: {sorted(unknown)}"
            raise ValueError(msg)
        _validate_policy(**changes)
        if not changes:
            return await self.require_quote(quote_id)

        async with self._session_factory() as db:
            result = await db.execute(
                update(Quote)
                .where(Quote.id == quote_id, Quote.status.in_(_values(EDITABLE)))
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                await self._raise_not_editable(quote_id, "change pricing policy")
            await db.commit()

        return await self.require_quote(quote_id)

    # ── Checkout sessions ────────────────────────────────────────────

    async def attach_payment_session(
        self, quote_id: uuid.UUID, session_id: str, mode: PaymentMode, url: str
    ) -> None:
        """Point the quote at its current payment link. Never touches status."""
        async with self._session_factory() as db:
            await db.execute(
                update(Quote)
                .where(Quote.id == quote_id)
                .values(payment_session_id=session_id, payment_mode=mode.value, checkout_url=url)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def find_open_checkout_session(
        self,
        quote_id: uuid.UUID,
        mode: PaymentMode,
        amount_cents: int,
        now: datetime | None = None,
    ) -> CheckoutSession | None:
        """Most recent open, unexpired session for (quote, mode, amount)."""
        now = now or utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(CheckoutSession)
                .where(
                    CheckoutSession.quote_id == quote_id,
                    CheckoutSession.mode == mode.value,
                    CheckoutSession.amount_cents == amount_cents,
                    CheckoutSession.status == CheckoutSessionStatus.OPEN.value,
                    or_(CheckoutSession.expires_at.is_(None), CheckoutSession.expires_at > now),
                )
                .order_by(CheckoutSession.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def record_checkout_session(
        self,
        *,
        quote_id: uuid.UUID,
        session_id: str,
        mode: PaymentMode,
        amount_cents: int,
        customer_email: str,
        url: str,
        idempotency_key: str,
        expires_at: datetime | None,
    ) -> None:
        """Insert the session row; a replayed gateway response is a no-op."""
        stmt = (
            insert(CheckoutSession)
            .values(
                session_id=session_id,
                quote_id=quote_id,
                mode=mode.value,
                amount_cents=amount_cents,
                customer_email=customer_email,
                url=url,
                idempotency_key=idempotency_key,
                expires_at=expires_at,
                status=CheckoutSessionStatus.OPEN.value,
            )
            .on_conflict_do_nothing(index_elements=[CheckoutSession.session_id])
        )
        async with self._session_factory() as db:
            await db.execute(stmt)
            await db.commit()

    async def mark_checkout_session_completed(self, session_id: str) -> bool:
        return await self._set_session_status(session_id, CheckoutSessionStatus.COMPLETED)

    async def mark_checkout_session_expired(self, session_id: str) -> bool:
        return await self._set_session_status(session_id, CheckoutSessionStatus.EXPIRED)

    async def _set_session_status(self, session_id: str, status: CheckoutSessionStatus) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(CheckoutSession)
                .where(
                    CheckoutSession.session_id == session_id,
                    CheckoutSession.status == CheckoutSessionStatus.OPEN.value,
                )
                .values(status=status.value)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    # ── Status transitions ───────────────────────────────────────────

    async def mark_sent(self, quote_id: uuid.UUID, *, actor_id: str | None = None) -> bool:
        """DRAFT → SENT after a confirmed send. Later states are left alone."""
        return await self._transition(
            quote_id, TRANSITIONS["send"], actor_id=actor_id, actor_role="operator"
        )

    async def apply_payment(
        self, quote_id: uuid.UUID, mode: PaymentMode, reference: str
    ) -> bool:
        """Completed checkout → DEPOSIT_PAID or PAID, recording the causing session id."""
        return await self._transition(
            quote_id,
            payment_transition(mode),
            values={"payment_reference": reference},
            actor_id="gateway",
            actor_role="gateway",
            data={"mode": mode.value, "reference": reference},
        )

    async def mark_refunded(self, quote_id: uuid.UUID, charge_id: str) -> bool:
        return await self._transition(
            quote_id,
            TRANSITIONS["refund"],
            values={"refund_charge_id": charge_id},
            actor_id="gateway",
            actor_role="gateway",
            data={"charge_id": charge_id},
        )

    async def cancel(self, quote_id: uuid.UUID, *, actor_id: str | None = None) -> bool:
        """Operator cancel before any payment.

        Returns False if already CANCELED; raises InvalidTransition for any
        other status outside DRAFT/SENT.
        """
        changed = await self._transition(
            quote_id, TRANSITIONS["cancel"], actor_id=actor_id, actor_role="operator"
        )
        if changed:
            return True
        quote = await self.require_quote(quote_id)
        if quote.status == QuoteStatus.CANCELED.value:
            return False
        raise InvalidTransition(quote_id, quote.status, "be canceled")

    async def _transition(
        self,
        quote_id: uuid.UUID,
        transition: Transition,
        *,
        values: dict[str, Any] | None = None,
        actor_id: str | None = None,
        actor_role: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        now = utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                update(Quote)
                .where(Quote.id == quote_id, Quote.status.in_(_values(transition.allowed_from)))
                .values(
                    status=transition.target.value,
                    **{transition.timestamp_field: now},
                    **(values or {}),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount != 1:
            logger.debug("Transition %s on quote %s matched no row", transition.name, quote_id)
            return False

        logger.info("Quote %s → %s (%s)", quote_id, transition.target.value, transition.name)
        await emit(
            SystemEvent(
                event_type=EventType.QUOTE_STATUS_CHANGED,
                quote_id=quote_id,
                actor_id=actor_id,
                actor_role=actor_role,
                data={"transition": transition.name, "to": transition.target.value, **(data or {})},
                source_module=__name__,
            )
        )
        return True

    async def _raise_not_editable(self, quote_id: uuid.UUID, action: str) -> None:
        quote = await self.require_quote(quote_id)
        raise InvalidTransition(quote_id, quote.status, action)

    # ── Email attempts ───────────────────────────────────────────────

    async def record_email_attempt(
        self,
        *,
        quote_id: uuid.UUID,
        recipient: str,
        cc: list[str],
        provider: str | None,
        attempted_providers: list[str],
        success: bool,
        error: str | None = None,
        details: dict[str, Any] | None = None,
        pdf_generated: bool = False,
        pdf_size_bytes: int = 0,
    ) -> EmailAttempt:
        attempt = EmailAttempt(
            quote_id=quote_id,
            recipient=recipient,
            cc=cc,
            provider=provider,
            attempted_providers=attempted_providers,
            success=success,
            error=error,
            details=details,
            pdf_generated=pdf_generated,
            pdf_size_bytes=pdf_size_bytes,
        )
        async with self._session_factory() as db:
            db.add(attempt)
            await db.commit()
        return attempt

    async def list_email_attempts(self, quote_id: uuid.UUID) -> list[EmailAttempt]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(EmailAttempt)
                .where(EmailAttempt.quote_id == quote_id)
                .order_by(EmailAttempt.created_at)
            )
            return list(result.scalars().all())


# ── Helpers ──────────────────────────────────────────────────────────


def _values(statuses: frozenset[QuoteStatus]) -> list[str]:
    return sorted(s.value for s in statuses)


def _build_items(items: Sequence[ItemInput]) -> list[QuoteItem]:
    rows: list[QuoteItem] = []
    for position, item in enumerate(items):
        # Derive the total from the values as the Numeric columns will hold them
        quantity = to_money(item.quantity)
        unit_price = to_money(item.unit_price)
        rows.append(
            QuoteItem(
                position=position,
                description=item.description,
                quantity=quantity,
                unit_price=unit_price,
                total=line_total(quantity, unit_price),
            )
        )
    return rows


def _items_subtotal(rows: Sequence[QuoteItem]) -> Decimal:
    return to_money(sum((row.total for row in rows), start=Decimal("0")))


def _validate_policy(**fields: Decimal | None) -> None:
    for name, value in fields.items():
        if value is None:
            continue
        if name == "total_override":
            if value < 0:
                msg = f"total_override must be >= 0, got {value}"
                raise ValueError(msg)
        elif not Decimal("0") <= value <= Decimal("1"):
            msg = f"{name} must be a fraction between 0 and 1, got {value}"
            raise ValueError(msg)
