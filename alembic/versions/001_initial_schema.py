"""Initial schema — inquiries, quotes, checkout sessions, email attempts, audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("quote_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("actor_id", sa.String(100), comment="Operator id, 'gateway', or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="operator, gateway, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "inquiries",
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(30)),
        sa.Column("service_type", sa.String(50), index=True),
        sa.Column("event_date", sa.DateTime(timezone=True)),
        sa.Column("event_location", sa.String(500)),
        sa.Column("guest_count", sa.Integer()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Quotes ─────────────────────────────────────────────────────────

    op.create_table(
        "quotes",
        sa.Column("quote_number", sa.String(50), nullable=False),
        sa.Column(
            "inquiry_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("inquiries.id"), nullable=False, index=True
        ),
        sa.Column("created_by", sa.String(100), comment="Operator id"),
        sa.Column("deposit_pct", sa.Numeric(5, 4)),
        sa.Column("tax_pct", sa.Numeric(5, 4)),
        sa.Column("gratuity_pct", sa.Numeric(5, 4)),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_override", sa.Numeric(12, 2), comment="Explicit subtotal (>= 0) that wins over the item sum"),
        sa.Column("valid_until", sa.DateTime(timezone=True)),
        sa.Column("terms", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT", index=True),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("deposit_paid_at", sa.DateTime(timezone=True)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("refunded_at", sa.DateTime(timezone=True)),
        sa.Column("canceled_at", sa.DateTime(timezone=True)),
        sa.Column("payment_session_id", sa.String(255), index=True),
        sa.Column("payment_mode", sa.String(20)),
        sa.Column("checkout_url", sa.Text()),
        sa.Column(
            "payment_reference",
            sa.String(255),
            comment="Gateway session id that moved the quote into DEPOSIT_PAID/PAID",
        ),
        sa.Column("refund_charge_id", sa.String(255)),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("quote_number"),
        sa.CheckConstraint("total_override IS NULL OR total_override >= 0", name="ck_quotes_override_non_negative"),
    )

    op.create_table(
        "quote_items",
        sa.Column("quote_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quotes.id"), nullable=False, index=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Payments & delivery ────────────────────────────────────────────

    op.create_table(
        "checkout_sessions",
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("quote_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quotes.id"), nullable=False, index=True),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("customer_email", sa.String(255), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False, index=True),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id"),
    )
    op.create_index(
        "ix_checkout_sessions_lookup",
        "checkout_sessions",
        ["quote_id", "mode", "amount_cents", "status"],
    )

    op.create_table(
        "email_attempts",
        sa.Column("quote_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quotes.id"), nullable=False, index=True),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("cc", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("provider", sa.String(50)),
        sa.Column("attempted_providers", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text()),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("pdf_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pdf_size_bytes", sa.Integer(), nullable=False, server_default="0"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("email_attempts")
    op.drop_index("ix_checkout_sessions_lookup", table_name="checkout_sessions")
    op.drop_table("checkout_sessions")
    op.drop_table("quote_items")
    op.drop_table("quotes")
    op.drop_table("inquiries")
    op.drop_table("audit_log")
