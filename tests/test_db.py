"""Tests for the request-scoped session dependency and model metadata."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import quotepay.models  # noqa: F401
from quotepay.db.engine import get_session
from quotepay.models.base import Base


def _make_factory(session: MagicMock) -> MagicMock:
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=transaction)
    transaction.__aexit__ = AsyncMock(return_value=False)
    session.begin.return_value = transaction
    return MagicMock(return_value=session)


class TestGetSession:
    @pytest.mark.asyncio()
    async def test_yields_session_inside_transaction(self):
        session = MagicMock()
        factory = _make_factory(session)

        with patch("quotepay.db.engine.async_session_factory", factory):
            gen = get_session()
            assert await gen.__anext__() is session
            with pytest.raises(StopAsyncIteration):
                await gen.__anext__()

        session.begin.assert_called_once_with()
        session.begin.return_value.__aexit__.assert_awaited_once()


class TestMetadata:
    def test_all_tables_registered(self):
        assert set(Base.metadata.tables) == {
            "audit_log",
            "inquiries",
            "quotes",
            "quote_items",
            "checkout_sessions",
            "email_attempts",
        }

    def test_override_check_uses_migration_name(self):
        names = {c.name for c in Base.metadata.tables["quotes"].constraints}
        assert "ck_quotes_override_non_negative" in names

    def test_checkout_lookup_index(self):
        indexes = {i.name: i for i in Base.metadata.tables["checkout_sessions"].indexes}
        index = indexes["ix_checkout_sessions_lookup"]
        assert [c.name for c in index.columns] == ["quote_id", "mode", "amount_cents", "status"]
