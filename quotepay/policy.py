"""Business policy — CC routing and default percentages, hot-reloaded from JSON.

The file is re-read whenever its mtime changes, so operators can adjust CC
lists or the default deposit without a restart. A missing file yields the
built-in defaults; a file that fails to parse keeps the last good policy.

Example ``config/quote_policy.json``::

    {
      "default_deposit_pct": "0.20",
      "default_tax_pct": "0",
      "default_gratuity_pct": "0",
      "cc_by_service_type": {"CATERING": ["catering@kockys.com"]},
      "default_cc": []
    }
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class QuotePolicy(BaseModel):
    default_deposit_pct: Decimal = Field(default=Decimal("0.20"), ge=0, le=1)
    default_tax_pct: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    default_gratuity_pct: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    cc_by_service_type: dict[str, list[str]] = Field(default_factory=dict)
    default_cc: list[str] = Field(default_factory=list)

    def cc_for(self, service_type: str | None) -> list[str]:
        """CC list for a service type; unknown or missing types get ``default_cc``."""
        if service_type:
            key = service_type.upper()
            if key in self.cc_by_service_type:
                return list(self.cc_by_service_type[key])
        return list(self.default_cc)


class PolicyStore:
    """Serves the current QuotePolicy, reloading the file when it changes."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._policy = QuotePolicy()
        self._mtime: float | None = None

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> QuotePolicy:
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            if self._mtime is not None:
                logger.warning("Policy file %s removed, using defaults", self._path)
                self._policy = QuotePolicy()
                self._mtime = None
            return self._policy

        if mtime != self._mtime:
            self._reload(mtime)
        return self._policy

    def _reload(self, mtime: float) -> None:
        try:
            with open(self._path, encoding="utf-8") as f:
                raw = json.load(f)
            policy = QuotePolicy.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError):
            logger.exception("Invalid policy file %s, keeping previous policy", self._path)
            # Don't retry the same broken file on every call
            self._mtime = mtime
            return

        # Normalize service-type keys once so lookups are case-insensitive
        policy.cc_by_service_type = {k.upper(): v for k, v in policy.cc_by_service_type.items()}
        self._policy = policy
        self._mtime = mtime
        logger.info(
            "Loaded quote policy from %s (deposit=%s, %d service CC lists)",
            self._path,
            policy.default_deposit_pct,
            len(policy.cc_by_service_type),
        )
