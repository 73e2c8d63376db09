"""Locale helpers for SBI pages: numbers and account-section labels."""

from __future__ import annotations

import logging
import re
import unicodedata
from decimal import Decimal, InvalidOperation

from sbi_portfolio.models import AccountType

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^\d.\-]")

# Most specific first: "旧つみたてNISA預り" also contains "NISA".
ACCOUNT_RULES: list[tuple[str, AccountType]] = [
    ("旧つみたてNISA", AccountType.NISA_OLD_TSUMITATE),
    ("つみたて投資枠", AccountType.NISA_TSUMITATE),
    ("成長投資枠", AccountType.NISA_GROWTH),
    ("NISA", AccountType.NISA_GROWTH),  # NISA預り without a slot is the growth slot
    ("一般預り", AccountType.GENERAL),
    ("特定預り", AccountType.SPECIFIC),
]


def normalize_text(text: str) -> str:
    """NFKC: full-width digits/letters/commas → ASCII, ideographic space → space."""
    return unicodedata.normalize("NFKC", text)


def parse_number(text: str | None) -> Decimal:
    """Parse a JP-formatted number: '１,７３０' / '1,730円' / '+12.5%' → Decimal.

    Unparseable input returns Decimal('0').
    """
    if not text:
        return Decimal("0")
    cleaned = normalize_text(text).replace("−", "-").replace("‐", "-")
    cleaned = _NON_NUMERIC.sub("", cleaned.replace(",", ""))
    if not cleaned:
        return Decimal("0")
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")


def _match_account_rule(text: str) -> AccountType | None:
    normalized = normalize_text(text)
    for needle, account_type in ACCOUNT_RULES:
        if needle in normalized:
            return account_type
    return None


def is_known_account_label(text: str) -> bool:
    return _match_account_rule(text) is not None


def classify_account_type(text: str) -> AccountType:
    """Map a section label such as 'NISA預り（成長投資枠）' to an AccountType."""
    account_type = _match_account_rule(text)
    if account_type is None:
        logger.warning("Unknown account label %r, defaulting to %s", text, AccountType.SPECIFIC.value)
        return AccountType.SPECIFIC
    return account_type
