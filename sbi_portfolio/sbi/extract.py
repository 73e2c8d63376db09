"""Holding extraction from raw SBI portfolio markup.

The account page is not schema-stable, so this works on the raw HTML text with
targeted patterns instead of a DOM:

  segment_sections → iter_rows → classify_fields → build_holding

Each stage skips what it cannot read and reports a ParseWarning; one bad row
never discards the snapshot.
"""

from __future__ import annotations

import hashlib
import logging
import random
import re
import string
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterator

from pydantic import ValidationError

from sbi_portfolio.models import (
    NISA_ACCOUNT_TYPES,
    AccountType,
    AssetType,
    ForeignStock,
    Holding,
    MutualFund,
    ParseWarning,
    Stock,
)
from sbi_portfolio.sbi.parsing import (
    classify_account_type,
    is_known_account_label,
    normalize_text,
    parse_number,
)

logger = logging.getLogger(__name__)

# <b>株式（特定預り）</b>, <b>投資信託<br>（金額/NISA預り（つみたて投資枠））</b>
SECTION_HEADER = re.compile(r"<b>(株式|投資信託)(?:<br\s*/?>)?\s*（.+?）</b>", re.S | re.I)
_ASSET_LABELS = {"株式": AssetType.STOCK, "投資信託": AssetType.MUTUAL_FUND}
_ACCOUNT_LABEL = re.compile(r"（([^（]+)）</b>$")
_AMOUNT_BASIS = "（金額/"

ROW = re.compile(r"<tr[^>]*align=[\"']?right\b[^>]*>(.*?)</tr>", re.S | re.I)
CELL = re.compile(r"<td[^>]*>(.*?)</td>", re.S | re.I)
_BR = re.compile(r"<br\s*/?>", re.I)
_TAG = re.compile(r"<[^>]+>")
_WS = re.compile(r"[ \t\r\n]+")  # ASCII only: names keep their ideographic spaces

MIN_CELLS = 3
MIN_NUMBERS = 3
FUND_UNIT = "口"
FUND_NAME_MIN_LEN = 5
SYNTHETIC_PREFIX = "MF-"

_NAME_THEN_CODE = re.compile(r"^(.+?)(\d{4,})$")  # ＩＮＰＥＸ1605
_CODE_THEN_NAME = re.compile(r"^(\d{4,})\s+(.+)$")  # 1605 ＩＮＰＥＸ
_NAME_CHAR = re.compile(r"[^\d\s.,+\-%]")


@dataclass(frozen=True)
class Section:
    asset_type: AssetType
    account_type: AccountType
    start: int
    end: int
    label: str = ""

    def markup(self, html: str) -> str:
        return html[self.start:self.end]


@dataclass(frozen=True)
class RowFields:
    ticker_code: str
    name: str
    quantity: Decimal
    acquisition_price: Decimal
    current_price: Decimal
    synthetic_ticker: bool = False


def _warn(kind: str, message: str, **context: Any) -> ParseWarning:
    logger.warning("%s: %s %s", kind, message, context or "")
    return ParseWarning(kind=kind, message=message, context=context)


# ── Sections ──────────────────────────────────────────────────────────


def _account_label(header: str) -> str:
    cleaned = _BR.sub("", header).replace("\n", "").replace("\r", "")
    cleaned = cleaned.replace(_AMOUNT_BASIS, "（", 1)
    m = _ACCOUNT_LABEL.search(cleaned)
    if not m:
        return ""
    return m.group(1).rstrip("）").strip()


def segment_sections(
    html: str,
    *,
    strict_account_labels: bool = True,
) -> tuple[list[Section], list[ParseWarning]]:
    """Split the domestic holdings page into (asset type, account type) sections.

    A section runs from its header to the start of the next header (dropped ones
    included) or the end of the document.
    """
    headers = list(SECTION_HEADER.finditer(html))
    sections: list[Section] = []
    warnings: list[ParseWarning] = []

    for i, match in enumerate(headers):
        end = headers[i + 1].start() if i + 1 < len(headers) else len(html)
        header = match.group(0)
        label = _account_label(header)
        if not label:
            warnings.append(_warn("section", "No account label in section header", header=header))
            continue

        if not is_known_account_label(label):
            if strict_account_labels:
                warnings.append(
                    _warn("section", "Unrecognized account label, section skipped", header=header, label=label)
                )
                continue
            warnings.append(
                _warn("section", "Unrecognized account label, treated as specific", header=header, label=label)
            )

        sections.append(
            Section(
                asset_type=_ASSET_LABELS[match.group(1)],
                account_type=classify_account_type(label),
                start=match.start(),
                end=end,
                label=label,
            )
        )

    return sections, warnings


# ── Rows ──────────────────────────────────────────────────────────────


def _cell_text(raw: str) -> str:
    text = _BR.sub(" ", raw)
    text = _TAG.sub("", text)
    text = text.replace("&nbsp;", " ").replace("\xa0", " ")
    return _WS.sub(" ", text).strip()


def iter_rows(section_html: str) -> Iterator[list[str]]:
    """Yield the normalized cell texts of each right-aligned <tr>."""
    for row in ROW.finditer(section_html):
        cells = [_cell_text(c) for c in CELL.findall(row.group(1))]
        if len(cells) < MIN_CELLS:
            continue
        yield cells


# ── Fields ────────────────────────────────────────────────────────────


def synthetic_fund_ticker(name: str, *, stable: bool = False) -> str:
    """Funds show no code on the page; invent one.

    Random tickers differ on every scrape. ``stable=True`` derives the ticker
    from the fund name instead.
    """
    if stable:
        digest = hashlib.sha1(normalize_text(name).encode("utf-8")).hexdigest()
        return SYNTHETIC_PREFIX + digest[:8]
    return SYNTHETIC_PREFIX + "".join(random.choices(string.ascii_lowercase + string.digits, k=8))


def _looks_like_name(text: str) -> bool:
    return bool(_NAME_CHAR.search(normalize_text(text)))


def _find_ticker(
    cells: list[str],
    asset_type: AssetType,
    stable_fund_tickers: bool,
) -> tuple[str, str, int, bool] | None:
    for idx, text in enumerate(cells):
        if (
            asset_type == AssetType.MUTUAL_FUND
            and len(text) > FUND_NAME_MIN_LEN
            and not text[0].isdigit()
            and FUND_UNIT not in text
        ):
            return synthetic_fund_ticker(text, stable=stable_fund_tickers), text, idx, True

        m = _NAME_THEN_CODE.match(text)
        if m and _looks_like_name(m.group(1)):
            return normalize_text(m.group(2)), m.group(1).strip(), idx, False

        m = _CODE_THEN_NAME.match(text)
        if m and _looks_like_name(m.group(2)):
            return normalize_text(m.group(1)), m.group(2).strip(), idx, False
    return None


def _numbers_after(cells: list[str]) -> list[Decimal]:
    numbers: list[Decimal] = []
    for text in cells:
        normalized = normalize_text(text)
        if "/" in normalized or "--" in normalized:
            continue  # dates such as 25/01/31 or --/--/--
        for token in normalized.replace(FUND_UNIT, "").split():
            value = parse_number(token)
            if value != 0:
                numbers.append(value)
    return numbers


def classify_fields(
    cells: list[str],
    asset_type: AssetType,
    *,
    stable_fund_tickers: bool = False,
) -> RowFields | ParseWarning | None:
    """Locate ticker/name and the quantity, acquisition and current price.

    Returns None for rows that carry no holding (totals, notes).
    """
    found = _find_ticker(cells, asset_type, stable_fund_tickers)
    if found is None:
        return None
    ticker, name, idx, synthetic = found

    numbers = _numbers_after(cells[idx + 1:])
    if len(numbers) < MIN_NUMBERS:
        return _warn("field", "Not enough numeric fields", ticker=ticker, name=name, found=len(numbers))

    quantity, acquisition_price, current_price = numbers[:MIN_NUMBERS]
    if quantity <= 0 or current_price <= 0:
        return _warn(
            "field",
            "Invalid quantity or current price",
            ticker=ticker,
            name=name,
            quantity=str(quantity),
            current_price=str(current_price),
        )

    # No cost basis shown (fresh purchase): value at current price so P&L is 0
    if acquisition_price <= 0:
        acquisition_price = current_price

    return RowFields(
        ticker_code=ticker,
        name=name,
        quantity=quantity,
        acquisition_price=acquisition_price,
        current_price=current_price,
        synthetic_ticker=synthetic,
    )


# ── Holdings ──────────────────────────────────────────────────────────


def build_holding(
    asset_type: AssetType,
    account_type: AccountType,
    fields: RowFields,
    **extra: Any,
) -> Holding:
    """Construct the Holding variant for ``asset_type``. Raises ValidationError."""
    common = dict(
        ticker_code=fields.ticker_code,
        name=fields.name,
        quantity=fields.quantity,
        acquisition_price=fields.acquisition_price,
        current_price=fields.current_price,
        account_type=account_type,
    )
    if asset_type == AssetType.STOCK:
        return Stock(**common, **extra)
    if asset_type == AssetType.MUTUAL_FUND:
        extra.setdefault("is_nisa", account_type in NISA_ACCOUNT_TYPES)
        return MutualFund(**common, **extra)
    if asset_type == AssetType.FOREIGN_STOCK:
        return ForeignStock(**common, **extra)
    raise ValueError(f"Unknown asset type: {asset_type}")


def parse_section(
    section_html: str,
    asset_type: AssetType,
    account_type: AccountType,
    *,
    stable_fund_tickers: bool = False,
) -> tuple[list[Holding], list[ParseWarning]]:
    holdings: list[Holding] = []
    warnings: list[ParseWarning] = []

    for cells in iter_rows(section_html):
        result = classify_fields(cells, asset_type, stable_fund_tickers=stable_fund_tickers)
        if result is None:
            logger.debug("Row without ticker skipped: %s", cells)
            continue
        if isinstance(result, ParseWarning):
            warnings.append(result)
            continue
        try:
            holdings.append(build_holding(asset_type, account_type, result))
        except ValidationError as e:
            warnings.append(_warn("row", "Holding rejected", ticker=result.ticker_code, error=str(e)))

    return holdings, warnings


def extract_domestic_holdings(
    html: str,
    *,
    strict_account_labels: bool = True,
    stable_fund_tickers: bool = False,
) -> tuple[list[Holding], list[ParseWarning]]:
    """Stocks and funds from the domestic account page, all account types."""
    sections, warnings = segment_sections(html, strict_account_labels=strict_account_labels)
    logger.info("Sections detected: %d", len(sections))

    holdings: list[Holding] = []
    for section in sections:
        section_holdings, section_warnings = parse_section(
            section.markup(html),
            section.asset_type,
            section.account_type,
            stable_fund_tickers=stable_fund_tickers,
        )
        holdings.extend(section_holdings)
        warnings.extend(section_warnings)
        logger.info(
            "  %s/%s: %d holdings",
            section.asset_type.value,
            section.account_type.value,
            len(section_holdings),
        )

    logger.info("Domestic extraction done: %d holdings, %d warnings", len(holdings), len(warnings))
    return holdings, warnings


def extract_foreign_holdings(html: str) -> tuple[list[Holding], list[ParseWarning]]:
    """Foreign account page. Its table layout is not mapped yet, so nothing is extracted."""
    logger.info("Foreign holdings extraction not implemented (%d bytes of markup ignored)", len(html))
    return [], []
