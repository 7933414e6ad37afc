"""
@file validators.py
@brief Validatori dei candidati prodotti dalle regole di parsing.

@details
Un validatore riceve il testo catturato, la regola che l'ha prodotto e il
contesto di parsing; restituisce il valore tipizzato oppure None per
scartare il candidato (e passare al successivo).
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from ricevute.config import ParserConfig
from .models import NOT_FOUND
from .rules import FieldRule, PatternTable


@dataclass(frozen=True)
class ParseContext:
    config: ParserConfig
    table: PatternTable
    now: datetime


Validator = Callable[[str, FieldRule, ParseContext], Optional[Any]]

_YEAR_LIKE_RE = re.compile(r"(19|20)\d{2}")
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(?:\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}")
_NUMERIC_ONLY_RE = re.compile(r"[\d\s.,:/\-]+")
_CURRENCY_RE = re.compile(r"(?:R\$|\$|€|£|[¥￥]|\bKz\b|\bBRL\b|\bUSD\b|\bEUR\b|\bGBP\b|\bJPY\b)", re.I)
_MULTI_SPACE_RE = re.compile(r"\s+")

_DATETIME_RE = re.compile(
    r"^(?P<a>\d{1,4})[/.\-](?P<b>\d{1,2})[/.\-](?P<c>\d{1,4})"
    r"(?:\s*[-,T]?\s*(?P<h>\d{1,2}):(?P<mi>\d{2})(?::(?P<s>\d{2}))?"
    r"(?:\s*(?P<ampm>[AaPp])\.?[Mm]\.?)?)?\s*$"
)


def parse_decimal(raw: str) -> Optional[float]:
    """
    @brief Converte un importo con separatori locali in float.
    @param raw Stringa numerica (es. "1.234,56", "1,234.56", "240,00").
    @return Valore float o None se non interpretabile.

    @details
    - con entrambi i separatori, l'ultimo è il decimale
    - una virgola singola è sempre decimale
    - un punto singolo seguito da esattamente 3 cifre è separatore migliaia
    """
    s = raw.strip().replace(" ", "")
    if not s:
        return None

    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", "") if s.count(",") > 1 else s.replace(",", ".")
    elif "." in s:
        parts = s.split(".")
        if len(parts) > 2 or len(parts[-1]) == 3:
            s = s.replace(".", "")

    try:
        return float(s)
    except ValueError:
        return None


def _clock(m: re.Match) -> Optional[tuple[int, int, int]]:
    if m["h"] is None:
        return 0, 0, 0
    h, mi, sec = int(m["h"]), int(m["mi"]), int(m["s"] or 0)
    if m["ampm"]:
        if not 1 <= h <= 12:
            return None
        h = h % 12 + (12 if m["ampm"].lower() == "p" else 0)
    if h > 23 or mi > 59 or sec > 59:
        return None
    return h, mi, sec


def parse_datetime(raw: str, now: datetime, min_year: int = 2000) -> Optional[datetime]:
    """
    @brief Interpreta data (e ora opzionale, 12h o 24h) in formati numerici misti.
    @param raw Es. "17/09/2025 - 11:08 PM", "2025-09-17 23:08", "03/04/25".
    @param now Istante di riferimento per disambiguare giorno/mese.
    @param min_year Anno minimo accettato.
    @return datetime o None.

    @note
    Se giorno e mese sono entrambi <= 12 si sceglie l'interpretazione più
    vicina a now; a parità vince giorno-prima.
    """
    m = _DATETIME_RE.match(raw.strip())
    if not m:
        return None

    a, b, c = m["a"], m["b"], m["c"]
    if len(a) == 4:
        year = int(a)
        candidates = [(int(b), int(c))]
    elif len(c) in (2, 4):
        year = int(c) + (2000 if len(c) == 2 else 0)
        x, y = int(a), int(b)
        if x > 12 and y <= 12:
            candidates = [(y, x)]
        elif y > 12 and x <= 12:
            candidates = [(x, y)]
        else:
            candidates = [(y, x), (x, y)]
    else:
        return None

    if not min_year <= year <= now.year + 1:
        return None

    clock = _clock(m)
    if clock is None:
        return None

    dates = []
    for month, day in candidates:
        try:
            dates.append(datetime(year, month, day, *clock))
        except ValueError:
            continue
    if not dates:
        return None
    return min(dates, key=lambda d: abs((d - now).total_seconds()))


def classify_payment(text: str, table: PatternTable) -> Optional[str]:
    """@brief Applica le regole a parola chiave di payment_method a un testo libero."""
    for rule in table.get("payment_method", ()):
        if rule.validator == "constant" and rule.pattern is not None and rule.pattern.search(text):
            return rule.value
    return None


def invoice_number(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[str]:
    s = raw.strip().strip(".:-#/")
    if len(s) < 3 or not any(ch.isdigit() for ch in s):
        return None
    if not s.strip("0"):
        return None
    if _YEAR_LIKE_RE.fullmatch(s):
        return None
    return s


def date(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[datetime]:
    return parse_datetime(raw, ctx.now, ctx.config.min_year)


def amount(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[tuple[float, str]]:
    value = parse_decimal(raw)
    if value is None:
        return None
    bound = ctx.config.amount_max if rule.tier == "primary" else ctx.config.secondary_amount_max
    if not 0 < value < bound:
        return None
    return round(value, 2), rule.currency or ctx.config.default_currency


def store_name(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[str]:
    s = _MULTI_SPACE_RE.sub(" ", raw).strip(" :-*|=_")
    if len(s) < 3 or sum(ch.isalpha() for ch in s) < 2:
        return None
    if s.lower() == NOT_FOUND.lower():
        return None
    return s[:120]


def customer_name(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[str]:
    s = _MULTI_SPACE_RE.sub(" ", raw).strip(" :-,;.")
    if not s or _NUMERIC_ONLY_RE.fullmatch(s) or _CURRENCY_RE.search(s):
        return None
    if sum(ch.isalpha() for ch in s) < 2:
        return None
    return s[:80]


def phone(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[str]:
    digits = re.sub(r"\D", "", raw)
    return digits if 7 <= len(digits) <= 15 else None


def email(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[str]:
    s = raw.strip().rstrip(".,;:)").lower()
    return s if _EMAIL_RE.fullmatch(s) else None


def constant(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[str]:
    return rule.value


def payment_label(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[str]:
    return classify_payment(raw, ctx.table)


def liters(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[float]:
    value = parse_decimal(raw)
    if value is None or not 0 < value < ctx.config.liters_max:
        return None
    return value


def positive_decimal(raw: str, rule: FieldRule, ctx: ParseContext) -> Optional[float]:
    value = parse_decimal(raw)
    return value if value is not None and value > 0 else None


VALIDATORS: dict[str, Validator] = {
    "invoice_number": invoice_number,
    "date": date,
    "amount": amount,
    "store_name": store_name,
    "customer_name": customer_name,
    "phone": phone,
    "email": email,
    "constant": constant,
    "payment_label": payment_label,
    "liters": liters,
    "positive_decimal": positive_decimal,
}
