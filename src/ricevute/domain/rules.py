"""
@file rules.py
@brief Caricamento della tabella regole (YAML) e strategie di estrazione.
@ingroup domain_module

@details
Ogni campo dello scontrino ha una lista ordinata di FieldRule. Una regola
produce candidati grezzi dal testo (strategia "regex" o "line_scan") che
poi vengono passati al validatore indicato per nome. Aggiungere o
riordinare pattern richiede solo di modificare patterns.yaml.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

import yaml

## Numero monetario: migliaia opzionali con . o , e fino a 2 decimali
NUMBER_RE = r"(\d{1,3}(?:[.,]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?)"

_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}

STRATEGIES = ("regex", "line_scan")
TIERS = ("primary", "secondary")

FIELDS = (
    "invoice_number",
    "date",
    "amount",
    "store_name",
    "customer_name",
    "phone_number",
    "email",
    "payment_method",
    "liters",
    "cashback_amount",
)


@dataclass(frozen=True)
class FieldRule:
    """
    @brief Singola regola di estrazione (pattern + validatore).
    @details
    - strategy "regex": ogni match del pattern produce un candidato (gruppo `group`)
    - strategy "line_scan": le prime `max_lines` righe non scartate da `skip`
    """
    field: str
    validator: str
    pattern: Optional[re.Pattern] = None
    group: int = 1
    value: Optional[str] = None
    currency: Optional[str] = None
    tier: str = "primary"
    strategy: str = "regex"
    max_lines: int = 8
    skip: tuple[re.Pattern, ...] = ()

    def candidates(self, text: str) -> Iterator[str]:
        if self.strategy == "line_scan":
            lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
            for line in lines[: self.max_lines]:
                if any(p.search(line) for p in self.skip):
                    continue
                yield line
            return

        if self.pattern is None:
            raise ValueError(f"Regola regex senza pattern per il campo {self.field!r}")
        for m in self.pattern.finditer(text):
            raw = m.group(self.group)
            if raw is None and self.group:
                # pattern con alternative: il numero può stare in un gruppo successivo
                raw = next((g for g in m.groups() if g), None)
            if raw:
                yield raw


PatternTable = Mapping[str, tuple[FieldRule, ...]]


def _compile(pattern: str, flags: str) -> re.Pattern:
    bits = 0
    for f in flags:
        if f not in _FLAGS:
            raise ValueError(f"Flag regex sconosciuto: {f!r}")
        bits |= _FLAGS[f]
    return re.compile(pattern.replace("<NUM>", NUMBER_RE), bits)


def _build_rule(field: str, entry: dict, known_validators: frozenset[str]) -> FieldRule:
    validator = entry.get("validator")
    if validator not in known_validators:
        raise ValueError(f"{field}: validatore sconosciuto {validator!r}")

    strategy = entry.get("strategy", "regex")
    if strategy not in STRATEGIES:
        raise ValueError(f"{field}: strategia sconosciuta {strategy!r}")

    tier = entry.get("tier", "primary")
    if tier not in TIERS:
        raise ValueError(f"{field}: tier sconosciuto {tier!r}")

    pattern = None
    if strategy == "regex":
        if not entry.get("pattern"):
            raise ValueError(f"{field}: regola regex senza pattern")
        pattern = _compile(entry["pattern"], entry.get("flags", ""))

    return FieldRule(
        field=field,
        validator=validator,
        pattern=pattern,
        group=int(entry.get("group", 1)),
        value=entry.get("value"),
        currency=entry.get("currency"),
        tier=tier,
        strategy=strategy,
        max_lines=int(entry.get("max_lines", 8)),
        skip=tuple(re.compile(s) for s in entry.get("skip", [])),
    )


def parse_pattern_table(data: Mapping, known_validators: frozenset[str]) -> PatternTable:
    """
    @brief Costruisce la tabella immutabile dalle regole già deserializzate.
    @param data Mapping campo -> lista di regole (dict).
    @param known_validators Nomi dei validatori registrati.
    @return Mapping read-only campo -> tuple di FieldRule.
    @throws ValueError Se un campo, validatore, flag o strategia è sconosciuto.
    """
    table: dict[str, tuple[FieldRule, ...]] = {}
    for field, rules in data.items():
        if field not in FIELDS:
            raise ValueError(f"Campo sconosciuto nella tabella regole: {field!r}")
        table[field] = tuple(_build_rule(field, r, known_validators) for r in rules or [])
    for field in FIELDS:
        table.setdefault(field, ())
    return MappingProxyType(table)


@lru_cache(maxsize=8)
def load_pattern_table(path: Path) -> PatternTable:
    """
    @brief Legge e compila patterns.yaml.
    @param path Path del file YAML.
    @return Tabella regole (cache per path).
    """
    from .validators import VALIDATORS

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return parse_pattern_table(data, frozenset(VALIDATORS))
