"""
@file parsing.py
@brief Parsing del testo estratto in campi strutturati e gate di plausibilità.
@ingroup domain_module

@details
Il parser è guidato dai dati: per ogni campo scorre le regole di
patterns.yaml in ordine e tiene il primo candidato che supera il
validatore. Non lancia mai eccezioni per campi mancanti: i campi non
trovati restano al default ("Not Found", 0, UNKNOWN).

La confidenza del parsing è la frazione dei campi controllati trovati,
con un pavimento configurabile (default 0.1).
"""

from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from ricevute.config import DEFAULT_PATTERNS_PATH, ParserConfig
from .models import NOT_FOUND, ParsedReceiptFields, PaymentMethod, ReceiptAssessment
from .rules import PatternTable, load_pattern_table
from .validators import VALIDATORS, ParseContext

logger = logging.getLogger(__name__)


class FieldParser:
    """
    @brief Parser dei campi configurato con soglie e tabella regole immutabili.
    @param config Soglie del parser.
    @param table Tabella regole (default: patterns.yaml del pacchetto).
    @param clock Sorgente dell'istante corrente (iniettabile nei test).
    """

    def __init__(
        self,
        config: Optional[ParserConfig] = None,
        table: Optional[PatternTable] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or ParserConfig()
        self.table = table if table is not None else load_pattern_table(DEFAULT_PATTERNS_PATH)
        self.clock = clock or datetime.now

    def _context(self, now: Optional[datetime]) -> ParseContext:
        return ParseContext(config=self.config, table=self.table, now=now or self.clock())

    def extract(self, field: str, text: str, ctx: ParseContext) -> Optional[Any]:
        """
        @brief Valuta le regole del campo in ordine; vince il primo candidato valido.
        @return Valore validato o None.
        """
        for idx, rule in enumerate(self.table.get(field, ())):
            validate = VALIDATORS[rule.validator]
            for raw in rule.candidates(text):
                value = validate(raw, rule, ctx)
                if value is not None:
                    logger.debug("Campo %s: regola #%d -> %r", field, idx, value)
                    return value
        return None

    def parse(self, text: str, now: Optional[datetime] = None) -> ParsedReceiptFields:
        """
        @brief Estrae tutti i campi dal testo.
        @param text Testo normalizzato (OCR o text layer PDF).
        @param now Istante di riferimento per la disambiguazione delle date.
        @return ParsedReceiptFields sempre popolato.
        """
        ctx = self._context(now)
        cfg = self.config

        amount, currency = self.extract("amount", text, ctx) or (0.0, cfg.default_currency)
        payment = self.extract("payment_method", text, ctx)

        fields = ParsedReceiptFields(
            invoice_number=self.extract("invoice_number", text, ctx) or NOT_FOUND,
            store_name=self.extract("store_name", text, ctx) or NOT_FOUND,
            amount=amount,
            currency=currency,
            date=self.extract("date", text, ctx),
            payment_method=PaymentMethod(payment) if payment else PaymentMethod.UNKNOWN,
            customer_name=self.extract("customer_name", text, ctx) or NOT_FOUND,
            liters=self.extract("liters", text, ctx) or 0.0,
            phone_number=self.extract("phone_number", text, ctx) or NOT_FOUND,
            email=self.extract("email", text, ctx) or NOT_FOUND,
            cashback_amount=self.extract("cashback_amount", text, ctx) or 0.0,
        )
        fields = fields.model_copy(update={"confidence": self.confidence(fields)})
        logger.info(
            "Parsing: invoice=%s store=%s amount=%.2f %s conf=%.2f",
            fields.invoice_number, fields.store_name, fields.amount, fields.currency, fields.confidence,
        )
        return fields

    def _found(self, fields: ParsedReceiptFields, name: str) -> bool:
        value = getattr(fields, name)
        if name == "payment_method":
            return value != PaymentMethod.UNKNOWN
        if name == "currency":
            return value != self.config.default_currency
        if isinstance(value, str):
            return value != NOT_FOUND
        if isinstance(value, (int, float)):
            return value > 0
        return value is not None

    def confidence(self, fields: ParsedReceiptFields) -> float:
        """@brief Frazione dei campi controllati trovati, mai sotto il pavimento."""
        checked = self.config.confidence_fields
        if not checked:
            return self.config.confidence_floor
        found = sum(1 for name in checked if self._found(fields, name))
        return max(self.config.confidence_floor, round(found / len(checked), 4))

    def _store_is_real(self, store: str) -> bool:
        if store == NOT_FOUND:
            return False
        low = store.lower()
        return not any(term in low for term in self.config.store_placeholder_terms)

    def assess(self, fields: ParsedReceiptFields, now: Optional[datetime] = None) -> ReceiptAssessment:
        """
        @brief Gate di plausibilità: "questo documento è davvero uno scontrino?".
        @param fields Campi estratti.
        @param now Istante di riferimento per il warning di data vecchia.
        @return ReceiptAssessment con errori bloccanti e warning non bloccanti.

        @details
        Serve almeno min_receipt_indicators fra: importo > 0, negozio reale,
        confidenza sopra soglia, valuta risolta. L'importo positivo è in
        ogni caso obbligatorio.
        """
        cfg = self.config
        now = now or self.clock()
        errors: list[str] = []
        warnings: list[str] = []

        if fields.amount <= 0:
            errors.append("Amount must be greater than zero")

        indicators = [
            fields.amount > 0,
            self._store_is_real(fields.store_name),
            fields.confidence > cfg.min_gate_confidence,
            fields.currency != cfg.default_currency,
        ]
        if sum(indicators) < cfg.min_receipt_indicators:
            errors.append("Document does not appear to be a valid receipt")

        if fields.invoice_number == NOT_FOUND:
            warnings.append("Invoice number not found")
        if fields.date is None:
            warnings.append("Receipt date not found")
        else:
            if fields.date < now - timedelta(days=cfg.max_age_days):
                warnings.append("Receipt date is older than one year")
            if fields.date > now + timedelta(days=1):
                warnings.append("Receipt date is in the future")
        if fields.store_name == NOT_FOUND:
            warnings.append("Store name not found")
        if fields.amount > cfg.high_amount_warning:
            warnings.append("Amount is unusually high")
        if fields.confidence < cfg.low_confidence_warning:
            warnings.append("Low extraction confidence")

        return ReceiptAssessment(is_valid=not errors, errors=errors, warnings=warnings)


def parse_receipt_fields(
    text: str,
    config: Optional[ParserConfig] = None,
    table: Optional[PatternTable] = None,
    now: Optional[datetime] = None,
) -> ParsedReceiptFields:
    """@brief Scorciatoia: FieldParser(config, table).parse(text, now)."""
    return FieldParser(config, table).parse(text, now=now)


def assess_receipt(
    fields: ParsedReceiptFields,
    config: Optional[ParserConfig] = None,
    now: Optional[datetime] = None,
) -> ReceiptAssessment:
    return FieldParser(config).assess(fields, now=now)
