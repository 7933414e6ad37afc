"""
@file qrcode.py
@brief Decodifica del QR code dello scontrino in un CodePayload strutturato.
@ingroup ocr_module

@details
Strategia:
1) scan diretto con cv2.QRCodeDetector (immagine ridotta a max_dim)
2) fallback: riconoscimento testo vincolato (whitelist caratteri JSON)
   alla ricerca di un blocco {...}
3) interpretazione del contenuto: JSON con tabella di alias per campo,
   altrimenti pattern "chiave: valore" sciolti

decode_payload non lancia mai: un QR assente o illeggibile produce un
CodePayload con success=False e l'errore registrato.
"""

from __future__ import annotations
import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

import cv2
import fitz
import numpy as np
import pytesseract

from ricevute.config import DecoderConfig
from ricevute.domain.errors import PayloadDecodeFailure
from ricevute.domain.models import CodePayload
from ricevute.domain.validators import parse_decimal

logger = logging.getLogger(__name__)

## Alias accettati per ogni campo: vince il primo valore non vuoto
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "receipt_id": (
        "receiptId", "id", "invoiceNumber", "invoice", "invoiceId",
        "invoice_id", "receipt_id", "receipt_number",
    ),
    "store_number": ("storeNumber", "storeId", "store", "store_id", "store_number", "location"),
    "amount": ("amount", "total", "value", "price", "cost", "sum"),
    "date": ("dateFormatted", "date", "timestamp", "createdAt", "time", "created_at", "purchase_date"),
    "verification_code": (
        "verificationCode", "code", "verification", "verify_code",
        "verification_code", "storeNumberHash",
    ),
    "customer_name": (
        "customerName", "customer", "purchaser", "buyer", "clientName", "userName",
        "customerId", "userId", "user_id", "customer_id", "client_id",
    ),
    "transaction_id": ("transactionId", "txId", "transaction", "transaction_id", "tx_id", "payment_id"),
    "liters": ("liters",),
}

DEFAULT_TRANSACTION_ID = "Cash"

_LOOSE_PATTERNS: dict[str, re.Pattern] = {
    "amount": re.compile(r"\b(?:amount|total|value|price)\b\s*[:=]?\s*[\"']?\s*(?:R\$|\$|€|£)?\s*(\d+(?:[.,]\d+)*)", re.I),
    "store_number": re.compile(r"\b(?:store|location)\b\s*(?:#|no\.?|number)?\s*[:=]?\s*[\"']?([A-Za-z0-9\-]+)", re.I),
    "date": re.compile(r"\b(?:date|time)\b\s*[:=]?\s*[\"']?(\d[\d/\-.:T ]+\d(?:\s*[AaPp][Mm])?)", re.I),
    "receipt_id": re.compile(r"\b(?:receipt|invoice)\b\s*(?:#|id|no\.?|number)?\s*[:=]?\s*[\"']?([A-Za-z0-9\-]+)", re.I),
    "customer_name": re.compile(r"\b(?:customer|user)\b\s*(?:name)?\s*[:=]\s*[\"']?([A-Za-z][A-Za-z .'\-]*[A-Za-z])", re.I),
}

_JSON_BLOCK_RE = re.compile(r"\{.*\}", re.S)

JSON_CONFIDENCE = 0.9
PATTERN_CONFIDENCE = 0.5


def _first_present(data: dict[str, Any], aliases: tuple[str, ...]) -> Optional[Any]:
    for key in aliases:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return parse_decimal(re.sub(r"[^\d.,]", "", value))
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip() or None


def _from_mapping(data: dict[str, Any], raw: str, method: str, confidence: float) -> CodePayload:
    found = {field: _first_present(data, aliases) for field, aliases in FIELD_ALIASES.items()}
    if not any(v is not None for v in found.values()):
        raise PayloadDecodeFailure("QR payload has no recognised fields", {"raw_data": raw[:200]})

    return CodePayload(
        receipt_id=_as_text(found["receipt_id"]),
        store_number=_as_text(found["store_number"]),
        amount=_as_float(found["amount"]),
        date=_as_text(found["date"]),
        verification_code=_as_text(found["verification_code"]),
        customer_name=_as_text(found["customer_name"]),
        transaction_id=_as_text(found["transaction_id"]) or DEFAULT_TRANSACTION_ID,
        liters=_as_float(found["liters"]),
        raw_data=raw,
        confidence=confidence,
        success=True,
        method=method,
    )


def parse_payload(raw: str, source: str = "scan") -> CodePayload:
    """
    @brief Interpreta il contenuto grezzo di un QR code.
    @param raw Stringa decodificata (JSON o testo libero).
    @param source Origine del contenuto ("scan" o "recognition"), riportata in method.
    @return CodePayload con success=True.
    @throws PayloadDecodeFailure Se nessun campo è riconoscibile.
    """
    text = (raw or "").strip()
    if not text:
        raise PayloadDecodeFailure("Empty QR payload")

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        return _from_mapping(data, text, source, JSON_CONFIDENCE)

    loose: dict[str, Any] = {}
    for field, pattern in _LOOSE_PATTERNS.items():
        m = pattern.search(text)
        if m:
            loose[field] = m.group(1).strip()
    # la tabella alias usa i nomi camelCase: rimappa i campi sciolti sul primo alias
    return _from_mapping(
        {FIELD_ALIASES[k][0]: v for k, v in loose.items()},
        text,
        source,
        PATTERN_CONFIDENCE,
    )


def _rasterize_first_page(path: Path) -> np.ndarray:
    with fitz.open(str(path)) as doc:
        if doc.page_count == 0:
            raise PayloadDecodeFailure("PDF has no pages", {"file": path.name})
        pix = doc[0].get_pixmap(dpi=150)
        img = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
    if pix.n == 4:
        return cv2.cvtColor(img, cv2.COLOR_RGBA2BGR)
    if pix.n == 3:
        return cv2.cvtColor(img, cv2.COLOR_RGB2BGR)
    return img.copy()


def _load_for_scan(path: Path, config: DecoderConfig) -> np.ndarray:
    if path.suffix.lower() == ".pdf":
        img = _rasterize_first_page(path)
    else:
        img = cv2.imread(str(path))
        if img is None:
            raise PayloadDecodeFailure(f"Cannot read image: {path.name}", {"file": path.name})

    h, w = img.shape[:2]
    longest = max(h, w)
    if longest > config.max_dim:
        scale = config.max_dim / float(longest)
        img = cv2.resize(img, (int(w * scale), int(h * scale)), interpolation=cv2.INTER_AREA)
    return img


def scan_qr(image: np.ndarray) -> Optional[str]:
    """@brief Scan diretto del QR; prova anche la versione in scala di grigi."""
    detector = cv2.QRCodeDetector()
    data, _points, _ = detector.detectAndDecode(image)
    if data:
        return data
    if image.ndim == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        data, _points, _ = detector.detectAndDecode(gray)
        if data:
            return data
    return None


def recognize_json_block(image: np.ndarray, config: DecoderConfig) -> Optional[str]:
    """
    @brief Fallback: OCR con whitelist ristretta e ricerca di un blocco JSON.
    @return Il blocco {...} trovato o None.
    """
    tess_config = f"--psm 6 -c tessedit_char_whitelist='{config.char_whitelist}'"
    text = pytesseract.image_to_string(
        image,
        lang=config.recognition_lang,
        config=tess_config,
        timeout=config.timeout_seconds,
    )
    m = _JSON_BLOCK_RE.search(text or "")
    return m.group(0) if m else None


def decode_payload(path: str | Path, config: DecoderConfig) -> CodePayload:
    """
    @brief Decodifica il QR code del documento (immagine o prima pagina PDF).
    @param path Path del documento caricato.
    @param config Configurazione del decoder.
    @return CodePayload; success=False se il codice è assente o illeggibile.
    """
    p = Path(path)
    try:
        image = _load_for_scan(p, config)
        raw = scan_qr(image)
        source = "scan"
        if not raw:
            raw = recognize_json_block(image, config)
            source = "recognition"
        if not raw:
            raise PayloadDecodeFailure("No QR code found", {"file": p.name})
        payload = parse_payload(raw, source=source)
    except PayloadDecodeFailure as e:
        logger.info("QR non decodificato per %s: %s", p.name, e.message)
        return CodePayload(error=e.message)
    except (cv2.error, pytesseract.TesseractError, pytesseract.TesseractNotFoundError, RuntimeError, OSError, ValueError) as e:
        logger.warning("Errore decodifica QR per %s: %s", p.name, e)
        return CodePayload(error=str(e))

    logger.info("QR decodificato per %s: method=%s receipt_id=%s", p.name, payload.method, payload.receipt_id)
    return payload
