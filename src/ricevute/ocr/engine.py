"""
@file engine.py
@brief Motore di estrazione testo: text layer PDF o OCR Tesseract su immagini.
@ingroup ocr_module

@details
Il wrapper separa:
- validazione del documento (formato e dimensione, prima di qualsiasi OCR)
- esecuzione OCR / lettura PDF
- standardizzazione output (testo + confidenza in [0,1])

Nessun retry: in caso di errore il chiamante deve ripetere l'upload.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from pathlib import Path

import fitz
import numpy as np
import pytesseract

from ricevute.config import ExtractionConfig
from ricevute.domain.errors import ExtractionError, FileValidationError
from ricevute.domain.models import ExtractedText
from .postprocess import normalize_ocr_text
from .preprocess import normalized_image

logger = logging.getLogger(__name__)


@dataclass
class OcrResult:
    """
    @brief Risultato standardizzato del processo OCR.
    @details
    - text: testo estratto
    - confidence: media delle confidenze di parola, normalizzata in [0,1]
    """
    text: str
    confidence: float


def validate_document(path: str | Path, config: ExtractionConfig) -> Path:
    """
    @brief Verifica formato e dimensione del documento.
    @param path Path del file caricato.
    @param config Configurazione di estrazione.
    @return Path normalizzato.
    @throws FileValidationError Se il formato non è supportato o il file supera il limite.
    """
    p = Path(path)
    ext = p.suffix.lower()
    if ext not in config.supported_formats:
        raise FileValidationError(
            f"Unsupported file format: {ext or '(none)'}. Supported formats: {', '.join(config.supported_formats)}",
            {"file": p.name, "supported_formats": list(config.supported_formats)},
        )
    if not p.is_file():
        raise FileValidationError(f"File not found: {p.name}", {"file": p.name})

    size = p.stat().st_size
    if size > config.max_file_bytes:
        raise FileValidationError(
            f"File too large: {size} bytes. Maximum allowed: {config.max_file_bytes} bytes",
            {"file": p.name, "size": size, "max_size": config.max_file_bytes},
            too_large=True,
        )
    return p


def _lines_from_data(data: dict) -> tuple[str, float]:
    # ricompone le righe a partire dall'output di image_to_data
    lines: dict[tuple[int, int, int], list[str]] = {}
    confs: list[float] = []
    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        if not word:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
        try:
            conf = float(data["conf"][i])
        except (TypeError, ValueError):
            continue
        if conf >= 0:
            confs.append(conf)

    text = "\n".join(" ".join(words) for words in lines.values())
    mean = sum(confs) / len(confs) if confs else 0.0
    return text, mean


def run_tesseract(
    image: str | Path | np.ndarray,
    lang: str = "eng+por",
    psm: int = 6,
    extra_config: str | None = None,
    timeout: float = 0,
) -> OcrResult:
    """
    @brief Esegue OCR Tesseract e calcola la confidenza media.
    @param image Path immagine o array (tipicamente output di preprocess_for_ocr).
    @param lang Codice lingua Tesseract (es. "eng+por").
    @param psm Page Segmentation Mode (default 6, blocco uniforme).
    @param extra_config Configurazione aggiuntiva Tesseract (opzionale).
    @param timeout Secondi massimi per la chiamata (0 = nessun limite).
    @return OcrResult con testo e confidenza in [0,1].

    @note Tesseract emette confidenze 0-100: vengono divise per 100.
    """
    base_config = f"--oem 1 --psm {psm} -c preserve_interword_spaces=1"
    config = f"{base_config} {extra_config}" if extra_config else base_config

    src = str(image) if isinstance(image, Path) else image
    data = pytesseract.image_to_data(
        src,
        lang=lang,
        config=config,
        output_type=pytesseract.Output.DICT,
        timeout=timeout,
    )
    text, mean_conf = _lines_from_data(data)
    return OcrResult(text=text, confidence=min(max(mean_conf / 100.0, 0.0), 1.0))


def extract_pdf_text(path: Path) -> str:
    """
    @brief Legge il text layer incorporato di un PDF.
    @param path Path del PDF.
    @return Testo di tutte le pagine, separate da newline.
    """
    with fitz.open(str(path)) as doc:
        return "\n".join(page.get_text() for page in doc)


def extract_text(path: str | Path, config: ExtractionConfig) -> ExtractedText:
    """
    @brief Estrae testo e confidenza da un documento (PDF o immagine).
    @param path Path del documento caricato.
    @param config Configurazione di estrazione.
    @return ExtractedText con testo normalizzato, confidenza e durata.

    @throws FileValidationError Formato/dimensione non validi (prima dell'OCR).
    @throws ExtractionError Fallimento del motore di riconoscimento.
    """
    p = validate_document(path, config)
    start = time.perf_counter()

    if p.suffix.lower() == ".pdf":
        try:
            raw = extract_pdf_text(p)
        except (RuntimeError, ValueError) as e:
            raise ExtractionError(f"PDF processing failed: {e}", {"file": p.name}) from e
        confidence = config.pdf_confidence
        method = "pdf_text"
        if not raw.strip():
            logger.warning("PDF senza text layer: %s", p.name)
    else:
        try:
            with normalized_image(p) as gray_path:
                ocr = run_tesseract(gray_path, lang=config.lang, psm=config.psm, timeout=config.timeout_seconds)
        except ExtractionError:
            raise
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, RuntimeError, OSError) as e:
            raise ExtractionError(f"Image OCR processing failed: {e}", {"file": p.name}) from e
        raw = ocr.text
        confidence = ocr.confidence
        method = "ocr"

    duration_ms = int((time.perf_counter() - start) * 1000)
    logger.info("Estrazione %s completata: method=%s conf=%.2f in %d ms", p.name, method, confidence, duration_ms)

    return ExtractedText(
        text=normalize_ocr_text(raw),
        confidence=confidence,
        duration_ms=duration_ms,
        method=method,
    )
