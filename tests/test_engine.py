import cv2
import fitz
import numpy as np
import pytest

from ricevute.config import ExtractionConfig
from ricevute.domain.errors import ExtractionError, FileValidationError
from ricevute.ocr.engine import extract_text, validate_document


def _png(path):
    cv2.imwrite(str(path), np.full((40, 120, 3), 255, dtype=np.uint8))
    return path


def _tess_data(words, conf):
    n = len(words)
    return {
        "text": words,
        "conf": [conf] * n,
        "block_num": [1] * n,
        "par_num": [1] * n,
        "line_num": [1] * n,
    }


def test_unsupported_format_is_rejected_before_ocr(tmp_path):
    with pytest.raises(FileValidationError) as exc:
        validate_document(tmp_path / "photo.webp", ExtractionConfig())
    assert not exc.value.too_large


def test_oversized_file_is_rejected(tmp_path):
    big = tmp_path / "big.png"
    big.write_bytes(b"\0" * 2048)
    with pytest.raises(FileValidationError) as exc:
        extract_text(big, ExtractionConfig(max_file_bytes=1024))
    assert exc.value.too_large


def test_pdf_text_layer(tmp_path):
    path = tmp_path / "r.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "TOTAL R$ 10,00")
    doc.save(str(path))
    doc.close()

    out = extract_text(path, ExtractionConfig())
    assert out.method == "pdf_text"
    assert out.confidence == 0.95
    assert "TOTAL R$ 10,00" in out.text


def test_image_ocr_normalizes_confidence_and_cleans_up(tmp_path, monkeypatch):
    img = _png(tmp_path / "r.png")
    monkeypatch.setattr(
        "ricevute.ocr.engine.pytesseract.image_to_data",
        lambda *a, **k: _tess_data(["TOTAL", "R$", "", "10,00"], 80),
    )
    out = extract_text(img, ExtractionConfig())
    assert out.method == "ocr"
    assert out.text == "TOTAL R$ 10,00"
    assert out.confidence == pytest.approx(0.8)
    assert not list(tmp_path.glob("*_gray_*"))


def test_engine_failure_becomes_extraction_error(tmp_path, monkeypatch):
    img = _png(tmp_path / "r.png")

    def boom(*a, **k):
        raise RuntimeError("Tesseract process timeout")

    monkeypatch.setattr("ricevute.ocr.engine.pytesseract.image_to_data", boom)
    with pytest.raises(ExtractionError):
        extract_text(img, ExtractionConfig())
    assert not list(tmp_path.glob("*_gray_*"))
