"""
@file preprocess.py
@brief Pre-processing leggero delle immagini di scontrini prima dell'OCR.
@ingroup ocr_module

@details
La pipeline di acquisizione applica un solo step di normalizzazione
(scala di grigi), privilegiando la velocità. L'immagine normalizzata viene
scritta in un file temporaneo che viene sempre eliminato all'uscita dal
context manager, qualunque sia l'esito dell'OCR.
"""
from __future__ import annotations
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import cv2
import numpy as np

from ricevute.domain.errors import ExtractionError

logger = logging.getLogger(__name__)


def load_image(image_path: str | Path) -> np.ndarray:
    """
    @brief Carica un'immagine con OpenCV.
    @param image_path Path dell'immagine.
    @return Immagine BGR.
    @throws ExtractionError Se OpenCV non riesce a leggere il file.
    """
    img = cv2.imread(str(image_path))
    if img is None:
        raise ExtractionError(f"Impossibile leggere immagine: {image_path}", {"file": str(image_path)})
    return img


def preprocess_for_ocr(image_bgr: np.ndarray) -> tuple[np.ndarray, list[str]]:
    """
    @brief Converte l'immagine in scala di grigi.
    @param image_bgr Immagine BGR (output di cv2.imread) o già in grigio.
    @return Tuple (gray, steps) con l'elenco degli step applicati.

    @throws ValueError Se l'immagine è vuota.
    """
    if image_bgr is None or image_bgr.size == 0:
        raise ValueError("Immagine vuota o non valida")

    steps: list[str] = []
    if image_bgr.ndim == 2:
        return image_bgr, steps

    gray = cv2.cvtColor(image_bgr, cv2.COLOR_BGR2GRAY)
    steps.append("to_gray")
    return gray, steps


@contextmanager
def normalized_image(image_path: str | Path) -> Iterator[Path]:
    """
    @brief Scrive una copia normalizzata (grigio, PNG) accanto all'originale.
    @param image_path Path dell'immagine caricata.
    @return Context manager che produce il path del file temporaneo.

    @note Il file temporaneo viene rimosso anche in caso di eccezione o cancellazione.
    """
    src = Path(image_path)
    gray, steps = preprocess_for_ocr(load_image(src))

    fd, tmp_name = tempfile.mkstemp(prefix=f"{src.stem}_gray_", suffix=".png", dir=src.parent)
    os.close(fd)
    tmp = Path(tmp_name)
    try:
        if not cv2.imwrite(str(tmp), gray):
            raise ExtractionError(f"Impossibile scrivere immagine normalizzata: {tmp}")
        logger.debug("Immagine normalizzata %s -> %s (%s)", src.name, tmp.name, ",".join(steps))
        yield tmp
    finally:
        tmp.unlink(missing_ok=True)
