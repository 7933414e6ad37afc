"""
@file config.py
@brief Configurazione applicativa (env/.env) e configurazioni immutabili per componente.
@ingroup config_module

@details
Settings legge variabili d'ambiente con prefisso RICEVUTE_ (o da .env).
I componenti non leggono mai Settings direttamente: ricevono una
configurazione congelata (ExtractionConfig, DecoderConfig, ParserConfig,
RewardPolicy) costruita qui.
"""

from __future__ import annotations
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PATTERNS_PATH = Path(__file__).parent / "domain" / "patterns.yaml"

SUPPORTED_FORMATS = (".jpg", ".jpeg", ".png", ".tiff", ".bmp", ".pdf")


class Settings(BaseSettings):
    """@brief Impostazioni di processo (DB, upload, OCR, premi, logging)."""

    model_config = SettingsConfigDict(env_prefix="RICEVUTE_", env_file=".env", extra="ignore")

    db_path: str = "data/ricevute.sqlite"
    upload_dir: str = "data/uploads"
    log_level: str = "INFO"

    max_upload_bytes: int = 10 * 1024 * 1024
    supported_formats: tuple[str, ...] = SUPPORTED_FORMATS

    ocr_lang: str = "eng+por"
    ocr_psm: int = 6
    ocr_timeout_seconds: float = 120.0
    pipeline_timeout_seconds: float = 180.0
    pdf_text_confidence: float = 0.95

    qr_max_dim: int = 1000
    qr_recognition_lang: str = "eng"

    patterns_path: Optional[str] = None

    cashback_rate: float = 0.02
    points_divisor: float = 10.0
    manual_match_confidence: float = 0.9

    user_placeholder: str = "placeholder-user-id"
    store_placeholder: str = "placeholder-store-id"


class ExtractionConfig(BaseModel):
    """@brief Parametri del motore di estrazione testo."""
    model_config = ConfigDict(frozen=True)

    supported_formats: tuple[str, ...] = SUPPORTED_FORMATS
    max_file_bytes: int = 10 * 1024 * 1024
    lang: str = "eng+por"
    psm: int = 6
    timeout_seconds: float = 120.0
    pdf_confidence: float = 0.95


class DecoderConfig(BaseModel):
    """@brief Parametri del decoder QR (scan diretto + fallback OCR vincolato)."""
    model_config = ConfigDict(frozen=True)

    max_dim: int = 1000
    recognition_lang: str = "eng"
    timeout_seconds: float = 60.0
    char_whitelist: str = (
        "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789{}[]\":,.-_/\\ "
    )


class ParserConfig(BaseModel):
    """@brief Soglie e default del parser dei campi (nessun letterale sparso nel codice)."""
    model_config = ConfigDict(frozen=True)

    amount_max: float = 10_000_000.0
    secondary_amount_max: float = 100_000.0
    liters_max: float = 100_000.0
    default_currency: str = "UNKNOWN"
    confidence_floor: float = 0.1
    confidence_fields: tuple[str, ...] = ("invoice_number", "store_name", "amount", "date", "payment_method")
    store_placeholder_terms: tuple[str, ...] = ("update", "notification", "reward", "level")
    min_year: int = 2000
    min_receipt_indicators: int = 2
    min_gate_confidence: float = 0.2
    low_confidence_warning: float = 0.3
    high_amount_warning: float = 10_000.0
    max_age_days: int = 365


class RewardPolicy(BaseModel):
    """@brief Regole deterministiche per punti e cashback."""
    model_config = ConfigDict(frozen=True)

    points_divisor: float = 10.0
    cashback_rate: float = 0.02
    manual_match_confidence: float = 0.9


class IdentityPolicy(BaseModel):
    """@brief Sentinelle segnaposto per gli identificativi forniti dal chiamante."""
    model_config = ConfigDict(frozen=True)

    placeholders: frozenset[str] = frozenset({"", "placeholder-user-id", "placeholder-store-id"})


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def extraction_config(settings: Settings) -> ExtractionConfig:
    return ExtractionConfig(
        supported_formats=tuple(f.lower() for f in settings.supported_formats),
        max_file_bytes=settings.max_upload_bytes,
        lang=settings.ocr_lang,
        psm=settings.ocr_psm,
        timeout_seconds=settings.ocr_timeout_seconds,
        pdf_confidence=settings.pdf_text_confidence,
    )


def decoder_config(settings: Settings) -> DecoderConfig:
    return DecoderConfig(
        max_dim=settings.qr_max_dim,
        recognition_lang=settings.qr_recognition_lang,
        timeout_seconds=settings.ocr_timeout_seconds,
    )


def reward_policy(settings: Settings) -> RewardPolicy:
    return RewardPolicy(
        points_divisor=settings.points_divisor,
        cashback_rate=settings.cashback_rate,
        manual_match_confidence=settings.manual_match_confidence,
    )


def identity_policy(settings: Settings) -> IdentityPolicy:
    return IdentityPolicy(
        placeholders=frozenset({"", settings.user_placeholder, settings.store_placeholder})
    )


def patterns_path(settings: Settings) -> Path:
    return Path(settings.patterns_path) if settings.patterns_path else DEFAULT_PATTERNS_PATH
