"""
@file intake.py
@brief Orchestrazione della pipeline di acquisizione di un singolo upload.
@ingroup services_module

@details
Flusso:
1) validazione file (formato/dimensione) al salvataggio dell'upload
2) estrazione testo e decodifica QR in parallelo (thread), con timeout globale
3) parsing dei campi e gate di plausibilità
4) risoluzione identità (utente/negozio)
5) creazione del record in stato provisional + audit

Qualsiasi errore o cancellazione prima della creazione del record elimina
il file caricato.
"""

from __future__ import annotations
import asyncio
import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional

from ricevute.config import (
    DecoderConfig,
    ExtractionConfig,
    IdentityPolicy,
    ParserConfig,
    Settings,
    decoder_config,
    extraction_config,
    identity_policy,
    patterns_path,
)
from ricevute.domain.errors import ExtractionError, FileValidationError, PersistenceError, ValidationError
from ricevute.domain.identity import resolve_identity
from ricevute.domain.models import (
    NOT_FOUND,
    CodePayload,
    ExtractedText,
    IdentityResolution,
    NewIntakeRecord,
    ParsedReceiptFields,
    UploadResult,
)
from ricevute.domain.parsing import FieldParser
from ricevute.domain.rules import load_pattern_table
from ricevute.ocr.engine import extract_text
from ricevute.ocr.qrcode import decode_payload
from ricevute.storage.identity import SqliteIdentityStore
from ricevute.storage.repository import insert_intake_record
from .audit import record_audit

logger = logging.getLogger(__name__)

_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class IntakePipeline:
    """@brief Configurazioni immutabili dei componenti della pipeline."""
    extraction: ExtractionConfig
    decoder: DecoderConfig
    parser: FieldParser
    identity: IdentityPolicy
    timeout_seconds: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "IntakePipeline":
        return cls(
            extraction=extraction_config(settings),
            decoder=decoder_config(settings),
            parser=FieldParser(ParserConfig(), load_pattern_table(patterns_path(settings))),
            identity=identity_policy(settings),
            timeout_seconds=settings.pipeline_timeout_seconds,
        )


def save_upload(stream: BinaryIO, filename: str, upload_dir: str | Path, config: ExtractionConfig) -> Path:
    """
    @brief Salva l'upload con nome univoco, verificando formato e dimensione.
    @param stream File-like binario dell'upload.
    @param filename Nome originale (per l'estensione).
    @param upload_dir Directory di destinazione.
    @param config Configurazione di estrazione (allowlist e limite).
    @return Path del file salvato.
    @throws FileValidationError Formato non ammesso o file oltre il limite (il file parziale viene rimosso).
    """
    ext = Path(filename or "").suffix.lower()
    if ext not in config.supported_formats:
        raise FileValidationError(
            f"Unsupported file format: {ext or '(none)'}. Supported formats: {', '.join(config.supported_formats)}",
            {"file": filename, "supported_formats": list(config.supported_formats)},
        )

    target_dir = Path(upload_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"receipt-{uuid.uuid4().hex}{ext}"

    size = 0
    try:
        with open(target, "wb") as out:
            while True:
                chunk = stream.read(_CHUNK)
                if not chunk:
                    break
                size += len(chunk)
                if size > config.max_file_bytes:
                    raise FileValidationError(
                        f"File too large. Maximum allowed: {config.max_file_bytes} bytes",
                        {"file": filename, "max_size": config.max_file_bytes},
                        too_large=True,
                    )
                out.write(chunk)
    except BaseException:
        target.unlink(missing_ok=True)
        raise

    logger.info("Upload salvato: %s (%d bytes)", target.name, size)
    return target


def parse_date_hint(value: Optional[str]) -> Optional[datetime]:
    """
    @brief Interpreta la data di acquisto suggerita (ISO 8601).
    @throws ValidationError Se la stringa non è una data ISO valida.
    """
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid purchase_date: {value!r} (expected ISO 8601)",
            {"purchase_date": value},
        ) from e


def merge_code_payload(fields: ParsedReceiptFields, payload: CodePayload, parser: FieldParser) -> ParsedReceiptFields:
    """
    @brief Completa i campi mancanti dal testo con quelli del QR (il testo ha la precedenza).
    @return Campi aggiornati, con la confidenza ricalcolata.
    """
    if not payload.success:
        return fields
    update = {}
    if fields.invoice_number == NOT_FOUND and payload.receipt_id:
        update["invoice_number"] = payload.receipt_id
    if fields.amount <= 0 and payload.amount and payload.amount > 0:
        update["amount"] = payload.amount
    if fields.liters <= 0 and payload.liters and payload.liters > 0:
        update["liters"] = payload.liters
    if not update:
        return fields
    merged = fields.model_copy(update=update)
    return merged.model_copy(update={"confidence": parser.confidence(merged)})


async def _recognize(path: Path, pipeline: IntakePipeline):
    return await asyncio.gather(
        asyncio.to_thread(extract_text, path, pipeline.extraction),
        asyncio.to_thread(decode_payload, path, pipeline.decoder),
    )


def _persist(
    conn: sqlite3.Connection,
    path: Path,
    pipeline: IntakePipeline,
    extracted: ExtractedText,
    payload: CodePayload,
    fields: ParsedReceiptFields,
    user_id: Optional[str],
    store_id: Optional[str],
    record_date: datetime,
) -> tuple[IdentityResolution, int]:
    # lookup identità e INSERT sono bloccanti: girano in un worker thread
    identity = resolve_identity(payload, fields, user_id, store_id, SqliteIdentityStore(conn), pipeline.identity)
    new = NewIntakeRecord(
        user_id=identity.user_id,
        store_id=identity.store_id,
        invoice_number=fields.invoice_number,
        amount=fields.amount,
        date=record_date,
        file_path=str(path),
        extracted_text=extracted,
        parsed_fields=fields,
        code_payload=payload,
    )
    try:
        intake_id = insert_intake_record(conn, new)
    except sqlite3.Error as e:
        logger.error("Creazione record fallita per %s: %s", path.name, e)
        raise PersistenceError("Failed to create intake record", {"file": path.name}) from e
    return identity, intake_id


async def run_intake(
    conn: sqlite3.Connection,
    path: str | Path,
    *,
    pipeline: IntakePipeline,
    user_id: Optional[str],
    store_id: Optional[str],
    purchase_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> UploadResult:
    """
    @brief Esegue la pipeline completa su un file già salvato.
    @param conn Connessione SQLite.
    @param path File caricato (rimosso in caso di errore).
    @param pipeline Configurazioni dei componenti.
    @param user_id Id utente fornito dal chiamante (può essere un segnaposto).
    @param store_id Id negozio fornito dal chiamante (può essere un segnaposto).
    @param purchase_date Data di acquisto indicata dal chiamante; ha la precedenza sulla data del testo.
    @param now Istante di riferimento per il parsing delle date.
    @return UploadResult con il record creato in stato provisional.

    @throws FileValidationError, ExtractionError, ValidationError,
            UserNotFound, StoreNotFound, PersistenceError
    """
    p = Path(path)
    start = time.perf_counter()
    try:
        try:
            extracted, payload = await asyncio.wait_for(_recognize(p, pipeline), pipeline.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ExtractionError(
                f"Recognition timed out after {pipeline.timeout_seconds:.0f} seconds",
                {"file": p.name},
            ) from e

        fields = merge_code_payload(pipeline.parser.parse(extracted.text, now=now), payload, pipeline.parser)
        assessment = pipeline.parser.assess(fields, now=now)
        if not assessment.is_valid:
            raise ValidationError(
                "; ".join(assessment.errors),
                {
                    "errors": assessment.errors,
                    "warnings": assessment.warnings,
                    "parsed_fields": fields.model_dump(mode="json"),
                    "raw_text": extracted.text,
                },
            )

        warnings = list(assessment.warnings)
        if not payload.success:
            warnings.append("No QR code could be decoded")
        if purchase_date is None and fields.date is None:
            warnings.append("Upload time used as purchase date")
        record_date = purchase_date or fields.date or datetime.now()

        identity, intake_id = await asyncio.to_thread(
            _persist, conn, p, pipeline, extracted, payload, fields, user_id, store_id, record_date
        )
    except BaseException as e:
        p.unlink(missing_ok=True)
        logger.warning("Acquisizione %s interrotta (%s): file rimosso", p.name, type(e).__name__)
        raise

    await asyncio.to_thread(
        record_audit,
        conn,
        "intake_created",
        identity.user_id,
        intake_id,
        {"store_id": identity.store_id, "user_method": identity.user_method, "store_method": identity.store_method},
    )
    logger.info("Record %s creato in %.0f ms", intake_id, (time.perf_counter() - start) * 1000)

    return UploadResult(
        intake_id=intake_id,
        parsed_fields=fields,
        code_payload=payload,
        extracted_text=extracted,
        identity=identity,
        warnings=warnings,
    )
