"""
@file routes.py
@brief Endpoints HTTP per upload, riconciliazione e consultazione dei record.
@ingroup api_module

@details
Espone:
- POST /api/intake/upload
- POST /api/intake/{intake_id}/reconcile
- GET  /api/intake, /api/intake/pending, /api/intake/{intake_id}
- GET  /api/reconciliation/stats
- GET  /api/ocr-status
- GET  /health

Gli errori di dominio sono convertiti in JSON dagli handler in main.py.
"""

from __future__ import annotations
import asyncio
import math
import sqlite3
from datetime import date
from typing import Iterator, Literal, Optional

import pytesseract
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, Field

from ricevute.config import Settings, get_settings, reward_policy
from ricevute.domain.models import IntakeStatus
from ricevute.services import reconciliation
from ricevute.services.intake import IntakePipeline, parse_date_hint, run_intake, save_upload
from ricevute.services.notifications import dispatch_notification
from ricevute.storage.db import connect
from ricevute.storage.repository import get_intake_record, list_intake_records

router = APIRouter()


def get_conn(settings: Settings = Depends(get_settings)) -> Iterator[sqlite3.Connection]:
    conn = connect(settings.db_path)
    try:
        yield conn
    finally:
        conn.close()


class ReconcileRequest(BaseModel):
    """
    @brief Decisione di riconciliazione.
    @details
    approve richiede solo l'attore; reject richiede anche il motivo.
    """
    action: Literal["approve", "reject"]
    actor: str = Field(min_length=1)
    reason: Optional[str] = None
    purchase_entry_id: Optional[str] = None
    online_purchase_id: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


@router.post("/api/intake/upload")
async def upload_receipt(
    receipt: UploadFile = File(...),
    user_id: str = Form(...),
    store_id: str = Form(...),
    purchase_date: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
    conn: sqlite3.Connection = Depends(get_conn),
):
    """
    @brief Acquisisce uno scontrino e crea un record provisional.
    @return {"success": True, "data": {...}} con id, campi, payload QR e warnings.
    """
    hint = parse_date_hint(purchase_date)
    pipeline = IntakePipeline.from_settings(settings)
    path = await asyncio.to_thread(
        save_upload, receipt.file, receipt.filename or "", settings.upload_dir, pipeline.extraction
    )
    result = await run_intake(
        conn, path, pipeline=pipeline, user_id=user_id, store_id=store_id, purchase_date=hint
    )
    return {"success": True, "message": "Receipt processed successfully", "data": result.model_dump(mode="json")}


@router.post("/api/intake/{intake_id}/reconcile")
def reconcile_intake(
    intake_id: int,
    req: ReconcileRequest,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    conn: sqlite3.Connection = Depends(get_conn),
):
    """
    @brief Applica una decisione approve/reject al record.
    @note La notifica di approvazione parte in background dopo la risposta.
    """
    if req.action == "approve":
        def notify(user_id: str, title: str, message: str) -> None:
            background_tasks.add_task(dispatch_notification, settings.db_path, user_id, title, message)

        record = reconciliation.approve(
            conn,
            intake_id,
            actor=req.actor,
            policy=reward_policy(settings),
            purchase_entry_id=req.purchase_entry_id,
            online_purchase_id=req.online_purchase_id,
            confidence=req.confidence,
            notifier=notify,
        )
        message = "Receipt approved"
    else:
        record = reconciliation.reject(conn, intake_id, actor=req.actor, reason=req.reason or "")
        message = "Receipt rejected"
    return {"success": True, "message": message, "data": record.model_dump(mode="json")}


@router.get("/api/intake")
def list_intake(
    user_id: Optional[str] = None,
    store_id: Optional[str] = None,
    status: Optional[IntakeStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    conn: sqlite3.Connection = Depends(get_conn),
):
    records, total = list_intake_records(
        conn,
        user_id=user_id,
        store_id=store_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": [r.model_dump(mode="json") for r in records],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.get("/api/intake/pending")
def list_pending(limit: int = Query(100, ge=1, le=500), conn: sqlite3.Connection = Depends(get_conn)):
    records = reconciliation.find_pending_reconciliation(conn, limit=limit)
    return {"success": True, "data": [r.model_dump(mode="json") for r in records]}


@router.get("/api/intake/{intake_id}")
def get_intake(intake_id: int, conn: sqlite3.Connection = Depends(get_conn)):
    return {"success": True, "data": get_intake_record(conn, intake_id).model_dump(mode="json")}


@router.get("/api/reconciliation/stats")
def stats(conn: sqlite3.Connection = Depends(get_conn)):
    return {"success": True, "data": reconciliation.reconciliation_stats(conn)}


@router.get("/api/ocr-status")
def ocr_status(settings: Settings = Depends(get_settings)):
    """
    @brief Disponibilità del motore OCR e parametri di upload.
    @return {"success": True, "data": {"available": bool, "version": str|None, ...}}
    """
    try:
        version = str(pytesseract.get_tesseract_version())
        available = True
    except (pytesseract.TesseractNotFoundError, OSError):
        version = None
        available = False
    return {
        "success": True,
        "data": {
            "available": available,
            "version": version,
            "languages": settings.ocr_lang,
            "supported_formats": list(settings.supported_formats),
            "max_file_size": settings.max_upload_bytes,
        },
    }


@router.get("/health")
def health():
    """
    @brief Healthcheck semplice.
    @return {"ok": True}
    """
    return {"ok": True}
