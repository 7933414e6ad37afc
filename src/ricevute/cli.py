"""
@file cli.py
@brief CLI per acquisizione scontrini, riconciliazione e consultazione.
@ingroup cli_module

@details
Comandi:
- dump-json: estrazione + QR + parsing, stampa il JSON (senza DB)
- upload: pipeline completa, crea il record provisional su SQLite
- reconcile: approva o rifiuta un record
- pending: elenca i record in attesa di riconciliazione

Gli errori di dominio vengono stampati come JSON con exit status 2.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import shutil
import sys
from datetime import datetime
from pathlib import Path

from ricevute.config import Settings, get_settings, reward_policy
from ricevute.domain.errors import FileValidationError, IntakeError
from ricevute.ocr.engine import extract_text
from ricevute.ocr.qrcode import decode_payload
from ricevute.services import reconciliation
from ricevute.services.intake import IntakePipeline, merge_code_payload, parse_date_hint, run_intake
from ricevute.storage.db import connect


def dump_json(image: str, settings: Settings) -> dict:
    """
    @brief Esegue estrazione, decodifica QR e parsing senza persistere.
    @param image Path del documento.
    @param settings Impostazioni correnti.
    @return Dizionario JSON-serializzabile.
    """
    pipeline = IntakePipeline.from_settings(settings)
    extracted = extract_text(image, pipeline.extraction)
    payload = decode_payload(image, pipeline.decoder)
    fields = merge_code_payload(pipeline.parser.parse(extracted.text), payload, pipeline.parser)
    assessment = pipeline.parser.assess(fields)
    return {
        "extracted_text": extracted.model_dump(mode="json"),
        "code_payload": payload.model_dump(mode="json"),
        "parsed_fields": fields.model_dump(mode="json"),
        "assessment": assessment.model_dump(mode="json"),
    }


def upload(image: str, user_id: str, store_id: str, purchase_date: str | None, settings: Settings) -> dict:
    """
    @brief Copia il documento nella directory upload ed esegue la pipeline completa.
    @note Il file originale non viene toccato; la copia viene rimossa in caso di errore.
    """
    pipeline = IntakePipeline.from_settings(settings)
    src = Path(image)
    if not src.is_file():
        raise FileValidationError(f"File not found: {image}", {"file": image})
    hint = parse_date_hint(purchase_date)
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    target = upload_dir / f"cli-{datetime.now():%Y%m%d%H%M%S}-{src.name}"
    shutil.copyfile(src, target)
    conn = connect(settings.db_path)
    try:
        result = asyncio.run(
            run_intake(conn, target, pipeline=pipeline, user_id=user_id, store_id=store_id, purchase_date=hint)
        )
    finally:
        conn.close()
    return result.model_dump(mode="json")


def main(argv: list[str] | None = None) -> int:
    """
    @brief Entry point CLI.
    @return Exit status (0 ok, 2 errore di dominio).
    """
    p = argparse.ArgumentParser(prog="ricevute")
    p.add_argument("--db", default=None, help="Path SQLite (default: RICEVUTE_DB_PATH o data/ricevute.sqlite)")
    p.add_argument("--log-level", default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    dump = sub.add_parser("dump-json", help="Estrazione + QR + parsing, stampa il JSON (senza DB)")
    dump.add_argument("--image", required=True)

    up = sub.add_parser("upload", help="Pipeline completa: crea un record provisional")
    up.add_argument("--image", required=True)
    up.add_argument("--user-id", default="placeholder-user-id")
    up.add_argument("--store-id", default="placeholder-store-id")
    up.add_argument("--purchase-date", default=None, help="ISO string, es. 2025-09-17T23:08:00")

    rec = sub.add_parser("reconcile", help="Approva o rifiuta un record")
    rec.add_argument("intake_id", type=int)
    rec.add_argument("action", choices=["approve", "reject"])
    rec.add_argument("--actor", required=True)
    rec.add_argument("--reason", default=None)
    rec.add_argument("--purchase-entry-id", default=None)
    rec.add_argument("--online-purchase-id", default=None)

    pend = sub.add_parser("pending", help="Record provisional in attesa di riconciliazione")
    pend.add_argument("--limit", type=int, default=100)

    args = p.parse_args(argv)

    settings = get_settings()
    if args.db:
        settings = settings.model_copy(update={"db_path": args.db})
    logging.basicConfig(level=(args.log_level or settings.log_level).upper())

    try:
        if args.cmd == "dump-json":
            out = dump_json(args.image, settings)
        elif args.cmd == "upload":
            out = upload(args.image, args.user_id, args.store_id, args.purchase_date, settings)
        else:
            conn = connect(settings.db_path)
            try:
                if args.cmd == "reconcile" and args.action == "approve":
                    record = reconciliation.approve(
                        conn,
                        args.intake_id,
                        actor=args.actor,
                        policy=reward_policy(settings),
                        purchase_entry_id=args.purchase_entry_id,
                        online_purchase_id=args.online_purchase_id,
                    )
                    out = record.model_dump(mode="json")
                elif args.cmd == "reconcile":
                    record = reconciliation.reject(conn, args.intake_id, actor=args.actor, reason=args.reason or "")
                    out = record.model_dump(mode="json")
                else:
                    records = reconciliation.find_pending_reconciliation(conn, limit=args.limit)
                    out = [r.model_dump(mode="json") for r in records]
            finally:
                conn.close()
    except IntakeError as e:
        print(json.dumps(e.to_dict(), indent=2, ensure_ascii=False, default=str))
        return 2

    print(json.dumps(out, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
