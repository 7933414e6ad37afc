"""
@file repository.py
@brief Layer repository per la persistenza dei record di acquisizione su SQLite.
@ingroup storage_module

@details
Isola SQL e schema dal resto dell'applicazione.

Le transizioni terminali sono un unico compare-and-set
(UPDATE ... WHERE id = ? AND status = 'provisional') eseguito nella stessa
transazione delle righe di ledger: due finalize concorrenti sullo stesso
record non possono assegnare premi due volte.
"""

from __future__ import annotations
import sqlite3
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from ricevute.domain.errors import RecordNotFound
from ricevute.domain.lifecycle import ensure_transition_allowed
from ricevute.domain.models import (
    CodePayload,
    ExtractedText,
    IntakeRecord,
    IntakeStatus,
    NewIntakeRecord,
    ParsedReceiptFields,
    ReconciliationData,
    Rewards,
)


def init_schema(conn: sqlite3.Connection) -> None:
    """
    @brief Applica lo schema SQL (idempotente).
    @param conn Connessione SQLite.
    @return None
    """
    schema_path = Path(__file__).with_name("schema.sql")
    conn.executescript(schema_path.read_text(encoding="utf-8"))
    conn.commit()


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _row_to_record(row: sqlite3.Row) -> IntakeRecord:
    reconciliation = None
    if row["matched_at"] is not None:
        reconciliation = ReconciliationData(
            purchase_entry_id=row["purchase_entry_id"],
            online_purchase_id=row["online_purchase_id"],
            matched_at=row["matched_at"],
            confidence=row["match_confidence"],
        )
    return IntakeRecord(
        id=row["id"],
        user_id=row["user_id"],
        store_id=row["store_id"],
        invoice_number=row["invoice_number"],
        amount=row["amount"],
        date=row["date"],
        status=IntakeStatus(row["status"]),
        file_path=row["file_path"],
        extracted_text=ExtractedText.model_validate_json(row["extracted_text"]),
        parsed_fields=ParsedReceiptFields.model_validate_json(row["parsed_fields"]),
        code_payload=CodePayload.model_validate_json(row["code_payload"]),
        reconciliation=reconciliation,
        points_awarded=row["points_awarded"],
        cashback_awarded=row["cashback_awarded"],
        rejection_reason=row["rejection_reason"],
        processed_by=row["processed_by"],
        processed_at=row["processed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def insert_intake_record(conn: sqlite3.Connection, record: NewIntakeRecord) -> int:
    """
    @brief Crea un record in stato provisional con gli snapshot degli output.
    @param conn Connessione SQLite.
    @param record Dati del nuovo record.
    @return ID (PK) del record inserito.
    """
    now = utcnow()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO intake_records(
          user_id, store_id, invoice_number, amount, date, status, file_path,
          extracted_text, parsed_fields, code_payload, created_at, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.user_id,
            record.store_id,
            record.invoice_number,
            record.amount,
            record.date.isoformat(),
            IntakeStatus.PROVISIONAL.value,
            record.file_path,
            record.extracted_text.model_dump_json(),
            record.parsed_fields.model_dump_json(),
            record.code_payload.model_dump_json(),
            now,
            now,
        ),
    )
    row_id = cur.lastrowid
    if row_id is None:
        raise RuntimeError("Failed to get lastrowid after inserting intake record")
    conn.commit()
    return int(row_id)


def get_intake_record(conn: sqlite3.Connection, intake_id: int) -> IntakeRecord:
    """
    @brief Legge un record per id.
    @throws RecordNotFound Se il record non esiste.
    """
    row = conn.execute("SELECT * FROM intake_records WHERE id = ?", (intake_id,)).fetchone()
    if row is None:
        raise RecordNotFound(f"Intake record {intake_id} not found", {"intake_id": intake_id})
    return _row_to_record(row)


def list_intake_records(
    conn: sqlite3.Connection,
    *,
    user_id: Optional[str] = None,
    store_id: Optional[str] = None,
    status: Optional[IntakeStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[IntakeRecord], int]:
    """
    @brief Elenco filtrato e paginato (più recenti prima).
    @param start_date Data minima inclusa (su data scontrino).
    @param end_date Data massima inclusa (su data scontrino).
    @return Tuple (records della pagina, totale che soddisfa i filtri).
    """
    where: list[str] = []
    params: list[object] = []
    if user_id:
        where.append("user_id = ?")
        params.append(user_id)
    if store_id:
        where.append("store_id = ?")
        params.append(store_id)
    if status is not None:
        where.append("status = ?")
        params.append(IntakeStatus(status).value)
    if start_date is not None:
        where.append("date >= ?")
        params.append(start_date.isoformat())
    if end_date is not None:
        where.append("date < ?")
        params.append((end_date + timedelta(days=1)).isoformat())

    clause = f"WHERE {' AND '.join(where)}" if where else ""
    total = conn.execute(f"SELECT COUNT(*) FROM intake_records {clause}", params).fetchone()[0]
    rows = conn.execute(
        f"SELECT * FROM intake_records {clause} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        [*params, limit, (max(page, 1) - 1) * limit],
    ).fetchall()
    return [_row_to_record(r) for r in rows], int(total)


def find_pending_reconciliation(conn: sqlite3.Connection, limit: int = 100) -> list[IntakeRecord]:
    """@brief Record provisional senza riferimento esterno, più vecchi prima."""
    rows = conn.execute(
        """
        SELECT * FROM intake_records
        WHERE status = 'provisional'
          AND purchase_entry_id IS NULL
          AND online_purchase_id IS NULL
        ORDER BY created_at ASC, id ASC
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [_row_to_record(r) for r in rows]


def _raise_transition_error(conn: sqlite3.Connection, intake_id: int, target: IntakeStatus) -> None:
    row = conn.execute("SELECT status FROM intake_records WHERE id = ?", (intake_id,)).fetchone()
    if row is None:
        raise RecordNotFound(f"Intake record {intake_id} not found", {"intake_id": intake_id})
    ensure_transition_allowed(intake_id, IntakeStatus(row["status"]), target)
    # lo stato era provisional ma l'UPDATE non ha toccato righe: non dovrebbe accadere
    raise RuntimeError(f"Compare-and-set on intake record {intake_id} affected no rows")


def finalize_intake_record(
    conn: sqlite3.Connection,
    record: IntakeRecord,
    rewards: Rewards,
    reconciliation: ReconciliationData,
    actor: str,
) -> IntakeRecord:
    """
    @brief provisional -> final con premi e ledger in un'unica transazione.
    @param conn Connessione SQLite.
    @param record Record letto prima della transizione (per user_id e importo).
    @param rewards Punti e cashback calcolati.
    @param reconciliation Dati di riconciliazione da impostare.
    @param actor Chi approva.
    @return Record aggiornato.

    @throws InvalidStateTransition Se il record non è più provisional.
    @throws RecordNotFound Se il record non esiste.
    """
    now = utcnow()
    matched_at = (reconciliation.matched_at or datetime.now(timezone.utc)).isoformat()
    with conn:
        cur = conn.execute(
            """
            UPDATE intake_records
            SET status = 'final',
                purchase_entry_id = ?, online_purchase_id = ?, matched_at = ?, match_confidence = ?,
                points_awarded = ?, cashback_awarded = ?,
                processed_by = ?, processed_at = ?, updated_at = ?
            WHERE id = ? AND status = 'provisional'
            """,
            (
                reconciliation.purchase_entry_id,
                reconciliation.online_purchase_id,
                matched_at,
                reconciliation.confidence,
                rewards.points,
                rewards.cashback,
                actor,
                now,
                now,
                record.id,
            ),
        )
        if cur.rowcount != 1:
            _raise_transition_error(conn, record.id, IntakeStatus.FINAL)

        description = f"Receipt {record.invoice_number} approved"
        if rewards.points > 0:
            conn.execute(
                "INSERT INTO points_ledger(user_id, intake_id, points, source, description, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (record.user_id, record.id, rewards.points, "receipt_intake", description, now),
            )
        if rewards.cashback > 0:
            conn.execute(
                "INSERT INTO cashback_ledger(user_id, intake_id, amount, source, description, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (record.user_id, record.id, rewards.cashback, "receipt_intake", description, now),
            )
    return get_intake_record(conn, record.id)


def reject_intake_record(conn: sqlite3.Connection, intake_id: int, reason: str, actor: str) -> IntakeRecord:
    """
    @brief provisional -> rejected; nessun premio.
    @throws InvalidStateTransition Se il record non è più provisional.
    @throws RecordNotFound Se il record non esiste.
    """
    now = utcnow()
    with conn:
        cur = conn.execute(
            """
            UPDATE intake_records
            SET status = 'rejected', rejection_reason = ?, processed_by = ?, processed_at = ?, updated_at = ?
            WHERE id = ? AND status = 'provisional'
            """,
            (reason, actor, now, now, intake_id),
        )
        if cur.rowcount != 1:
            _raise_transition_error(conn, intake_id, IntakeStatus.REJECTED)
    return get_intake_record(conn, intake_id)


def count_by_status(conn: sqlite3.Connection) -> dict[str, int]:
    counts = {s.value: 0 for s in IntakeStatus}
    for row in conn.execute("SELECT status, COUNT(*) AS n FROM intake_records GROUP BY status"):
        counts[row["status"]] = row["n"]
    return counts


def ledger_totals(conn: sqlite3.Connection, user_id: str) -> Rewards:
    """@brief Somma di punti e cashback registrati a ledger per un utente."""
    points = conn.execute("SELECT COALESCE(SUM(points), 0) FROM points_ledger WHERE user_id = ?", (user_id,)).fetchone()[0]
    cashback = conn.execute("SELECT COALESCE(SUM(amount), 0) FROM cashback_ledger WHERE user_id = ?", (user_id,)).fetchone()[0]
    return Rewards(points=int(points), cashback=round(float(cashback), 2))


def count_pending_reconciliation(conn: sqlite3.Connection) -> int:
    row = conn.execute(
        """
        SELECT COUNT(*) FROM intake_records
        WHERE status = 'provisional' AND purchase_entry_id IS NULL AND online_purchase_id IS NULL
        """
    ).fetchone()
    return int(row[0])
