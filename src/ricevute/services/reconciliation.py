"""
@file reconciliation.py
@brief Confine verso il processo di riconciliazione esterno e assegnazione premi.
@ingroup services_module

@details
Espone due superfici:
- query dei record provisional ancora privi di riferimento esterno
- le due transizioni terminali (approve -> final con premi, reject -> rejected)

Le euristiche di matching del processo esterno non appartengono a questo
modulo: qui vale solo il contratto di transizione.
Dopo il commit: voce di audit (best-effort) e, su approve, notifica.
"""

from __future__ import annotations
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from ricevute.config import RewardPolicy
from ricevute.domain.errors import PersistenceError, ValidationError
from ricevute.domain.lifecycle import compute_rewards, ensure_transition_allowed
from ricevute.domain.models import IntakeRecord, IntakeStatus, ReconciliationData
from ricevute.storage import repository as repo
from .audit import record_audit
from .notifications import Notifier, connection_notifier

logger = logging.getLogger(__name__)


def find_pending_reconciliation(conn: sqlite3.Connection, limit: int = 100) -> list[IntakeRecord]:
    return repo.find_pending_reconciliation(conn, limit=limit)


def approve(
    conn: sqlite3.Connection,
    intake_id: int,
    *,
    actor: str,
    policy: Optional[RewardPolicy] = None,
    purchase_entry_id: Optional[str] = None,
    online_purchase_id: Optional[str] = None,
    confidence: Optional[float] = None,
    notifier: Optional[Notifier] = None,
) -> IntakeRecord:
    """
    @brief Transizione provisional -> final con premi calcolati una sola volta.
    @param conn Connessione SQLite.
    @param intake_id Id del record.
    @param actor Identità di chi approva (utente admin o processo batch).
    @param policy Regole premi.
    @param purchase_entry_id Riferimento al record di acquisto esterno (opzionale).
    @param online_purchase_id Riferimento all'acquisto online (opzionale).
    @param confidence Confidenza del match; default quella dell'approvazione manuale.
    @param notifier Canale notifiche (default: tabella notifications sulla stessa connessione).
    @return Record aggiornato in stato final.

    @throws RecordNotFound Se il record non esiste.
    @throws InvalidStateTransition Se il record è già final o rejected.
    @throws PersistenceError Errore SQLite durante la transizione.
    """
    policy = policy or RewardPolicy()
    if not actor or not actor.strip():
        raise ValidationError("An actor is required to approve an intake record", {"intake_id": intake_id})

    record = repo.get_intake_record(conn, intake_id)
    ensure_transition_allowed(record.id, record.status, IntakeStatus.FINAL)

    rewards = compute_rewards(record.amount, policy)
    reconciliation = ReconciliationData(
        purchase_entry_id=purchase_entry_id,
        online_purchase_id=online_purchase_id,
        matched_at=datetime.now(timezone.utc),
        confidence=policy.manual_match_confidence if confidence is None else confidence,
    )
    try:
        updated = repo.finalize_intake_record(conn, record, rewards, reconciliation, actor.strip())
    except sqlite3.Error as e:
        logger.error("Finalize fallito per record %s: %s", intake_id, e)
        raise PersistenceError(f"Failed to finalize intake record {intake_id}", {"intake_id": intake_id}) from e

    logger.info(
        "Record %s approvato da %s: points=%d cashback=%.2f",
        intake_id, actor, rewards.points, rewards.cashback,
    )
    record_audit(
        conn,
        "intake_approved",
        actor,
        intake_id,
        {
            "points": rewards.points,
            "cashback": rewards.cashback,
            "purchase_entry_id": purchase_entry_id,
            "online_purchase_id": online_purchase_id,
        },
    )
    notify = notifier or connection_notifier(conn)
    notify(
        updated.user_id,
        "Receipt approved",
        f"Your receipt {updated.invoice_number} was approved: "
        f"{rewards.points} points and {rewards.cashback:.2f} cashback.",
    )
    return updated


def reject(conn: sqlite3.Connection, intake_id: int, *, actor: str, reason: str) -> IntakeRecord:
    """
    @brief Transizione provisional -> rejected; nessun premio.
    @throws ValidationError Motivo o attore mancanti.
    @throws RecordNotFound Se il record non esiste.
    @throws InvalidStateTransition Se il record è già final o rejected.
    """
    if not reason or not reason.strip():
        raise ValidationError("A rejection reason is required", {"intake_id": intake_id})
    if not actor or not actor.strip():
        raise ValidationError("An actor is required to reject an intake record", {"intake_id": intake_id})

    try:
        updated = repo.reject_intake_record(conn, intake_id, reason.strip(), actor.strip())
    except sqlite3.Error as e:
        logger.error("Reject fallito per record %s: %s", intake_id, e)
        raise PersistenceError(f"Failed to reject intake record {intake_id}", {"intake_id": intake_id}) from e

    logger.info("Record %s rifiutato da %s: %s", intake_id, actor, reason)
    record_audit(conn, "intake_rejected", actor, intake_id, {"reason": reason})
    return updated


def reconciliation_stats(conn: sqlite3.Connection) -> dict[str, int]:
    """@brief Conteggio record per stato, più quelli in attesa di riferimento esterno."""
    counts = repo.count_by_status(conn)
    pending = repo.count_pending_reconciliation(conn)
    return {**counts, "pending_reconciliation": pending, "total": sum(counts.values())}
