"""
@file audit.py
@brief Scrittura best-effort dell'audit log.
@ingroup services_module

@details
Un errore di scrittura viene registrato a WARNING e non arriva mai al
chiamante: l'audit non deve far fallire la richiesta.
"""

from __future__ import annotations
import json
import logging
import sqlite3
from typing import Any, Optional

from ricevute.storage.repository import utcnow

logger = logging.getLogger(__name__)


def record_audit(
    conn: sqlite3.Connection,
    action: str,
    actor: str,
    entity_id: Optional[int | str],
    details: Optional[dict[str, Any]] = None,
) -> bool:
    """
    @brief Aggiunge una voce di audit.
    @return True se la voce è stata scritta.
    """
    try:
        with conn:
            conn.execute(
                "INSERT INTO audit_log(action, actor, entity_id, details, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    action,
                    actor,
                    None if entity_id is None else str(entity_id),
                    json.dumps(details or {}, ensure_ascii=False, default=str),
                    utcnow(),
                ),
            )
    except sqlite3.Error as e:
        logger.warning("Audit log non scritto (%s su %s): %s", action, entity_id, e)
        return False
    return True
