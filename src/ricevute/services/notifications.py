"""
@file notifications.py
@brief Dispatch fire-and-forget delle notifiche all'utente.
@ingroup services_module
"""

from __future__ import annotations
import logging
import sqlite3
from typing import Callable

from ricevute.storage.db import connect
from ricevute.storage.repository import utcnow

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str, str], None]


def send_notification(conn: sqlite3.Connection, user_id: str, title: str, message: str) -> None:
    """@brief Accoda la notifica; gli errori vengono solo registrati."""
    try:
        with conn:
            conn.execute(
                "INSERT INTO notifications(user_id, title, message, created_at) VALUES (?, ?, ?, ?)",
                (user_id, title, message, utcnow()),
            )
    except sqlite3.Error as e:
        logger.warning("Notifica non inviata a %s: %s", user_id, e)


def dispatch_notification(db_path: str, user_id: str, title: str, message: str) -> None:
    """
    @brief Variante con connessione propria, per l'esecuzione in background
    dopo la chiusura della richiesta HTTP.
    """
    try:
        conn = connect(db_path)
    except sqlite3.Error as e:
        logger.warning("Notifica non inviata a %s: %s", user_id, e)
        return
    try:
        send_notification(conn, user_id, title, message)
    finally:
        conn.close()


def connection_notifier(conn: sqlite3.Connection) -> Notifier:
    def _notify(user_id: str, title: str, message: str) -> None:
        send_notification(conn, user_id, title, message)

    return _notify
