"""
@file identity.py
@brief Implementazione SQLite della sorgente identità (utenti e negozi).
@ingroup storage_module

@details
Sola lettura. Il confronto dei nomi è case-insensitive; il telefono viene
confrontato sulle sole cifre. Un lookup per nome che trova più utenti è
considerato ambiguo e non risolve.
"""

from __future__ import annotations
import re
import sqlite3
from typing import Optional


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


class SqliteIdentityStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _single(self, sql: str, params: tuple) -> Optional[str]:
        rows = self.conn.execute(sql, params).fetchmany(2)
        if len(rows) != 1:
            return None
        return rows[0]["id"]

    def find_user_by_name(self, first_name: str, last_name: str) -> Optional[str]:
        return self._single(
            "SELECT id FROM users WHERE lower(first_name) = lower(?) AND lower(last_name) = lower(?)",
            (first_name.strip(), last_name.strip()),
        )

    def find_user_by_email(self, email: str) -> Optional[str]:
        return self._single("SELECT id FROM users WHERE lower(email) = lower(?)", (email.strip(),))

    def find_user_by_phone(self, digits: str) -> Optional[str]:
        target = _digits(digits)
        if not target:
            return None
        matches = [
            row["id"]
            for row in self.conn.execute("SELECT id, phone FROM users WHERE phone IS NOT NULL")
            if _digits(row["phone"]) == target
        ]
        return matches[0] if len(matches) == 1 else None

    def get_user(self, user_id: str) -> Optional[str]:
        return self._single("SELECT id FROM users WHERE id = ?", (user_id,))

    def find_store_by_number(self, number: str) -> Optional[str]:
        return self._single("SELECT id FROM stores WHERE store_number = ?", (str(number).strip(),))

    def find_store_by_name(self, name: str) -> Optional[str]:
        return self._single("SELECT id FROM stores WHERE lower(name) = lower(?)", (name.strip(),))

    def get_store(self, store_id: str) -> Optional[str]:
        return self._single("SELECT id FROM stores WHERE id = ?", (store_id,))
