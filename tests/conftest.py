"""
Shared pytest fixtures: SQLite on tmp_path, identity seed helpers, a
canned receipt text and its recognition outputs.
"""
import uuid
from datetime import datetime

import pytest

from ricevute.domain.models import CodePayload, ExtractedText, NewIntakeRecord, ParsedReceiptFields
from ricevute.storage.db import connect
from ricevute.storage.repository import insert_intake_record

RECEIPT_TEXT = """POSTO CENTRAL LTDA
CNPJ: 12.345.678/0001-90
Rua das Flores, 100
CUPOM FISCAL Nº 123456
Data: 17/09/2025 - 11:08 PM
Cliente: Maria Silva
Litros: 20,00
TOTAL R$ 240,00
PAGAMENTO: PIX"""

NOW = datetime(2025, 9, 20, 12, 0)


@pytest.fixture()
def conn(tmp_path):
    c = connect(str(tmp_path / "t.sqlite"))
    yield c
    c.close()


@pytest.fixture()
def add_user(conn):
    def _add(first_name, last_name="", email=None, phone=None):
        user_id = str(uuid.uuid4())
        conn.execute(
            "INSERT INTO users(id, first_name, last_name, email, phone) VALUES (?, ?, ?, ?, ?)",
            (user_id, first_name, last_name, email, phone),
        )
        conn.commit()
        return user_id

    return _add


@pytest.fixture()
def add_store(conn):
    def _add(name, store_number=None):
        store_id = str(uuid.uuid4())
        conn.execute(
            "INSERT INTO stores(id, name, store_number) VALUES (?, ?, ?)",
            (store_id, name, store_number),
        )
        conn.commit()
        return store_id

    return _add


@pytest.fixture()
def make_record(conn):
    def _make(amount=240.0, user_id="u-1", store_id="s-1", when=datetime(2025, 9, 17, 23, 8), invoice="123456"):
        return insert_intake_record(
            conn,
            NewIntakeRecord(
                user_id=user_id,
                store_id=store_id,
                invoice_number=invoice,
                amount=amount,
                date=when,
                file_path="data/uploads/x.png",
                extracted_text=ExtractedText(text=RECEIPT_TEXT, confidence=0.87, method="ocr"),
                parsed_fields=ParsedReceiptFields(amount=amount, invoice_number=invoice),
                code_payload=CodePayload(),
            ),
        )

    return _make


@pytest.fixture()
def fake_recognition(monkeypatch):
    """Replaces extraction and QR decoding inside the intake service."""
    state = {"text": RECEIPT_TEXT, "payload": CodePayload(error="No QR code found"), "calls": []}

    def _extract(path, config):
        state["calls"].append(("extract", str(path)))
        return ExtractedText(text=state["text"], confidence=0.87, duration_ms=5, method="ocr")

    def _decode(path, config):
        state["calls"].append(("decode", str(path)))
        return state["payload"]

    monkeypatch.setattr("ricevute.services.intake.extract_text", _extract)
    monkeypatch.setattr("ricevute.services.intake.decode_payload", _decode)
    return state
