import asyncio
import dataclasses
import io
import threading
import time
from datetime import datetime

import pytest

from ricevute.config import ExtractionConfig, Settings
from ricevute.domain.errors import ExtractionError, FileValidationError, UserNotFound, ValidationError
from ricevute.domain.models import CodePayload, IntakeStatus
from ricevute.services import intake, reconciliation
from ricevute.services.intake import IntakePipeline, merge_code_payload, parse_date_hint, run_intake, save_upload
from ricevute.storage.repository import get_intake_record, ledger_totals

from conftest import NOW


@pytest.fixture()
def pipeline(tmp_path):
    return IntakePipeline.from_settings(Settings(db_path=str(tmp_path / "t.sqlite"), upload_dir=str(tmp_path)))


@pytest.fixture()
def upload(tmp_path):
    p = tmp_path / "receipt.png"
    p.write_bytes(b"fake image bytes")
    return p


def _run(conn, path, pipeline, user_id="placeholder-user-id", store_id="placeholder-store-id", **kw):
    return asyncio.run(run_intake(conn, path, pipeline=pipeline, user_id=user_id, store_id=store_id, now=NOW, **kw))


def test_upload_creates_provisional_record_then_approve(conn, pipeline, upload, fake_recognition, add_user, add_store):
    maria = add_user("Maria", "Silva")
    shop = add_store("POSTO CENTRAL LTDA")

    result = _run(conn, upload, pipeline)
    assert result.status == IntakeStatus.PROVISIONAL
    assert result.identity.user_id == maria
    assert result.identity.store_id == shop
    assert result.parsed_fields.amount == 240.0
    assert result.warnings == ["No QR code could be decoded"]
    assert {c[0] for c in fake_recognition["calls"]} == {"extract", "decode"}
    assert upload.exists()

    rec = get_intake_record(conn, result.intake_id)
    assert rec.status == IntakeStatus.PROVISIONAL
    assert rec.invoice_number == "123456"
    assert rec.points_awarded == 0

    final = reconciliation.approve(conn, result.intake_id, actor="admin")
    assert final.points_awarded == 24
    assert final.cashback_awarded == pytest.approx(4.8)
    assert ledger_totals(conn, maria).points == 24
    n = conn.execute("SELECT COUNT(*) FROM audit_log WHERE action = 'intake_approved'").fetchone()[0]
    assert n == 1
    n = conn.execute("SELECT COUNT(*) FROM audit_log WHERE action = 'intake_created'").fetchone()[0]
    assert n == 1


def test_code_payload_fills_missing_fields(conn, pipeline, upload, fake_recognition, add_user, add_store):
    add_user("Maria", "Silva")
    add_store("POSTO CENTRAL LTDA")
    fake_recognition["text"] = "POSTO CENTRAL LTDA\nData: 17/09/2025 10:00"
    fake_recognition["payload"] = CodePayload(
        receipt_id="QR-1", amount=50.0, customer_name="Maria Silva", success=True, method="scan", confidence=0.9
    )

    result = _run(conn, upload, pipeline)
    assert result.parsed_fields.invoice_number == "QR-1"
    assert result.parsed_fields.amount == 50.0
    assert result.parsed_fields.confidence == pytest.approx(0.8)
    assert result.identity.user_method == "code_customer_name"
    assert "No QR code could be decoded" not in result.warnings


def test_merge_keeps_text_values(pipeline):
    fields = pipeline.parser.parse("TOTAL R$ 10,00", now=NOW)
    merged = merge_code_payload(fields, CodePayload(amount=99.0, success=True), pipeline.parser)
    assert merged.amount == 10.0


def test_rejected_document_removes_file(conn, pipeline, upload, fake_recognition):
    fake_recognition["text"] = "hello world"
    with pytest.raises(ValidationError) as exc:
        _run(conn, upload, pipeline)
    assert "Amount must be greater than zero" in exc.value.details["errors"]
    assert exc.value.details["raw_text"] == "hello world"
    assert not upload.exists()
    assert conn.execute("SELECT COUNT(*) FROM intake_records").fetchone()[0] == 0


def test_unknown_user_removes_file(conn, pipeline, upload, fake_recognition, add_store):
    add_store("POSTO CENTRAL LTDA")
    with pytest.raises(UserNotFound):
        _run(conn, upload, pipeline)
    assert not upload.exists()


def test_extraction_failure_removes_file(conn, pipeline, upload, fake_recognition, monkeypatch):
    def fail(path, config):
        raise ExtractionError("Image OCR processing failed: boom")

    monkeypatch.setattr("ricevute.services.intake.extract_text", fail)
    with pytest.raises(ExtractionError):
        _run(conn, upload, pipeline)
    assert not upload.exists()


def test_timeout_removes_file(conn, pipeline, upload, fake_recognition, monkeypatch):
    def slow(path, config):
        time.sleep(0.5)

    monkeypatch.setattr("ricevute.services.intake.extract_text", slow)
    with pytest.raises(ExtractionError) as exc:
        _run(conn, upload, dataclasses.replace(pipeline, timeout_seconds=0.05))
    assert "timed out" in exc.value.message
    assert not upload.exists()


def test_purchase_date_hint():
    assert parse_date_hint(None) is None
    assert parse_date_hint("2025-09-17T23:08:00").hour == 23
    with pytest.raises(ValidationError):
        parse_date_hint("ieri")


def test_save_upload_checks_format_and_size(tmp_path):
    with pytest.raises(FileValidationError) as exc:
        save_upload(io.BytesIO(b"x"), "photo.webp", tmp_path / "up", ExtractionConfig())
    assert not exc.value.too_large

    with pytest.raises(FileValidationError) as exc:
        save_upload(io.BytesIO(b"x" * 100), "photo.png", tmp_path / "up", ExtractionConfig(max_file_bytes=10))
    assert exc.value.too_large
    assert list((tmp_path / "up").iterdir()) == []

    saved = save_upload(io.BytesIO(b"abc"), "Photo.PNG", tmp_path / "up", ExtractionConfig())
    assert saved.suffix == ".png"
    assert saved.read_bytes() == b"abc"


def test_purchase_date_hint_overrides_text_date(conn, pipeline, upload, fake_recognition, add_user, add_store):
    add_user("Maria", "Silva")
    add_store("POSTO CENTRAL LTDA")
    hint = datetime(2025, 9, 1, 10, 0)

    result = _run(conn, upload, pipeline, purchase_date=hint)
    assert result.parsed_fields.date == datetime(2025, 9, 17, 23, 8)
    assert get_intake_record(conn, result.intake_id).date == hint
    assert "Upload time used as purchase date" not in result.warnings


def test_database_work_runs_off_the_event_loop(conn, pipeline, upload, fake_recognition, add_user, add_store, monkeypatch):
    add_user("Maria", "Silva")
    add_store("POSTO CENTRAL LTDA")
    seen = []
    real_insert = intake.insert_intake_record

    def tracking_insert(c, record):
        seen.append(threading.current_thread())
        return real_insert(c, record)

    monkeypatch.setattr("ricevute.services.intake.insert_intake_record", tracking_insert)
    _run(conn, upload, pipeline)
    assert len(seen) == 1
    assert seen[0] is not threading.main_thread()
