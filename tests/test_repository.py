from datetime import date, datetime

import pytest

from ricevute.config import RewardPolicy
from ricevute.domain.errors import InvalidStateTransition, RecordNotFound, ValidationError
from ricevute.domain.models import IntakeStatus, ReconciliationData, Rewards
from ricevute.services import reconciliation
from ricevute.services.audit import record_audit
from ricevute.storage.db import connect
from ricevute.storage.repository import (
    finalize_intake_record,
    get_intake_record,
    ledger_totals,
    list_intake_records,
)


def _audit_rows(conn, action):
    return conn.execute("SELECT * FROM audit_log WHERE action = ?", (action,)).fetchall()


def test_insert_and_get_round_trip(conn, make_record):
    rid = make_record()
    rec = get_intake_record(conn, rid)
    assert rec.status == IntakeStatus.PROVISIONAL
    assert rec.amount == 240.0
    assert rec.date == datetime(2025, 9, 17, 23, 8)
    assert rec.extracted_text.confidence == 0.87
    assert rec.parsed_fields.invoice_number == "123456"
    assert rec.reconciliation is None
    assert rec.points_awarded == 0


def test_missing_record(conn):
    with pytest.raises(RecordNotFound):
        get_intake_record(conn, 999)
    with pytest.raises(RecordNotFound):
        reconciliation.approve(conn, 999, actor="admin")


def test_approve_awards_once(conn, make_record):
    rid = make_record()
    rec = reconciliation.approve(conn, rid, actor="admin", purchase_entry_id="PE-1")
    assert rec.status == IntakeStatus.FINAL
    assert (rec.points_awarded, rec.cashback_awarded) == (24, pytest.approx(4.8))
    assert rec.reconciliation.purchase_entry_id == "PE-1"
    assert rec.reconciliation.confidence == 0.9
    assert rec.processed_by == "admin"

    with pytest.raises(InvalidStateTransition):
        reconciliation.approve(conn, rid, actor="admin")
    with pytest.raises(InvalidStateTransition):
        reconciliation.reject(conn, rid, actor="admin", reason="late")

    totals = ledger_totals(conn, "u-1")
    assert totals.points == 24
    assert totals.cashback == pytest.approx(4.8)
    assert len(_audit_rows(conn, "intake_approved")) == 1
    assert conn.execute("SELECT COUNT(*) FROM notifications WHERE user_id = 'u-1'").fetchone()[0] == 1


def test_stale_finalize_cannot_award(conn, make_record):
    rid = make_record()
    stale = get_intake_record(conn, rid)
    reconciliation.reject(conn, rid, actor="admin", reason="duplicate")

    with pytest.raises(InvalidStateTransition):
        finalize_intake_record(conn, stale, Rewards(points=24, cashback=4.8), ReconciliationData(), "batch")
    assert ledger_totals(conn, "u-1") == Rewards(points=0, cashback=0.0)
    assert get_intake_record(conn, rid).status == IntakeStatus.REJECTED


def test_reject_is_terminal_and_needs_reason(conn, make_record):
    rid = make_record()
    with pytest.raises(ValidationError):
        reconciliation.reject(conn, rid, actor="admin", reason="  ")
    with pytest.raises(ValidationError):
        reconciliation.approve(conn, rid, actor="")

    rec = reconciliation.reject(conn, rid, actor="admin", reason="Not a fuel receipt")
    assert rec.status == IntakeStatus.REJECTED
    assert rec.rejection_reason == "Not a fuel receipt"
    assert rec.points_awarded == 0
    with pytest.raises(InvalidStateTransition):
        reconciliation.approve(conn, rid, actor="admin")
    assert len(_audit_rows(conn, "intake_rejected")) == 1


def test_zero_cashback_policy_skips_ledger_row(conn, make_record):
    rid = make_record(amount=5.0)
    rec = reconciliation.approve(conn, rid, actor="admin", policy=RewardPolicy(cashback_rate=0.0))
    assert (rec.points_awarded, rec.cashback_awarded) == (0, 0.0)
    assert conn.execute("SELECT COUNT(*) FROM points_ledger").fetchone()[0] == 0
    assert conn.execute("SELECT COUNT(*) FROM cashback_ledger").fetchone()[0] == 0


def test_pending_reconciliation_query(conn, make_record):
    a = make_record()
    b = make_record(invoice="2")
    c = make_record(invoice="3")
    reconciliation.approve(conn, b, actor="admin")
    reconciliation.reject(conn, c, actor="admin", reason="blurry")

    pending = reconciliation.find_pending_reconciliation(conn)
    assert [r.id for r in pending] == [a]


def test_list_filters_and_pagination(conn, make_record):
    make_record(user_id="u-1", when=datetime(2025, 9, 1, 10, 0))
    make_record(user_id="u-1", when=datetime(2025, 9, 10, 10, 0))
    other = make_record(user_id="u-2", when=datetime(2025, 9, 10, 18, 0))
    reconciliation.approve(conn, other, actor="admin")

    records, total = list_intake_records(conn, user_id="u-1")
    assert total == 2

    records, total = list_intake_records(conn, status=IntakeStatus.FINAL)
    assert [r.id for r in records] == [other]

    records, total = list_intake_records(conn, start_date=date(2025, 9, 10), end_date=date(2025, 9, 10))
    assert total == 2

    records, total = list_intake_records(conn, page=2, limit=2)
    assert total == 3
    assert len(records) == 1


def test_stats(conn, make_record):
    make_record()
    rid = make_record(invoice="2")
    reconciliation.approve(conn, rid, actor="admin")
    stats = reconciliation.reconciliation_stats(conn)
    assert stats == {"provisional": 1, "final": 1, "rejected": 0, "pending_reconciliation": 1, "total": 2}


def test_audit_failure_is_swallowed(tmp_path):
    c = connect(str(tmp_path / "a.sqlite"))
    c.close()
    assert record_audit(c, "intake_created", "u-1", 1) is False
