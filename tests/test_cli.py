import json

from ricevute.cli import main


def test_pending_lists_provisional_records(tmp_path, capsys, make_record):
    rid = make_record()
    assert main(["--db", str(tmp_path / "t.sqlite"), "pending"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert [r["id"] for r in out] == [rid]


def test_reconcile_from_command_line(tmp_path, capsys, make_record):
    rid = make_record()
    db = str(tmp_path / "t.sqlite")
    assert main(["--db", db, "reconcile", str(rid), "approve", "--actor", "batch"]) == 0
    assert json.loads(capsys.readouterr().out)["points_awarded"] == 24

    assert main(["--db", db, "reconcile", str(rid), "reject", "--actor", "batch", "--reason", "dup"]) == 2
    assert json.loads(capsys.readouterr().out)["code"] == "invalid_state_transition"


def test_upload_missing_file(tmp_path, capsys):
    assert main(["--db", str(tmp_path / "t.sqlite"), "upload", "--image", str(tmp_path / "nope.png")]) == 2
    assert json.loads(capsys.readouterr().out)["code"] == "file_validation_error"
