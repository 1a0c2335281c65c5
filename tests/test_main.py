import csv
import os
import pytest
from pathlib import Path
from backup_auditor import main as cli

@pytest.fixture(autouse=True)
def no_db_env(monkeypatch):
    monkeypatch.delenv("BACKUP_DB", raising=False)

def test_index_missing_directory_is_config_error(tmp_path):
    code = cli.main(["index", str(tmp_path / "absent"), "--db", str(tmp_path / "x.db"), "--workers", "1"])
    assert code == cli.EXIT_CONFIG
    assert not (tmp_path / "x.db").exists()

def test_validate_without_database_is_config_error(make_tree, tmp_path):
    root = make_tree("drive", {"a.txt": "A"})
    assert cli.main(["validate", str(root)]) == cli.EXIT_CONFIG
    assert cli.main(["validate", str(root), "--db", str(tmp_path / "absent.db")]) == cli.EXIT_CONFIG

def test_index_then_validate_with_report(make_tree, tmp_path):
    root = make_tree("drive", {"a.txt": "A", "b/c.txt": "C"})
    db = tmp_path / "index.db"
    report = tmp_path / "reports" / "index.txt"

    assert cli.main(["index", str(root), "--db", str(db), "--workers", "2", "-r", str(report)]) == cli.EXIT_OK
    lines = report.read_text(encoding="utf-8").splitlines()
    assert "MISS: /a.txt (indexed)" in lines
    assert "MISS: /b/c.txt (indexed)" in lines

    (root / "a.txt").write_text("changed")
    check = tmp_path / "validate.txt"
    assert cli.main(["validate", str(root), "--db", str(db), "--workers", "1", "-r", str(check)]) == cli.EXIT_OK

    lines = check.read_text(encoding="utf-8").splitlines()
    assert "DIFF: /a.txt" in lines
    assert not any(line.startswith("MISS:") for line in lines)

def test_database_from_environment(make_tree, tmp_path, monkeypatch):
    root = make_tree("drive", {"a.txt": "A"})
    db = tmp_path / "env.db"
    monkeypatch.setenv("BACKUP_DB", str(db))

    assert cli.main(["index", str(root), "--workers", "1", "-r", str(tmp_path / "r.txt")]) == cli.EXIT_OK
    assert db.is_file()
    assert cli.main(["validate", str(root), "--workers", "1", "-r", str(tmp_path / "v.txt")]) == cli.EXIT_OK

def test_remove_missing_prunes_index(make_tree, tmp_path):
    root = make_tree("drive", {"a.txt": "A", "b.txt": "B"})
    db = tmp_path / "index.db"
    assert cli.main(["index", str(root), "--db", str(db), "--workers", "1", "-r", str(tmp_path / "1.txt")]) == cli.EXIT_OK

    (root / "b.txt").unlink()
    report = tmp_path / "2.txt"
    assert cli.main(["index", str(root), "--db", str(db), "--workers", "1", "--remove-missing", "-r", str(report)]) == cli.EXIT_OK
    assert "REMOVED: /b.txt" in report.read_text(encoding="utf-8").splitlines()

def test_export_csv(make_tree, tmp_path):
    root = make_tree("drive", {"a.txt": "A", "b.txt": "B"})
    db = tmp_path / "index.db"
    out = tmp_path / "export.csv"
    cli.main(["index", str(root), "--db", str(db), "--workers", "1", "-r", str(tmp_path / "r.txt")])

    assert cli.main(["export", "--db", str(db), "-o", str(out)]) == cli.EXIT_OK
    with open(out, "r", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert sorted(r["Key"] for r in rows) == ["/a.txt", "/b.txt"]

def test_export_without_database(tmp_path):
    assert cli.main(["export", "--db", str(tmp_path / "absent.db"), "-o", str(tmp_path / "o.csv")]) == cli.EXIT_CONFIG

def test_compare_dry_run_copies_nothing(make_tree, tmp_path):
    base = make_tree("base", {"a.txt": "A"})
    other = make_tree("other", {})
    report = tmp_path / "diff.txt"

    code = cli.main(["compare", str(base), str(other), "--copy-on-diff", "--dry-run", "--workers", "1", "-r", str(report)])

    assert code == cli.EXIT_OK
    assert not (other / "a.txt").exists()
    assert "MISS: /a.txt" in report.read_text(encoding="utf-8").splitlines()

def test_compare_missing_other_directory(make_tree, tmp_path):
    base = make_tree("base", {"a.txt": "A"})
    assert cli.main(["compare", str(base), str(tmp_path / "absent")]) == cli.EXIT_CONFIG

def test_unwritable_report_is_report_error(make_tree, tmp_path):
    base = make_tree("base", {"a.txt": "A"})
    other = make_tree("other", {"a.txt": "A"})
    blocker = tmp_path / "blocker"
    blocker.write_text("x")

    code = cli.main(["compare", str(base), str(other), "--workers", "1", "-r", str(blocker / "r.txt")])
    assert code == cli.EXIT_REPORT

def test_skip_dirs_file(make_tree, tmp_path):
    root = make_tree("drive", {"keep/a.txt": "A", "cache/b.txt": "B"})
    skip_file = tmp_path / "skip.txt"
    skip_file.write_text(f"# ignored folders\n\n{root / 'cache'}\n")

    assert cli.load_skip_dirs(skip_file) == {root / "cache"}
    assert cli.load_skip_dirs(tmp_path / "none.txt") == set()

    db = tmp_path / "index.db"
    report = tmp_path / "r.txt"
    cli.main(["index", str(root), "--db", str(db), "--workers", "1", "--skip-dirs-file", str(skip_file), "-r", str(report)])
    lines = report.read_text(encoding="utf-8").splitlines()
    assert "MISS: /keep/a.txt (indexed)" in lines
    assert not any("cache" in line for line in lines if line.startswith("MISS"))

@pytest.mark.parametrize("seconds, expected", [
    (0.25, "250 ms"),
    (12.5, "12 s"),
    (125, "2 min"),
    (7300, "2 h"),
])
def test_format_duration(seconds, expected):
    assert cli.format_duration(seconds) == expected

def test_default_report_name():
    args = cli.parse_args(["compare", "a", "b", "-r"])
    assert args.report == Path("report.txt")
    assert cli.parse_args(["compare", "a", "b"]).report is None

def test_usage_error_is_config_error(capsys):
    assert cli.main(["index"]) == cli.EXIT_CONFIG
    assert cli.main(["frobnicate"]) == cli.EXIT_CONFIG
    assert cli.EXIT_CONFIG != cli.EXIT_STORE
    assert "usage:" in capsys.readouterr().err

def test_help_exits_cleanly():
    assert cli.main(["--help"]) == cli.EXIT_OK

def test_unusable_log_file_is_config_error(make_tree, tmp_path):
    root = make_tree("drive", {"a.txt": "A"})
    blocker = tmp_path / "blocker"
    blocker.write_text("x")

    code = cli.main(["index", str(root), "--db", str(tmp_path / "x.db"), "--log-file", str(blocker / "run.log")])
    assert code == cli.EXIT_CONFIG
    assert not (tmp_path / "x.db").exists()

def test_index_survives_undecodable_file_name(make_tree, tmp_path):
    root = make_tree("drive", {"good.txt": "G"})
    try:
        with open(os.fsencode(root) + b"/bad\xff.txt", "wb") as f:
            f.write(b"raw")
    except OSError:
        pytest.skip("filesystem rejects non UTF-8 file names")

    report = tmp_path / "r.txt"
    code = cli.main(["index", str(root), "--db", str(tmp_path / "x.db"), "--workers", "1", "-r", str(report)])

    assert code == cli.EXIT_OK
    lines = report.read_text(encoding="utf-8").splitlines()
    assert "MISS: /good.txt (indexed)" in lines
    assert not any("bad" in line for line in lines)
