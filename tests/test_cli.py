import json

from appserver.cli import main

from .conftest import build_tree


def test_scan_reports_changes(tmp_path, capsys):
    media = tmp_path / "media"
    media.mkdir()
    (media / "a.jpg").write_text("a")
    assert main(["--scan", str(media), "--ext", ".jpg"]) == 0
    assert "first run" in capsys.readouterr().out

    (media / "b.jpg").write_text("b")
    assert main(["--scan", str(media), "--ext", ".jpg", "--commit"]) == 0
    out = capsys.readouterr().out
    assert "+b.jpg" in out
    assert "Added:1 Deleted:0" in out

    assert main(["--scan", str(media), "--ext", ".jpg"]) == 0
    assert "Added:0 Deleted:0" in capsys.readouterr().out


def test_scan_missing_dir(tmp_path):
    assert main(["--scan", str(tmp_path / "nope")]) == 1


def test_add_user(tmp_path):
    config_file = build_tree(tmp_path)
    assert main([str(config_file), "--add", "fred"]) == 0
    data = json.loads(config_file.read_text())
    assert data["Users"]["fred"]["Name"] == "Fred"
    assert main([str(config_file), "--add", "fred"]) == 1


def test_create_locations(tmp_path, capsys):
    config_file = build_tree(tmp_path)
    data = json.loads(config_file.read_text())
    data["Users"]["stuart"]["Locations"]["extra"] = "s-extra"
    config_file.write_text(json.dumps(data))
    assert main(["--config", str(config_file), "--create"]) == 0
    assert (tmp_path / "data" / "stuart" / "s-extra").is_dir()
    assert "Created: User[stuart]" in capsys.readouterr().out


def test_bad_config_is_startup_error(tmp_path):
    assert main([str(tmp_path / "missing.json")]) == 1


def test_scan_applies_files_filter(tmp_path, capsys):
    config_file = build_tree(tmp_path)
    media = tmp_path / "media"
    media.mkdir()
    (media / "a.jpg").write_text("a")
    (media / "b.tmp").write_text("b")
    assert main(["--scan", str(media), "--config", str(config_file)]) == 0
    assert "1 file(s) recorded" in capsys.readouterr().out

    (media / "c.tmp").write_text("c")
    (media / "d.png").write_text("d")
    assert main(["--scan", str(media), "--config", str(config_file)]) == 0
    out = capsys.readouterr().out
    assert "+d.png" in out
    assert "c.tmp" not in out
    assert "Added:1 Deleted:0" in out
