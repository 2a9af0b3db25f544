import json

from tabpilot.cli import build_parser, main

RECORDING = {
    "title": "Docs search",
    "steps": [
        {"type": "navigate", "url": "https://example.com/docs"},
        {"type": "click", "selectors": [["aria/Search"], ["#search"]]},
        {"type": "change", "selectors": [["#search"]], "value": "agents"},
    ],
}


def test_convert_then_list_and_export(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("TABPILOT_HOME", str(tmp_path))
    recording = tmp_path / "recording.json"
    recording.write_text(json.dumps(RECORDING), encoding="utf-8")

    assert main(["convert", str(recording), "--tag", "docs"]) == 0
    assert main(["skills", "list"]) == 0
    listing = capsys.readouterr().out
    assert "Docs search" in listing
    assert "3 actions" in listing

    exported = tmp_path / "out.json"
    assert main(["skills", "export", "docs search", "-o", str(exported)]) == 0
    data = json.loads(exported.read_text(encoding="utf-8"))
    assert data["context"]["startUrl"] == "https://example.com/docs"
    assert data["metadata"]["tags"] == ["docs"]
    assert data["actions"][1]["parameters"]["selectors"] == [["aria/Search"], ["#search"]]


def test_convert_rejects_invalid_recording(tmp_path, monkeypatch):
    monkeypatch.setenv("TABPILOT_HOME", str(tmp_path))
    recording = tmp_path / "bad.json"
    recording.write_text(json.dumps({"steps": []}), encoding="utf-8")

    assert main(["convert", str(recording)]) == 1


def test_unknown_skill_returns_error(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("TABPILOT_HOME", str(tmp_path))

    assert main(["skills", "show", "missing"]) == 1
    assert "Skill not found: missing" in capsys.readouterr().out


def test_import_and_delete(tmp_path, monkeypatch):
    monkeypatch.setenv("TABPILOT_HOME", str(tmp_path))
    source = tmp_path / "skill.json"
    source.write_text(json.dumps({"id": "greet", "name": "Greet", "actions": []}), encoding="utf-8")

    assert main(["skills", "import", str(source)]) == 0
    assert (tmp_path / "skills" / "greet.json").exists()
    assert main(["skills", "delete", "greet"]) == 0
    assert not (tmp_path / "skills" / "greet.json").exists()


def test_record_arguments():
    args = build_parser().parse_args(
        ["record", "Login", "--url", "https://example.com", "--duration", "5", "--tag", "auth", "-o", "rec.json"]
    )

    assert args.command == "record"
    assert args.name == "Login"
    assert args.duration == 5.0
    assert args.tag == ["auth"]
    assert args.kind == "skills"
    assert args.output == "rec.json"
