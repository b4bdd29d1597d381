import os

import app


def test_project_dir_defaults_to_none():
    args = app.parse_args([])

    assert args.project_dir is None
    assert args.log_level == "info"


def test_project_dir_option():
    args = app.parse_args(["--project-dir", "/srv/miner", "--port", "9000"])

    assert args.project_dir == "/srv/miner"
    assert args.port == 9000


def test_config_is_created_in_project_dir(tmp_path):
    (tmp_path / "config.yaml.example").write_text("web:\n  port: 9200\n", encoding="utf-8")

    project_dir = app.prepare_project_dir(str(tmp_path))

    assert project_dir == str(tmp_path)
    assert (tmp_path / "config.yaml").read_text(encoding="utf-8") == "web:\n  port: 9200\n"


def test_existing_config_is_kept(tmp_path):
    (tmp_path / "config.yaml").write_text("web:\n  port: 9100\n", encoding="utf-8")
    (tmp_path / "config.yaml.example").write_text("web:\n  port: 1\n", encoding="utf-8")

    app.prepare_project_dir(str(tmp_path))

    assert (tmp_path / "config.yaml").read_text(encoding="utf-8") == "web:\n  port: 9100\n"


def test_env_file_of_project_dir_is_loaded(tmp_path, monkeypatch):
    # Register the variable with monkeypatch so it is removed again afterwards
    monkeypatch.setenv("MINERWEB_TEST_MARKER", "unset")
    monkeypatch.delenv("MINERWEB_TEST_MARKER")
    (tmp_path / ".env").write_text("MINERWEB_TEST_MARKER=loaded\n", encoding="utf-8")

    app.prepare_project_dir(str(tmp_path))

    assert os.environ["MINERWEB_TEST_MARKER"] == "loaded"
