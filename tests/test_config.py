"""Tests for configuration lookup."""

import pytest

from vidscript import config


@pytest.fixture(autouse=True)
def fresh_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config.reload()
    yield tmp_path
    config.reload()


def test_env_file_values_are_used(fresh_config, monkeypatch) -> None:
    monkeypatch.delenv("VIDSCRIPT_STT_MODEL", raising=False)
    (fresh_config / ".env").write_text(
        "# comment\nexport VIDSCRIPT_STT_MODEL='gpt-4o-transcribe'\nVIDSCRIPT_GUEST_DAILY_LIMIT=7 # seven\n",
        encoding="utf-8",
    )
    assert config.get("VIDSCRIPT_STT_MODEL") == "gpt-4o-transcribe"
    assert config.get_int("VIDSCRIPT_GUEST_DAILY_LIMIT", 3) == 7


def test_environment_beats_env_file(fresh_config, monkeypatch) -> None:
    (fresh_config / ".env").write_text("VIDSCRIPT_STT_MODEL=from-file\n", encoding="utf-8")
    monkeypatch.setenv("VIDSCRIPT_STT_MODEL", "from-env")
    assert config.get("VIDSCRIPT_STT_MODEL") == "from-env"


def test_root_env_shadows_data_dir_env(fresh_config, monkeypatch) -> None:
    monkeypatch.delenv("VIDSCRIPT_MCP_USER", raising=False)
    monkeypatch.delenv("VIDSCRIPT_MCP_TIER", raising=False)
    (fresh_config / ".vidscript").mkdir()
    (fresh_config / ".vidscript" / ".env").write_text(
        "VIDSCRIPT_MCP_USER=inner\nVIDSCRIPT_MCP_TIER=pro\n", encoding="utf-8"
    )
    (fresh_config / ".env").write_text("VIDSCRIPT_MCP_USER=outer\n", encoding="utf-8")
    assert config.get("VIDSCRIPT_MCP_USER") == "outer"
    # Only the first file found is read, so nothing comes from the inner one.
    assert config.get("VIDSCRIPT_MCP_TIER", "free") == "free"


def test_data_dir_env_used_without_root_env(fresh_config, monkeypatch) -> None:
    monkeypatch.delenv("VIDSCRIPT_MCP_TIER", raising=False)
    (fresh_config / ".vidscript").mkdir()
    (fresh_config / ".vidscript" / ".env").write_text("VIDSCRIPT_MCP_TIER=pro\n", encoding="utf-8")
    assert config.get("VIDSCRIPT_MCP_TIER", "free") == "pro"


def test_bad_numbers_fall_back_to_default(monkeypatch, caplog) -> None:
    monkeypatch.setenv("VIDSCRIPT_PROBE_TIMEOUT", "soon")
    monkeypatch.setenv("VIDSCRIPT_PRO_DAILY_LIMIT", "lots")
    assert config.get_float("VIDSCRIPT_PROBE_TIMEOUT", 60.0) == 60.0
    assert config.get_int("VIDSCRIPT_PRO_DAILY_LIMIT", 100) == 100
    assert "VIDSCRIPT_PROBE_TIMEOUT" in caplog.text


def test_data_dir_defaults_under_cwd(fresh_config, monkeypatch) -> None:
    monkeypatch.delenv("VIDSCRIPT_DATA_DIR", raising=False)
    assert config.data_dir() == fresh_config / ".vidscript"
    monkeypatch.setenv("VIDSCRIPT_DATA_DIR", str(fresh_config / "elsewhere"))
    assert config.data_dir() == fresh_config / "elsewhere"
