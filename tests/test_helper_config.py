import pytest


def test_list_value_uses_bracket_syntax(helper_config, monkeypatch):
    monkeypatch.setenv("WATCH_FOLDERS", "[docs, notes ,]")
    assert helper_config.get_list_val("WATCH_FOLDERS") == ["docs", "notes"]


def test_list_value_falls_back_to_default(helper_config):
    assert helper_config.get_list_val("WATCH_FOLDERS", default=[".md"]) == [".md"]


def test_list_value_without_brackets_is_rejected(helper_config, monkeypatch):
    monkeypatch.setenv("WATCH_FOLDERS", "docs,notes")
    with pytest.raises(ValueError):
        helper_config.get_list_val("WATCH_FOLDERS")


def test_number_and_bool_values(helper_config, monkeypatch):
    monkeypatch.setenv("RETRIEVAL_HYBRID_ALPHA", "0.5")
    monkeypatch.setenv("WATCH_ENABLED", "no")
    assert helper_config.get_number_val("RETRIEVAL_HYBRID_ALPHA") == 0.5
    assert helper_config.get_number_val("CHUNK_SIZE") == 100
    assert helper_config.get_bool_val("WATCH_ENABLED", default=True) is False
    assert helper_config.get_bool_val("WATCH_RECURSIVE", default=True) is True


def test_missing_value_without_default_raises(helper_config):
    with pytest.raises(ValueError):
        helper_config.get_string_val("LOCALRAG_SURELY_UNSET")


def test_invalid_number_raises(helper_config, monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "many")
    with pytest.raises(ValueError):
        helper_config.get_number_val("CHUNK_SIZE")


def test_relative_paths_resolve_against_root_dir(helper_config, env, monkeypatch):
    monkeypatch.setenv("DATABASE_DIR", "store")
    assert helper_config.get_database_dir() == str(env / "store")

    monkeypatch.delenv("DATABASE_DIR")
    assert helper_config.get_database_dir() == str(env / "database")


def test_blank_value_counts_as_unset(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_MODEL", "   ")
    assert helper_config.get_string_val("EMBED_MODEL", default="nomic-embed-text") == "nomic-embed-text"
