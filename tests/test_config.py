import pytest
from pydantic import ValidationError

from companion_memory.config import (
    AgingConfig, MemoryConfig, SharingConfig, StorageConfig, load_memory_config,
    read_yaml,
)


def test_aging_config_defaults():
    cfg = AgingConfig()
    assert cfg.short_term_decay_rate == 0.95
    assert cfg.medium_term_decay_rate == 0.98
    assert cfg.long_term_decay_rate == 0.995
    assert cfg.archive_threshold == 0.3
    assert cfg.delete_threshold == 0.1
    assert cfg.consolidation_interval_hours == 6.0
    assert cfg.access_strength_bonus == 0.1
    assert cfg.fuzziness_factor == 0.1


def test_sharing_config_defaults():
    cfg = SharingConfig()
    assert cfg.min_relationship_strength == 0.6
    assert cfg.min_trust_level == 0.5
    assert cfg.auto_share_emotional_impact == 0.7
    assert cfg.emotional_window_days == 30


def test_thresholds_must_be_ordered():
    with pytest.raises(ValidationError):
        AgingConfig(archive_threshold=0.1, delete_threshold=0.3)


def test_decay_rate_out_of_range_rejected():
    with pytest.raises(ValidationError):
        AgingConfig(short_term_decay_rate=1.5)


def test_storage_path_rejects_parent_components():
    with pytest.raises(ValidationError):
        StorageConfig(sqlite_db_path="../outside/memory.db")


def test_storage_path_allows_in_memory():
    assert StorageConfig(sqlite_db_path=":memory:").sqlite_db_path == ":memory:"


def test_memory_config_nested_dict():
    cfg = MemoryConfig(aging={"archive_threshold": 0.4})
    assert cfg.aging.archive_threshold == 0.4
    assert cfg.sharing.min_trust_level == 0.5


def test_load_memory_config_substitutes_env(tmp_path, monkeypatch):
    monkeypatch.setenv("MEMORY_DB", "data/mem.db")
    path = tmp_path / "conf.yaml"
    path.write_text(
        "memory:\n"
        "  storage:\n"
        "    sqlite_db_path: ${MEMORY_DB}\n"
        "  aging:\n"
        "    consolidation_interval_hours: 12\n",
        encoding="utf-8",
    )
    cfg = load_memory_config(path)
    assert cfg.storage.sqlite_db_path.replace("\\", "/") == "data/mem.db"
    assert cfg.aging.consolidation_interval_hours == 12


def test_load_memory_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_memory_config(tmp_path / "nope.yaml")


def test_load_memory_config_top_level_keys(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text("sharing:\n  min_trust_level: 0.7\n", encoding="utf-8")
    assert load_memory_config(path).sharing.min_trust_level == 0.7


def test_load_memory_config_invalid_values(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text("aging:\n  archive_threshold: 0.05\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_memory_config(path)


def test_read_yaml_non_utf8_file(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_bytes("storage:\n  sqlite_db_path: 记忆.db\n".encode("gbk"))
    assert read_yaml(path) == {"storage": {"sqlite_db_path": "记忆.db"}}


def test_unset_env_var_left_in_place(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text("storage:\n  sqlite_db_path: ${COMPANION_MEMORY_UNSET_VAR}\n", encoding="utf-8")
    assert read_yaml(path)["storage"]["sqlite_db_path"] == "${COMPANION_MEMORY_UNSET_VAR}"
