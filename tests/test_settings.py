import logging

import pytest
from pydantic import ValidationError

from cacheflow.config.settings import (
    CacheflowSettings,
    LocalSettings,
    RemoteSettings,
    ScoringSettings,
    configure_logging,
)
from cacheflow.core.context import load_settings


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("CACHEFLOW_SETTINGS", "CACHEFLOW_SQLITE_PATH", "CACHEFLOW_LOCAL__GLOBAL_THRESHOLD"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    s = CacheflowSettings()
    assert s.local is None and s.remote is None
    assert not s.local_enabled
    assert s.sweep_interval_seconds == 10.0
    assert s.scoring == ScoringSettings()
    assert s.scoring.threshold_ratio == 0.97


def test_sections_accept_camel_case():
    local = LocalSettings.model_validate({"checkExpireIntervalSeconds": 2, "globalThreshold": 250})
    assert local.check_expire_interval_seconds == 2
    assert local.threshold_per_ms == 0.25
    assert LocalSettings().threshold_per_ms is None

    remote = RemoteSettings.model_validate({"keyPrefix": "cf:", "password": "s3cret"})
    assert remote.key_prefix == "cf:"
    assert remote.password.get_secret_value() == "s3cret"
    assert "s3cret" not in repr(remote)


def test_sections_reject_unknown_and_invalid_fields():
    with pytest.raises(ValidationError):
        LocalSettings.model_validate({"checkInterval": 1})
    with pytest.raises(ValidationError):
        LocalSettings.model_validate({"globalThreshold": 0})
    with pytest.raises(ValidationError):
        CacheflowSettings(log_level="LOUD")


def test_disabled_local_keeps_its_interval():
    s = CacheflowSettings(local={"enabled": False, "checkExpireIntervalSeconds": 3})
    assert not s.local_enabled
    assert s.sweep_interval_seconds == 3


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CACHEFLOW_SQLITE_PATH", "/tmp/env.db")
    monkeypatch.setenv("CACHEFLOW_LOCAL__GLOBAL_THRESHOLD", "5")
    s = CacheflowSettings(sqlite_path="ignored.db")
    assert s.sqlite_path == "/tmp/env.db"
    assert s.local.global_threshold == 5


def test_yaml_file(tmp_path, monkeypatch):
    path = tmp_path / "cache.yaml"
    path.write_text(
        "local:\n  checkExpireIntervalSeconds: 4\nremote:\n  host: redis.internal\nlog_level: DEBUG\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CACHEFLOW_SETTINGS", str(path))
    s = CacheflowSettings()
    assert s.local.check_expire_interval_seconds == 4
    assert s.remote.host == "redis.internal"
    assert s.log_level == "DEBUG"


def test_toml_file(tmp_path, monkeypatch):
    path = tmp_path / "cache.toml"
    path.write_text('sqlite_path = "from-toml.db"\n\n[local]\nresetOnStart = false\n', encoding="utf-8")
    monkeypatch.setenv("CACHEFLOW_SETTINGS", str(path))
    s = CacheflowSettings()
    assert s.sqlite_path == "from-toml.db"
    assert s.local.reset_on_start is False


def test_configure_logging_applies_overrides():
    s = CacheflowSettings(log_level="WARNING", log_level_per_module={"cacheflow.core.sweeper": "DEBUG"})
    configure_logging(s)
    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("cacheflow.core.sweeper").level == logging.DEBUG


def test_redis_section_is_read_as_remote():
    s = load_settings({"redis": {"host": "cache", "port": 6380}})
    assert s.remote is not None
    assert (s.remote.host, s.remote.port) == ("cache", 6380)

    # an explicit remote section wins
    s = load_settings({"remote": {"host": "a"}, "redis": {"host": "b"}})
    assert s.remote.host == "a"
