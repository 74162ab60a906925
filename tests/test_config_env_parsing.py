from __future__ import annotations

from parley.config import ParleyConfig


def test_defaults_without_yaml(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("PARLEY_CONFIG_PATH", str(tmp_path / "missing.yaml"))

    config = ParleyConfig.load()

    assert config.transport.heartbeat_interval_s == 45.0
    assert config.transport.max_reconnect_attempts == 3
    assert config.transport.reconnect_base_delay_ms == 5000
    assert config.transport.reconnect_max_delay_ms == 120000
    assert config.transport.session_context_ttl_s == 30.0
    assert config.notifications.storage_key == "mcpNotifications"


def test_env_overrides_sub_configs(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("PARLEY_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("PARLEY_TRANSPORT_URL", "wss://questions.example/ws")
    monkeypatch.setenv("PARLEY_TRANSPORT_MAX_RECONNECT_ATTEMPTS", "5")
    monkeypatch.setenv("PARLEY_API_BASE_URL", "https://agents.example/")
    monkeypatch.setenv("PARLEY_LOG_FORMAT", "json")

    config = ParleyConfig.load()

    assert config.transport.url == "wss://questions.example/ws"
    assert config.transport.max_reconnect_attempts == 5
    assert config.api.base_url == "https://agents.example"
    assert config.log_format == "json"


def test_yaml_sections_are_loaded(monkeypatch, tmp_path) -> None:
    path = tmp_path / "parley.yaml"
    path.write_text(
        "user_id: alice\n"
        "transport:\n"
        "  url: ws://yaml/ws\n"
        "  heartbeat_interval_s: 10\n"
        "notifications:\n"
        "  store_path: /tmp/parley-notes.json\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("PARLEY_CONFIG_PATH", str(path))

    config = ParleyConfig.load()

    assert config.user_id == "alice"
    assert config.transport.url == "ws://yaml/ws"
    assert config.transport.heartbeat_interval_s == 10
    assert config.notifications.store_path == "/tmp/parley-notes.json"
