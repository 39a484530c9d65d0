from mclink.config import Settings


def test_settings_build_without_cors_env(monkeypatch):
    monkeypatch.delenv("MCLINK_CORS_ALLOW_ORIGINS", raising=False)

    s = Settings(_env_file=None)

    assert s.CORS_ALLOW_ORIGINS == []
    assert s.LINK_CODE_TTL_MINUTES == 1440


def test_cors_origins_from_json_env(monkeypatch):
    monkeypatch.setenv("MCLINK_CORS_ALLOW_ORIGINS", '["https://example.net", "http://localhost:3000"]')

    s = Settings(_env_file=None)

    assert s.CORS_ALLOW_ORIGINS == ["https://example.net", "http://localhost:3000"]
