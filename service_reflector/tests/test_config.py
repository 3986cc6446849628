"""
Tests for reflector configuration.
"""

import pydantic
import pytest

from shared.config import get_config


def test_defaults():
    config = get_config("reflector")

    assert config.port == 3000
    assert config.origin_base_url == "https://{world}.grepolis.com"
    assert config.cache_max_entries == 25
    assert config.default_ttl_seconds == 900
    assert config.endpoint_ttls == {"islands": 21600}
    assert config.allowed_origins == ["*"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("REFLECTOR_PORT", "8080")
    monkeypatch.setenv("REFLECTOR_CACHE_MAX_ENTRIES", "100")
    monkeypatch.setenv("REFLECTOR_ENDPOINT_TTLS", '{"players": 60}')
    monkeypatch.setenv("REFLECTOR_ALLOWED_ORIGINS", '["https://app.example"]')

    config = get_config("reflector")

    assert config.port == 8080
    assert config.cache_max_entries == 100
    assert config.endpoint_ttls == {"islands": 21600, "players": 60}
    assert config.allowed_origins == ["https://app.example"]


def test_config_is_immutable():
    config = get_config("reflector")

    with pytest.raises(pydantic.ValidationError):
        config.port = 1


def test_rejects_invalid_limits():
    with pytest.raises(pydantic.ValidationError):
        get_config("reflector", cache_max_entries=0)
    with pytest.raises(pydantic.ValidationError):
        get_config("reflector", upstream_timeout=0)


def test_endpoint_ttl_overrides_keep_defaults():
    config = get_config("reflector", endpoint_ttls={"Towns": 120})

    assert config.endpoint_ttls == {"islands": 21600, "towns": 120}


def test_endpoint_ttls_must_be_positive():
    with pytest.raises(pydantic.ValidationError):
        get_config("reflector", endpoint_ttls={"players": -5})
    with pytest.raises(pydantic.ValidationError):
        get_config("reflector", endpoint_ttls={"players": 0})
