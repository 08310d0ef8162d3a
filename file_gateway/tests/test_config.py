import importlib

import pytest

from file_gateway import config


@pytest.mark.parametrize(
    "value, expected",
    [
        ("25", 25),
        (" 7 ", 7),
        ("", 100),
        ("lots", 100),
        ("12.5", 100),
    ],
)
def test_int_env(monkeypatch, value, expected):
    monkeypatch.setenv("MAX_SIZE_MB", value)
    assert config._int_env("MAX_SIZE_MB", 100) == expected


def test_int_env_unset(monkeypatch):
    monkeypatch.delenv("MAX_SIZE_MB", raising=False)
    assert config._int_env("MAX_SIZE_MB", 100) == 100


def test_max_size_mb_from_environment(monkeypatch):
    """MAX_SIZE_MB is read once at import; bad values fall back to 100."""
    try:
        with monkeypatch.context() as m:
            m.delenv("MAX_SIZE_MB", raising=False)
            importlib.reload(config)
            assert config.MAX_SIZE_MB == 100

            m.setenv("MAX_SIZE_MB", "250")
            importlib.reload(config)
            assert config.MAX_SIZE_MB == 250

            m.setenv("MAX_SIZE_MB", "abc")
            importlib.reload(config)
            assert config.MAX_SIZE_MB == 100
    finally:
        importlib.reload(config)
