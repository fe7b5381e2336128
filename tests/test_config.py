"""Tests for OracleConfig and PROTODIFF_* environment parsing."""

import pytest

from protodiff.config import DEFAULT_MAX_DEPTH, MAX_DEPTH_LIMIT, OracleConfig
from protodiff.errors import ConfigError

_ENV_VARS = (
    "PROTODIFF_ENFORCE_WEAK",
    "PROTODIFF_STOP_ON_FAILURE",
    "PROTODIFF_TOLERATE_FRONTEND",
    "PROTODIFF_CHECK_FIXPOINT",
    "PROTODIFF_MAX_DEPTH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestOracleConfigDefaults:
    def test_default_values(self):
        c = OracleConfig()
        assert c.enforce_weak_dependencies is True
        assert c.stop_on_failure is False
        assert c.tolerate_frontend_asymmetry is True
        assert c.check_fixpoint is False
        assert c.max_depth == DEFAULT_MAX_DEPTH

    def test_frozen(self):
        c = OracleConfig()
        with pytest.raises(AttributeError):
            c.stop_on_failure = True

    @pytest.mark.parametrize("depth", [0, -1, MAX_DEPTH_LIMIT + 1])
    def test_max_depth_range(self, depth):
        with pytest.raises(ConfigError, match="max_depth"):
            OracleConfig(max_depth=depth)

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            OracleConfig(max_depth=0)


class TestFromEnv:
    def test_no_env(self):
        assert OracleConfig.from_env() == OracleConfig()

    def test_env_values(self, monkeypatch):
        monkeypatch.setenv("PROTODIFF_ENFORCE_WEAK", "0")
        monkeypatch.setenv("PROTODIFF_STOP_ON_FAILURE", "yes")
        monkeypatch.setenv("PROTODIFF_TOLERATE_FRONTEND", "off")
        monkeypatch.setenv("PROTODIFF_CHECK_FIXPOINT", "TRUE")
        monkeypatch.setenv("PROTODIFF_MAX_DEPTH", "50")
        c = OracleConfig.from_env()
        assert c.enforce_weak_dependencies is False
        assert c.stop_on_failure is True
        assert c.tolerate_frontend_asymmetry is False
        assert c.check_fixpoint is True
        assert c.max_depth == 50

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("PROTODIFF_STOP_ON_FAILURE", "1")
        c = OracleConfig.from_env(stop_on_failure=False, max_depth=10)
        assert c.stop_on_failure is False
        assert c.max_depth == 10

    def test_invalid_bool(self, monkeypatch):
        monkeypatch.setenv("PROTODIFF_CHECK_FIXPOINT", "maybe")
        with pytest.raises(ConfigError, match="PROTODIFF_CHECK_FIXPOINT"):
            OracleConfig.from_env()

    def test_invalid_int(self, monkeypatch):
        monkeypatch.setenv("PROTODIFF_MAX_DEPTH", "deep")
        with pytest.raises(ConfigError, match="PROTODIFF_MAX_DEPTH"):
            OracleConfig.from_env()

    def test_out_of_range_int(self, monkeypatch):
        monkeypatch.setenv("PROTODIFF_MAX_DEPTH", "100000")
        with pytest.raises(ConfigError):
            OracleConfig.from_env()
