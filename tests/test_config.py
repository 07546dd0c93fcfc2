from pathlib import Path

import pytest
from pydantic import ValidationError

from hsm_validator.config import HsmValidatorSettings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    settings = HsmValidatorSettings()
    assert settings.hsm_host == "127.0.0.1"
    assert settings.hsm_port == 49999
    assert settings.hsm_timeout_seconds == 30.0
    assert settings.chain_id == "chain-hsm-test"
    assert settings.priv_validator_path == Path("~/.tendermint").expanduser() / "hsm-priv-validator.json"


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HSM_VALIDATOR_HSM_HOST", "10.1.2.3")
    monkeypatch.setenv("HSM_VALIDATOR_HSM_PORT", "5000")
    monkeypatch.setenv("HSM_VALIDATOR_HOME", str(tmp_path))
    monkeypatch.setenv("HSM_VALIDATOR_LOG_LEVEL", "debug")

    settings = HsmValidatorSettings()

    assert settings.hsm_host == "10.1.2.3"
    assert settings.hsm_port == 5000
    assert settings.log_level == "DEBUG"
    assert settings.genesis_path == tmp_path / "genesis.json"


def test_absolute_paths_ignore_home(tmp_path):
    settings = HsmValidatorSettings(home=Path("/nonexistent"), priv_validator_file=tmp_path / "pv.json")
    assert settings.priv_validator_path == tmp_path / "pv.json"


def test_zero_timeout_disables_deadline():
    assert HsmValidatorSettings(hsm_timeout_seconds=0).hsm_timeout_seconds is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"hsm_port": 0},
        {"hsm_port": 70000},
        {"validator_power": -1},
        {"hsm_timeout_seconds": -1},
        {"log_level": "LOUD"},
    ],
)
def test_invalid_settings(overrides):
    with pytest.raises(ValidationError):
        HsmValidatorSettings(**overrides)
