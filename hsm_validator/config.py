"""Settings loader for the HSM validator."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HsmValidatorSettings(BaseSettings):
    hsm_host: str = Field(default="127.0.0.1", min_length=1)
    hsm_port: int = Field(default=49999)
    # None blocks until the module answers; a positive value bounds each round trip.
    hsm_timeout_seconds: Optional[float] = Field(default=30.0)

    home: Path = Field(default=Path("~/.tendermint"))
    priv_validator_file: Path = Field(default=Path("hsm-priv-validator.json"))
    genesis_file: Path = Field(default=Path("genesis.json"))

    chain_id: str = Field(default="chain-hsm-test", min_length=1)
    validator_power: int = Field(default=10)

    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="HSM_VALIDATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("hsm_port", "validator_power")
    @classmethod
    def validate_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("hsm_port")
    @classmethod
    def validate_port_range(cls, value: int) -> int:
        if value > 65535:
            raise ValueError("hsm_port must be <= 65535")
        return value

    @field_validator("hsm_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return value
        if value < 0:
            raise ValueError("hsm_timeout_seconds must not be negative")
        # 0 disables the deadline, same as leaving it unset.
        return value or None

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        candidate = value.strip().upper()
        if candidate not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Unknown log level: {value}")
        return candidate

    def resolve(self, path: Path) -> Path:
        path = Path(path).expanduser()
        if path.is_absolute():
            return path
        return self.home.expanduser() / path

    @property
    def priv_validator_path(self) -> Path:
        return self.resolve(self.priv_validator_file)

    @property
    def genesis_path(self) -> Path:
        return self.resolve(self.genesis_file)
