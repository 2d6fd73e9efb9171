"""
MarketDAO TOML Configuration Loader

Loads the [dao] section of marketdao.toml with environment variable
overrides. Follows the dataclass + from_dict + from_file pattern.

Environment variable mapping:
    [dao] support_threshold_bp → MARKETDAO_SUPPORT_THRESHOLD_BP
    [dao] election_duration    → MARKETDAO_ELECTION_DURATION
    [dao.flags] allow_minting  → MARKETDAO_ALLOW_MINTING
    ...
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    BASIS_POINTS,
    DEFAULT_ELECTION_DURATION,
    DEFAULT_MAX_PROPOSAL_AGE,
    DEFAULT_QUORUM_PERCENTAGE_BP,
    DEFAULT_SINK_SALT,
    DEFAULT_SUPPORT_THRESHOLD_BP,
    DEFAULT_TOKEN_PRICE,
    DEFAULT_VESTING_PERIOD,
    FLAG_ALLOW_MINTING,
    FLAG_MASK,
    FLAG_MINT_ON_PURCHASE,
    FLAG_RESTRICT_PURCHASES,
)
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ParameterType(IntEnum):
    """Governable parameters, in setter order."""
    SUPPORT_THRESHOLD = 0
    QUORUM_PERCENTAGE = 1
    MAX_PROPOSAL_AGE = 2
    ELECTION_DURATION = 3
    VESTING_PERIOD = 4
    TOKEN_PRICE = 5
    FLAGS = 6


_PARAMETER_FIELDS = {
    ParameterType.SUPPORT_THRESHOLD: "support_threshold_bp",
    ParameterType.QUORUM_PERCENTAGE: "quorum_percentage_bp",
    ParameterType.MAX_PROPOSAL_AGE: "max_proposal_age",
    ParameterType.ELECTION_DURATION: "election_duration",
    ParameterType.VESTING_PERIOD: "vesting_period",
    ParameterType.TOKEN_PRICE: "token_price",
}

_ENV_INTS = {
    "MARKETDAO_SUPPORT_THRESHOLD_BP": "support_threshold_bp",
    "MARKETDAO_QUORUM_PERCENTAGE_BP": "quorum_percentage_bp",
    "MARKETDAO_MAX_PROPOSAL_AGE": "max_proposal_age",
    "MARKETDAO_ELECTION_DURATION": "election_duration",
    "MARKETDAO_VESTING_PERIOD": "vesting_period",
    "MARKETDAO_TOKEN_PRICE": "token_price",
}

_ENV_BOOLS = {
    "MARKETDAO_ALLOW_MINTING": "allow_minting",
    "MARKETDAO_RESTRICT_PURCHASES": "restrict_purchases_to_holders",
    "MARKETDAO_MINT_ON_PURCHASE": "mint_on_purchase",
}


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DAOConfig:
    """
    DAO governance parameters.

    Loaded from the marketdao.toml [dao] section. Thresholds are basis
    points (10000 = 100%); durations are block counts.
    """
    name: str = "MarketDAO"
    support_threshold_bp: int = DEFAULT_SUPPORT_THRESHOLD_BP
    quorum_percentage_bp: int = DEFAULT_QUORUM_PERCENTAGE_BP
    max_proposal_age: int = DEFAULT_MAX_PROPOSAL_AGE
    election_duration: int = DEFAULT_ELECTION_DURATION
    vesting_period: int = DEFAULT_VESTING_PERIOD
    token_price: int = DEFAULT_TOKEN_PRICE

    # Flags
    allow_minting: bool = False
    restrict_purchases_to_holders: bool = False
    mint_on_purchase: bool = True

    # Keys the vote-sink derivation; unique per deployment
    sink_salt: str = DEFAULT_SINK_SALT

    # --- flags ------------------------------------------------------------

    @property
    def flags(self) -> int:
        value = 0
        if self.allow_minting:
            value |= FLAG_ALLOW_MINTING
        if self.restrict_purchases_to_holders:
            value |= FLAG_RESTRICT_PURCHASES
        if self.mint_on_purchase:
            value |= FLAG_MINT_ON_PURCHASE
        return value

    def set_flags(self, flags: int) -> None:
        if isinstance(flags, bool) or not isinstance(flags, int) or flags & ~FLAG_MASK:
            raise ConfigurationError(f"Invalid flags value: {flags!r}")
        self.allow_minting = bool(flags & FLAG_ALLOW_MINTING)
        self.restrict_purchases_to_holders = bool(flags & FLAG_RESTRICT_PURCHASES)
        self.mint_on_purchase = bool(flags & FLAG_MINT_ON_PURCHASE)

    # --- construction -----------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DAOConfig":
        flags = data.get("flags", {})
        config = cls(
            name=data.get("name", "MarketDAO"),
            support_threshold_bp=data.get("support_threshold_bp", DEFAULT_SUPPORT_THRESHOLD_BP),
            quorum_percentage_bp=data.get("quorum_percentage_bp", DEFAULT_QUORUM_PERCENTAGE_BP),
            max_proposal_age=data.get("max_proposal_age", DEFAULT_MAX_PROPOSAL_AGE),
            election_duration=data.get("election_duration", DEFAULT_ELECTION_DURATION),
            vesting_period=data.get("vesting_period", DEFAULT_VESTING_PERIOD),
            token_price=data.get("token_price", DEFAULT_TOKEN_PRICE),
            sink_salt=data.get("sink_salt", DEFAULT_SINK_SALT),
        )
        if isinstance(flags, int):
            config.set_flags(flags)
        else:
            config.allow_minting = flags.get("allow_minting", False)
            config.restrict_purchases_to_holders = flags.get("restrict_purchases_to_holders", False)
            config.mint_on_purchase = flags.get("mint_on_purchase", True)
        return config

    @classmethod
    def from_file(cls, path: str) -> "DAOConfig":
        """
        Load from a TOML file, then apply environment overrides.

        A missing file yields defaults (with env overrides).
        """
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                raw = tomli.load(f)
            config = cls.from_dict(raw.get("dao", {}))
            logger.info(f"Loaded DAO config from {p}")
        else:
            config = cls()
            logger.info(f"No config file at {p}; using defaults")
        config.apply_env()
        config.validate()
        return config

    def apply_env(self) -> None:
        """Override from environment variables."""
        for var, attr in _ENV_INTS.items():
            if v := os.environ.get(var):
                try:
                    setattr(self, attr, int(v))
                except ValueError:
                    raise ConfigurationError(f"{var} must be an integer, got {v!r}")
        for var, attr in _ENV_BOOLS.items():
            if v := os.environ.get(var):
                setattr(self, attr, _env_bool(v))
        if v := os.environ.get("MARKETDAO_NAME"):
            self.name = v
        if v := os.environ.get("MARKETDAO_SINK_SALT"):
            self.sink_salt = v

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all parameters.

        Raises:
            ConfigurationError: on invalid config
        """
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type in ("int", int) and (isinstance(value, bool) or not isinstance(value, int)):
                raise ConfigurationError(f"{f.name} must be an integer, got {value!r}")
        if not 1 <= self.support_threshold_bp <= BASIS_POINTS:
            raise ConfigurationError(
                f"support_threshold_bp must be in 1..{BASIS_POINTS}, got {self.support_threshold_bp}"
            )
        if not 1 <= self.quorum_percentage_bp <= BASIS_POINTS:
            raise ConfigurationError(
                f"quorum_percentage_bp must be in 1..{BASIS_POINTS}, got {self.quorum_percentage_bp}"
            )
        if self.max_proposal_age < 1:
            raise ConfigurationError("max_proposal_age must be >= 1")
        if self.election_duration < 1:
            raise ConfigurationError("election_duration must be >= 1")
        if self.vesting_period < 0:
            raise ConfigurationError("vesting_period cannot be negative")
        if self.token_price < 0:
            raise ConfigurationError("token_price cannot be negative")
        if not self.sink_salt:
            raise ConfigurationError("sink_salt cannot be empty")
        return True

    # --- governance -------------------------------------------------------

    def get_parameter(self, parameter: ParameterType) -> int:
        if parameter == ParameterType.FLAGS:
            return self.flags
        return getattr(self, _PARAMETER_FIELDS[parameter])

    def check_parameter(self, parameter: ParameterType, value: int) -> "DAOConfig":
        """Validate a parameter change on a copy; returns the copy."""
        try:
            parameter = ParameterType(parameter)
        except ValueError:
            raise ConfigurationError(f"Unknown parameter: {parameter!r}")
        candidate = replace(self)
        if parameter == ParameterType.FLAGS:
            candidate.set_flags(value)
        else:
            setattr(candidate, _PARAMETER_FIELDS[parameter], value)
        candidate.validate()
        return candidate

    def set_parameter(self, parameter: ParameterType, value: int) -> int:
        """
        Apply a governance parameter change; returns the old value.

        A rejected change leaves this config untouched.
        """
        candidate = self.check_parameter(parameter, value)
        parameter = ParameterType(parameter)
        old = self.get_parameter(parameter)
        self.restore(candidate)
        logger.info(f"Parameter {parameter.name} changed: {old} → {value}")
        return old

    def restore(self, other: "DAOConfig") -> None:
        """Copy every field of *other* into this instance."""
        for f in fields(self):
            setattr(self, f.name, getattr(other, f.name))

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "support_threshold_bp": self.support_threshold_bp,
            "quorum_percentage_bp": self.quorum_percentage_bp,
            "max_proposal_age": self.max_proposal_age,
            "election_duration": self.election_duration,
            "vesting_period": self.vesting_period,
            "token_price": self.token_price,
            "flags": {
                "allow_minting": self.allow_minting,
                "restrict_purchases_to_holders": self.restrict_purchases_to_holders,
                "mint_on_purchase": self.mint_on_purchase,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> DAOConfig:
    """
    Load DAO configuration.

    Resolution order:
        1. Explicit *path* argument
        2. MARKETDAO_CONFIG env var
        3. ./marketdao.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("MARKETDAO_CONFIG", "marketdao.toml")

    return DAOConfig.from_file(path)
