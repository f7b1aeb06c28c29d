"""Pydantic configuration for refactoring runs.

A run is described by one :class:`RefactorConfig`: the decomposition depth,
bitplane count, which strategy to use for every pluggable stage, and the list
of storage tiers (each with an error tolerance and erasure-coding parameters).

Configuration can be built in code or loaded from TOML::

    levels = 4
    num_planes = 32
    encoder = "grouped"
    ec_backend = "null"

    [[tiers]]
    path = "/fast/tier0"
    tolerance = 1.0

    [[tiers]]
    path = "/slow/tier1"
    tolerance = 0.01
"""

from __future__ import annotations

import os
from typing import Any, Literal, cast

from pydantic import BaseModel, Field, ValidationError, model_validator

# TOML loading for Python 3.11+ and older
try:
    import tomllib  # type: ignore[import-not-found, unused-ignore]
except ImportError:
    import tomli as tomllib  # type: ignore[import-not-found, no-redef, unused-ignore]

from tiered_refactor.errors import ConfigurationError

CONFIG_ENV_VAR = "TIERED_REFACTOR_CONFIG"
CONFIG_FILENAME = "tiered_refactor.toml"

# liberasurecode caps k + m
EC_MAX_FRAGMENTS = 32

EC_BACKENDS = (
    "null",
    "flat_xor_hd",
    "jerasure_rs_vand",
    "jerasure_rs_cauchy",
    "isa_l_rs_vand",
    "isa_l_rs_cauchy",
    "shss",
    "liberasurecode_rs_vand",
    "libphazr",
)


class TierConfig(BaseModel):
    """One storage tier: accuracy target plus erasure-coding layout."""

    path: str | None = Field(None, description="Directory receiving this tier's fragments")
    tolerance: float = Field(..., gt=0, description="Target estimated error for this tier")
    ec_k: int = Field(1, ge=1, description="Number of data fragments")
    ec_m: int = Field(0, ge=0, description="Number of parity fragments")
    ec_w: int = Field(8, ge=1, description="Erasure-coding word size")

    @property
    def ec_hd(self) -> int:
        """Hamming distance recorded alongside the tier (m + 1)."""
        return self.ec_m + 1


class RefactorConfig(BaseModel):
    """All refactoring parameters in one place."""

    # --- Decomposition ---
    levels: int = Field(4, ge=1, description="Number of levels (target_level + 1)")
    decomposer: Literal["wavelet", "hierarchical"] = "wavelet"
    wavelet: str = "haar"

    # --- Interleaving ---
    interleaver: Literal["direct", "sfc", "blocked"] = "direct"
    block_size: int = Field(8, ge=1)

    # --- Bitplane encoding ---
    num_planes: int = Field(32, ge=1, le=60)
    encoder: Literal["grouped", "negabinary"] = "grouped"

    # --- Lossless level compression ---
    compressor: Literal["null", "default", "adaptive"] = "adaptive"
    adaptive_latency: int = Field(32, ge=0)
    adaptive_min_ratio: float = Field(1.05, gt=0)

    # --- Error model used for scheduling ---
    collector: Literal["max", "squared"] = "max"
    estimator: Literal["max_ob", "max_hb", "snorm"] = "max_ob"
    snorm_s: float = 0.0

    # --- Storage ---
    ec_backend: str = "null"
    kvstore_path: str | None = None
    max_workers: int | None = Field(None, ge=1)

    tiers: list[TierConfig] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_tiers(self) -> RefactorConfig:
        if self.ec_backend not in EC_BACKENDS:
            raise ValueError(
                f"ec_backend {self.ec_backend!r} is not supported; "
                f"expected one of {', '.join(EC_BACKENDS)}"
            )
        for i, tier in enumerate(self.tiers):
            if tier.ec_k + tier.ec_m > EC_MAX_FRAGMENTS:
                raise ValueError(
                    f"tiers[{i}]: ec_k + ec_m must be <= {EC_MAX_FRAGMENTS}, "
                    f"got {tier.ec_k + tier.ec_m}"
                )
            if self.ec_backend == "null" and (tier.ec_k != 1 or tier.ec_m != 0):
                raise ValueError(
                    f"tiers[{i}]: the null backend stores one data fragment "
                    f"(ec_k=1, ec_m=0), got ec_k={tier.ec_k}, ec_m={tier.ec_m}"
                )
        return self

    @property
    def target_level(self) -> int:
        return self.levels - 1

    @property
    def tolerances(self) -> list[float]:
        return [tier.tolerance for tier in self.tiers]


def build_config(**options: Any) -> RefactorConfig:
    """Validate keyword options into a RefactorConfig.

    Raises:
        ConfigurationError: If any option is missing or invalid
    """
    try:
        return RefactorConfig.model_validate(options)
    except ValidationError as e:
        raise _configuration_error(e) from e


def _configuration_error(error: ValidationError) -> ConfigurationError:
    """Convert the first pydantic error into a ConfigurationError."""
    first = error.errors()[0]
    parameter = ".".join(str(part) for part in first["loc"]) or None
    where = f" ({parameter})" if parameter else ""
    return ConfigurationError(f"Invalid configuration{where}: {first['msg']}", parameter)


def resolve_config_path(config_path: str | None = None) -> str:
    """Resolve configuration path from explicit path, env, or defaults."""
    if config_path:
        return config_path
    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        return env_config
    candidates = [
        CONFIG_FILENAME,
        os.path.expanduser(f"~/{CONFIG_FILENAME}"),
    ]
    for candidate in candidates:
        if os.path.exists(candidate):
            return candidate
    raise FileNotFoundError(
        f"Config file not found. Set {CONFIG_ENV_VAR} or create {CONFIG_FILENAME}"
    )


def load_config(config_path: str | None = None) -> RefactorConfig:
    """Load and validate a RefactorConfig from TOML.

    Args:
        config_path: Explicit path; falls back to the environment variable and
            default locations when omitted

    Raises:
        FileNotFoundError: If no configuration file can be found
        ConfigurationError: If the file is not valid TOML or fails validation
    """
    resolved_path = resolve_config_path(config_path)
    if not os.path.exists(resolved_path):
        raise FileNotFoundError(f"Config file not found at {resolved_path}")
    with open(resolved_path, "rb") as f:
        try:
            raw = cast(dict[str, Any], tomllib.load(f))
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Failed to parse {resolved_path}: {e}") from e
    return build_config(**raw)
