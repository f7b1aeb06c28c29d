"""Factories mapping configuration names to strategy instances."""

from __future__ import annotations

from typing import Any, Mapping

from tiered_refactor.algorithms.bitplane import (
    BitplaneEncoder,
    GroupedBitplaneEncoder,
    NegaBinaryBitplaneEncoder,
)
from tiered_refactor.algorithms.decomposer import (
    Decomposer,
    HierarchicalDecomposer,
    WaveletDecomposer,
)
from tiered_refactor.algorithms.error_collector import (
    ErrorCollector,
    MaxErrorCollector,
    SquaredErrorCollector,
)
from tiered_refactor.algorithms.error_estimator import (
    ErrorEstimator,
    MaxErrorEstimatorHB,
    MaxErrorEstimatorOB,
    SNormErrorEstimator,
)
from tiered_refactor.algorithms.interleaver import (
    BlockedInterleaver,
    DirectInterleaver,
    Interleaver,
    SFCInterleaver,
)
from tiered_refactor.algorithms.level_compressor import (
    AdaptiveLevelCompressor,
    DefaultLevelCompressor,
    LevelCompressor,
    NullLevelCompressor,
)
from tiered_refactor.errors import ConfigurationError


def _unknown(kind: str, name: str, known: Any) -> ConfigurationError:
    return ConfigurationError(
        f"Unknown {kind} {name!r}; expected one of {', '.join(sorted(known))}", kind
    )


def make_decomposer(name: str, wavelet: str = "haar") -> Decomposer:
    if name == "wavelet":
        return WaveletDecomposer(wavelet)
    if name == "hierarchical":
        return HierarchicalDecomposer()
    raise _unknown("decomposer", name, ["wavelet", "hierarchical"])


def make_interleaver(name: str, block_size: int = 8) -> Interleaver:
    if name == "direct":
        return DirectInterleaver()
    if name == "sfc":
        return SFCInterleaver()
    if name == "blocked":
        return BlockedInterleaver(block_size)
    raise _unknown("interleaver", name, ["direct", "sfc", "blocked"])


_ENCODERS = {
    "grouped": GroupedBitplaneEncoder,
    "negabinary": NegaBinaryBitplaneEncoder,
}


def make_encoder(name: str) -> BitplaneEncoder:
    if name not in _ENCODERS:
        raise _unknown("encoder", name, _ENCODERS)
    return _ENCODERS[name]()


def make_compressor(
    name: str, latency: int = 32, min_ratio: float = 1.05
) -> LevelCompressor:
    if name == "null":
        return NullLevelCompressor()
    if name == "default":
        return DefaultLevelCompressor()
    if name == "adaptive":
        return AdaptiveLevelCompressor(latency=latency, min_ratio=min_ratio)
    raise _unknown("compressor", name, ["null", "default", "adaptive"])


_COLLECTORS = {
    "max": MaxErrorCollector,
    "squared": SquaredErrorCollector,
}


def make_collector(name: str) -> ErrorCollector:
    if name not in _COLLECTORS:
        raise _unknown("collector", name, _COLLECTORS)
    return _COLLECTORS[name]()


def make_estimator(
    name: str, num_dims: int, target_level: int, s: float = 0.0
) -> ErrorEstimator:
    if name == "max_ob":
        return MaxErrorEstimatorOB(num_dims)
    if name == "max_hb":
        return MaxErrorEstimatorHB()
    if name == "snorm":
        return SNormErrorEstimator(num_dims, target_level, s)
    raise _unknown("estimator", name, ["max_ob", "max_hb", "snorm"])


def strategy_options(options: Mapping[str, Any]) -> dict[str, Any]:
    """The subset of configuration needed to rebuild the decode-side strategies."""
    keys = ("decomposer", "wavelet", "interleaver", "block_size", "encoder", "compressor")
    missing = [k for k in keys if k not in options]
    if missing:
        raise ConfigurationError(f"Missing strategy options: {', '.join(missing)}", missing[0])
    return {k: options[k] for k in keys}
