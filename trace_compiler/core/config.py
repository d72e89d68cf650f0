"""
TraceCompiler.core.config

Configuration for layer graph compilation.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Literal

import torch


PRECISIONS = {
    'fp32': torch.float32,
    'fp64': torch.float64,
}


@dataclass
class TraceConfig:
    """
    Configuration for layer graph compilation.

    Attributes:
        seed: Seed for weight initialization. None uses the global torch RNG.
        precision: Weight dtype ('fp32', 'fp64').

        validate: Re-check topological order and slot safety after build.

        compile: Whether to torch.compile the result.
        compile_mode: torch.compile mode ('default', 'reduce-overhead', 'max-autotune').
        compile_backend: torch.compile backend ('inductor', 'eager', etc).

        debug: Enable debug output.
    """

    # Initialization
    seed: Optional[int] = None
    precision: Literal['fp32', 'fp64'] = 'fp32'

    # Validation
    validate: bool = False

    # Compilation
    compile: bool = False
    compile_mode: Literal['default', 'reduce-overhead', 'max-autotune'] = 'default'
    compile_backend: str = 'inductor'
    compile_options: Dict[str, Any] = field(default_factory=dict)

    # Debug
    debug: bool = False

    def __post_init__(self):
        """Validate config."""
        valid_modes = ('default', 'reduce-overhead', 'max-autotune')
        if self.compile_mode not in valid_modes:
            raise ValueError(f"compile_mode must be one of {valid_modes}")

        if self.precision not in PRECISIONS:
            raise ValueError(f"precision must be one of {tuple(PRECISIONS)}")

        if self.seed is not None and self.seed < 0:
            raise ValueError(f"seed must be non-negative, got {self.seed}")

    @property
    def dtype(self) -> torch.dtype:
        return PRECISIONS[self.precision]

    def make_generator(self) -> Optional[torch.Generator]:
        """Seeded CPU generator for weight init, or None."""
        if self.seed is None:
            return None
        g = torch.Generator()
        g.manual_seed(self.seed)
        return g

    @classmethod
    def default(cls) -> 'TraceConfig':
        """Default config for general use."""
        return cls()

    @classmethod
    def fast(cls) -> 'TraceConfig':
        """Config optimized for speed."""
        return cls(
            compile=True,
            compile_mode='reduce-overhead',
            validate=False,
        )

    @classmethod
    def debugging(cls) -> 'TraceConfig':
        """Config for debugging."""
        return cls(
            compile=False,
            validate=True,
            debug=True,
        )

    @classmethod
    def safe(cls) -> 'TraceConfig':
        """Config with validation enabled and deterministic init."""
        return cls(
            seed=0,
            precision='fp64',
            compile=False,
            validate=True,
        )


# Singleton default config
_default_config: Optional[TraceConfig] = None


def get_default_config() -> TraceConfig:
    """Get the default config."""
    global _default_config
    if _default_config is None:
        _default_config = TraceConfig.default()
    return _default_config


def set_default_config(config: TraceConfig) -> None:
    """Set the default config."""
    global _default_config
    _default_config = config


__all__ = [
    'TraceConfig',
    'PRECISIONS',
    'get_default_config',
    'set_default_config',
]
