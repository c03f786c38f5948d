"""Error taxonomy for the foreign-key resolution benchmark."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when the benchmark configuration or storage target is unusable."""


class StorageError(RuntimeError):
    """Raised when a storage backend call fails."""


class IdentifierEncodingError(ValueError):
    """Raised when an identifier byte sequence is malformed."""


class BenchmarkPhaseError(RuntimeError):
    """Fatal benchmark failure tagged with the phase it happened in."""

    def __init__(
        self,
        phase: str,
        message: str,
        *,
        strategy: str | None = None,
        trial_index: int | None = None,
    ) -> None:
        self.phase = phase
        self.strategy = strategy
        self.trial_index = trial_index
        location = [f"phase={phase}"]
        if strategy is not None:
            location.append(f"strategy={strategy}")
        if trial_index is not None:
            location.append(f"trial={trial_index}")
        super().__init__(f"{message} ({' '.join(location)})")


__all__ = [
    "BenchmarkPhaseError",
    "ConfigurationError",
    "IdentifierEncodingError",
    "StorageError",
]
