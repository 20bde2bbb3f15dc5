"""Data models for GGUF memory estimation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True)
class ModelHyperparameters:
    """Architecture hyperparameters decoded from GGUF metadata."""

    hidden_size: int
    attention_heads: int
    kv_heads: int
    hidden_layers: int


@dataclass(frozen=True)
class QuantizationInfo:
    """Quantization type detected from a model filename."""

    type: str
    description: str
    priority: int


@dataclass
class GroupedFile:
    """One logical model artifact, possibly split across several physical parts."""

    display_name: str
    actual_name: str
    part_files: List[str] = field(default_factory=list)
    part_count: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate part ordering invariants."""
        if not self.part_files:
            raise ValueError(f"GroupedFile {self.display_name} has no part files")
        if self.actual_name != self.part_files[0]:
            raise ValueError(
                f"actual_name {self.actual_name} must be the first part file "
                f"({self.part_files[0]})"
            )

    @property
    def is_multipart(self) -> bool:
        return self.part_count is not None


@dataclass(frozen=True)
class MemoryEstimate:
    """Memory needed to load a model with a given context length."""

    total_bytes: int
    model_bytes: int
    kv_cache_bytes: int
    display_string: str


class EstimateState(Enum):
    """Lifecycle of a per-file estimate shown in a selection list."""

    PENDING = "pending"
    READY = "ready"
    UNAVAILABLE = "unavailable"


PENDING_LABEL = "calculating..."
UNAVAILABLE_LABEL = "Unavailable"


@dataclass
class EstimateRow:
    """A grouped file together with the current state of its estimate."""

    file: GroupedFile
    state: EstimateState = EstimateState.PENDING
    estimate: Optional[MemoryEstimate] = None
    quantization: Optional[QuantizationInfo] = None

    @property
    def label(self) -> str:
        """Text to render in the memory column."""
        if self.state is EstimateState.READY and self.estimate is not None:
            return self.estimate.display_string
        if self.state is EstimateState.PENDING:
            return PENDING_LABEL
        return UNAVAILABLE_LABEL
