"""GGUF Memory Estimator - Estimate memory needs of GGUF models from a few header bytes."""

from gguf_memory_estimator_py.cli import app
from gguf_memory_estimator_py.config import EstimatorConfig
from gguf_memory_estimator_py.core import (
    MemoryEstimator, build_estimate, build_model_file_url, format_human_size, kv_cache_bytes
)
from gguf_memory_estimator_py.ggufreader import (
    DecodeResult, DecodeStatus, GGUFCorruptStreamError, GGUFHeaderDecoder,
    GGUFMetadataReader, GGUFValueType
)
from gguf_memory_estimator_py.grouping import group_gguf_files, missing_parts
from gguf_memory_estimator_py.models import (
    EstimateRow, EstimateState, GroupedFile, MemoryEstimate,
    ModelHyperparameters, QuantizationInfo
)
from gguf_memory_estimator_py.quantization import detect_quantization, sort_by_priority
from gguf_memory_estimator_py.tracker import EstimateBoard

__version__ = "0.1.0"
__all__ = [
    "app",
    "EstimatorConfig",
    "MemoryEstimator",
    "build_estimate",
    "build_model_file_url",
    "format_human_size",
    "kv_cache_bytes",
    "DecodeResult",
    "DecodeStatus",
    "GGUFCorruptStreamError",
    "GGUFHeaderDecoder",
    "GGUFMetadataReader",
    "GGUFValueType",
    "group_gguf_files",
    "missing_parts",
    "EstimateRow",
    "EstimateState",
    "GroupedFile",
    "MemoryEstimate",
    "ModelHyperparameters",
    "QuantizationInfo",
    "detect_quantization",
    "sort_by_priority",
    "EstimateBoard",
]


def main():
    """Main entry point for the CLI."""
    app()
