"""Memory estimation for (possibly multi-part) GGUF model files."""

from __future__ import annotations

import logging
import threading
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import List, Optional, Sequence, Union

import requests
from gguf_parser import GGUFParseError
from huggingface_hub import hf_hub_url

from .config import EstimatorConfig
from .ggufreader import DecodeResult, GGUFMetadataReader, is_url
from .httpfile import FileLengthError, HttpFile, HttpFileError
from .models import GroupedFile, MemoryEstimate, ModelHyperparameters

KV_BYTES_PER_ELEMENT = 4.0
GIGABYTE = 1_000_000_000
MEGABYTE = 1_000_000


# ============================================================================
# Pure calculations
# ============================================================================

def format_human_size(num_bytes: Union[int, float]) -> str:
    """Format a byte count with decimal units: "2.5 GB" or "500 MB".

    Halves round up: 500.5 MB is "501 MB" and 2.25 GB is "2.3 GB".
    """
    if num_bytes >= GIGABYTE:
        gigabytes = Decimal(num_bytes) / GIGABYTE
        return f"{gigabytes.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)} GB"
    megabytes = Decimal(num_bytes) / MEGABYTE
    return f"{megabytes.quantize(Decimal(1), rounding=ROUND_HALF_UP)} MB"


def kv_cache_bytes(hidden_size: int, hidden_layers: int, context_length: int) -> int:
    """Approximate KV cache size: 4 bytes * hidden size * layers * context tokens.

    A constant-factor approximation; it does not model quantized cache types
    or grouped-query attention savings.
    """
    return int(KV_BYTES_PER_ELEMENT * hidden_size * hidden_layers * context_length)


def build_estimate(model_bytes: int, params: ModelHyperparameters, context_length: int) -> MemoryEstimate:
    """Combine file size and hyperparameters into a MemoryEstimate."""
    kv_bytes = kv_cache_bytes(params.hidden_size, params.hidden_layers, context_length)
    total = model_bytes + kv_bytes
    display = (
        f"{format_human_size(total)} "
        f"(Model: {format_human_size(model_bytes)} + KV: {format_human_size(kv_bytes)})"
    )
    return MemoryEstimate(
        total_bytes=total,
        model_bytes=model_bytes,
        kv_cache_bytes=kv_bytes,
        display_string=display,
    )


def build_model_file_url(repo_id: str, filename: str, revision: str = "main",
                         endpoint: Optional[str] = None) -> str:
    """Direct download URL of `filename` inside a Hugging Face model repository."""
    return hf_hub_url(repo_id=repo_id, filename=filename, revision=revision, endpoint=endpoint)


# ============================================================================
# Main Application Service
# ============================================================================

class MemoryEstimator:
    """Estimates memory needed to run a GGUF model before downloading it.

    Every failure mode (undecodable header, missing size, network error,
    cancellation) yields None instead of an exception.
    """

    def __init__(self,
                 config: Optional[EstimatorConfig] = None,
                 metadata_reader: Optional[GGUFMetadataReader] = None,
                 session: Optional[requests.Session] = None):
        self.config = config or EstimatorConfig()
        self.session = session
        self.metadata_reader = metadata_reader or GGUFMetadataReader(
            session=session,
            chunk_size=self.config.chunk_size,
            timeout=self.config.timeout,
        )

    def locate(self, filename: str, repo_id: Optional[str] = None,
               base_path: Optional[Union[str, Path]] = None) -> str:
        """Turn a repository-relative filename into a URL or local path."""
        if repo_id:
            return build_model_file_url(repo_id, filename, revision=self.config.revision,
                                        endpoint=self.config.endpoint)
        if base_path is not None:
            return str(Path(base_path) / filename)
        return filename

    def resolve_size(self, location: str, abort_event: Optional[threading.Event] = None) -> int:
        """Byte size of a local file or remote object.

        Raises:
            FileLengthError: If no usable size could be determined
            DataFetchError: If the request was aborted or failed in transport
        """
        if is_url(location):
            with HttpFile(location, session=self.session, token=self.config.token,
                          timeout=self.config.timeout, abort_event=abort_event) as remote:
                return remote.file_length

        path = Path(location)
        try:
            size = path.stat().st_size
        except OSError as e:
            raise FileLengthError(f"Cannot stat {path}: {e}") from e
        if size <= 0:
            raise FileLengthError(f"File is empty: {path}")
        return size

    def resolve_total_size(self, locations: Sequence[str],
                           abort_event: Optional[threading.Event] = None) -> int:
        """Sum of the sizes of all parts."""
        total = 0
        for location in locations:
            size = self.resolve_size(location, abort_event)
            logging.debug(f"MemoryEstimator: size of {location} = {size}")
            total += size
        return total

    def decode(self, location: str, abort_event: Optional[threading.Event] = None) -> DecodeResult:
        """Decode hyperparameters from the primary part."""
        return self.metadata_reader.decode_path(location, token=self.config.token,
                                                abort_event=abort_event)

    def estimate_location(self,
                          primary: str,
                          parts: Optional[Sequence[str]] = None,
                          context_length: Optional[int] = None,
                          abort_event: Optional[threading.Event] = None) -> Optional[MemoryEstimate]:
        """Estimate memory for a model stored at `primary` (plus any further parts).

        Args:
            primary: URL or path of the first part, which carries the metadata
            parts: Every part including the primary; defaults to [primary]
            context_length: Target context in tokens (default from config)
            abort_event: Set from another thread to abandon the estimate

        Returns:
            The estimate, or None if any size lookup or the decode fails
        """
        context = context_length or self.config.context_length
        locations: List[str] = list(parts) if parts else [primary]
        try:
            model_bytes = self.resolve_total_size(locations, abort_event)
            result = self.decode(primary, abort_event)
        except (HttpFileError, GGUFParseError, OSError) as e:
            logging.debug(f"MemoryEstimator: no estimate for {primary}: {type(e).__name__}: {e}")
            return None

        if not result.ok:
            logging.debug(f"MemoryEstimator: no estimate for {primary}: "
                          f"{result.status.value} {result.detail}")
            return None

        estimate = build_estimate(model_bytes, result.params, context)
        logging.debug(f"MemoryEstimator: {primary}: {estimate.display_string}")
        return estimate

    def estimate_file(self,
                      grouped: GroupedFile,
                      repo_id: Optional[str] = None,
                      base_path: Optional[Union[str, Path]] = None,
                      context_length: Optional[int] = None,
                      abort_event: Optional[threading.Event] = None) -> Optional[MemoryEstimate]:
        """Estimate memory for a grouped file from a repository or a local directory."""
        parts = [self.locate(name, repo_id, base_path) for name in grouped.part_files]
        primary = self.locate(grouped.actual_name, repo_id, base_path)
        return self.estimate_location(primary, parts, context_length, abort_event)
