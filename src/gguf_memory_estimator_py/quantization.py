"""Quantization type detection from GGUF filenames."""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from .models import QuantizationInfo

T = TypeVar("T")

UNKNOWN_QUANTIZATION = QuantizationInfo("Unknown", "Unknown quantization type", 42)

# (pattern, requires "ud-" marker, type, description). Order matters: the
# most specific patterns must come first ("q4_k_xl" before "q4_k").
_QUANTIZATION_TABLE: Sequence[Tuple[str, bool, str, str]] = (
    # Unsloth Dynamic variants
    ("iq1_s", True, "UD-IQ1_S", "1-bit Unsloth Dynamic quantization (small), selective parameter quantization"),
    ("iq1_m", True, "UD-IQ1_M", "1-bit Unsloth Dynamic quantization (medium), selective parameter quantization"),
    ("iq2_xxs", True, "UD-IQ2_XXS", "2-bit Unsloth Dynamic quantization (extra extra small), selective parameter quantization"),
    ("iq2_m", True, "UD-IQ2_M", "2-bit Unsloth Dynamic quantization (medium), selective parameter quantization"),
    ("iq3_xxs", True, "UD-IQ3_XXS", "3-bit Unsloth Dynamic quantization (extra extra small), selective parameter quantization"),
    ("q2_k_xl", True, "UD-Q2_K_XL", "2-bit Unsloth Dynamic K-quantization (XL), selective parameter quantization"),
    ("q3_k_xl", True, "UD-Q3_K_XL", "3-bit Unsloth Dynamic K-quantization (XL), selective parameter quantization"),
    ("q4_k_xl", True, "UD-Q4_K_XL", "4-bit Unsloth Dynamic K-quantization (XL), selective parameter quantization"),
    ("q5_k_xl", True, "UD-Q5_K_XL", "5-bit Unsloth Dynamic K-quantization (XL), selective parameter quantization"),
    ("q6_k_xl", True, "UD-Q6_K_XL", "6-bit Unsloth Dynamic K-quantization (XL), selective parameter quantization"),
    ("q8_k_xl", True, "UD-Q8_K_XL", "8-bit Unsloth Dynamic K-quantization (XL), selective parameter quantization"),
    # XL variants
    ("q8_k_xl", False, "Q8_K_XL", "8-bit K-quantization (XL), maximum quality"),
    ("q6_k_xl", False, "Q6_K_XL", "6-bit K-quantization (XL), very high quality"),
    ("q5_k_xl", False, "Q5_K_XL", "5-bit K-quantization (XL), high quality"),
    ("q4_k_xl", False, "Q4_K_XL", "4-bit K-quantization (XL), good quality"),
    ("q3_k_xl", False, "Q3_K_XL", "3-bit K-quantization (XL), compact with quality"),
    ("q2_k_xl", False, "Q2_K_XL", "2-bit K-quantization (XL), very compact"),
    ("q8_0", False, "Q8_0", "8-bit quantization, excellent quality"),
    ("q6_k", False, "Q6_K", "6-bit quantization, high quality with smaller size"),
    ("q5_k_m", False, "Q5_K_M", "5-bit quantization (medium), good quality/size balance"),
    ("q5_k_s", False, "Q5_K_S", "5-bit quantization (small), smaller size"),
    ("q5_0", False, "Q5_0", "5-bit quantization, legacy format"),
    ("iq4_nl", False, "IQ4_NL", "4-bit improved quantization (no lookup), very efficient"),
    ("iq4_xs", False, "IQ4_XS", "4-bit improved quantization (extra small), ultra compact"),
    ("q4_k_m", False, "Q4_K_M", "4-bit quantization (medium), good for most use cases"),
    ("q4_k_l", False, "Q4_K_L", "4-bit quantization (large), better quality at 4-bit"),
    ("q4_k_s", False, "Q4_K_S", "4-bit quantization (small), very compact"),
    ("q4_1", False, "Q4_1", "4-bit quantization v1, improved legacy format"),
    ("q4_0", False, "Q4_0", "4-bit quantization, legacy format"),
    ("iq3_xxs", False, "IQ3_XXS", "3-bit improved quantization (extra extra small), maximum compression"),
    ("q3_k_l", False, "Q3_K_L", "3-bit quantization (large), experimental"),
    ("q3_k_m", False, "Q3_K_M", "3-bit quantization (medium), very small size"),
    ("q3_k_s", False, "Q3_K_S", "3-bit quantization (small), ultra compact"),
    ("iq2_xxs", False, "IQ2_XXS", "2-bit improved quantization (extra extra small), extreme compression"),
    ("iq2_m", False, "IQ2_M", "2-bit improved quantization (medium), balanced compression"),
    ("q2_k_l", False, "Q2_K_L", "2-bit quantization (large), better quality at 2-bit"),
    ("q2_k", False, "Q2_K", "2-bit quantization, extremely small but lower quality"),
    ("iq1_s", False, "IQ1_S", "1-bit improved quantization (small), experimental ultra compression"),
    ("iq1_m", False, "IQ1_M", "1-bit improved quantization (medium), experimental compression"),
    ("f16", False, "F16", "16-bit floating point, highest quality but large size"),
    ("f32", False, "F32", "32-bit floating point, original precision"),
)


def detect_quantization(filename: str) -> QuantizationInfo:
    """Detect the quantization type encoded in a filename."""
    lowered = filename.lower()
    is_unsloth_dynamic = "ud-" in lowered
    for priority, (pattern, needs_ud, quant_type, description) in enumerate(_QUANTIZATION_TABLE, start=1):
        if needs_ud and not is_unsloth_dynamic:
            continue
        if pattern in lowered:
            return QuantizationInfo(quant_type, description, priority)
    return UNKNOWN_QUANTIZATION


def sort_by_priority(items: List[T], name_of: Optional[Callable[[T], str]] = None) -> List[T]:
    """Return `items` ordered by quantization priority (stable).

    Args:
        items: Filenames, or arbitrary objects when `name_of` is given
        name_of: Maps an item to the filename used for detection
    """
    key_name = name_of or (lambda item: item)
    return sorted(items, key=lambda item: detect_quantization(key_name(item)).priority)
