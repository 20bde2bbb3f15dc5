"""Merge sharded GGUF filenames into one entry per logical model file."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from .models import GroupedFile

# name-00001-of-00015.gguf, name_00001-of-00015, ...
MULTI_PART_PATTERN = re.compile(r"^(.+?)[-_](\d{5})-of-(\d{5})(\.gguf)?$", re.IGNORECASE)


@dataclass
class _MultiPartEntry:
    display_name: str
    total_parts: int
    parts: List[Tuple[int, str]] = field(default_factory=list)


def _collation_key(name: str) -> Tuple[str, str]:
    """Case-insensitive code-point order; case differences only break ties."""
    return (name.casefold(), name)


def group_gguf_files(filenames: Iterable[str]) -> List[GroupedFile]:
    """Group multi-part GGUF filenames into single entries.

    Files matching ``<base>[-_]NNNNN-of-NNNNN[.gguf]`` are grouped by the
    lower-cased base. The largest declared total wins when shards disagree.
    Everything else is returned as a standalone single-part entry.
    """
    groups: Dict[str, _MultiPartEntry] = {}
    standalone: List[GroupedFile] = []

    for filename in filenames:
        match = MULTI_PART_PATTERN.match(filename)
        if not match:
            standalone.append(GroupedFile(display_name=filename, actual_name=filename,
                                          part_files=[filename]))
            continue

        base, index, total = match.group(1), int(match.group(2)), int(match.group(3))
        entry = groups.get(base.lower())
        if entry is None:
            entry = _MultiPartEntry(display_name=f"{base}.gguf", total_parts=total)
            groups[base.lower()] = entry
        entry.total_parts = max(entry.total_parts, total)
        entry.parts.append((index, filename))

    grouped: List[GroupedFile] = []
    for entry in groups.values():
        part_files = [name for _, name in sorted(entry.parts, key=lambda part: part[0])]
        grouped.append(GroupedFile(
            display_name=entry.display_name,
            actual_name=part_files[0],
            part_files=part_files,
            part_count=entry.total_parts or len(part_files),
        ))

    result = grouped + standalone
    result.sort(key=lambda g: _collation_key(g.display_name))
    return result


def part_index(filename: str) -> int | None:
    """Shard index encoded in `filename`, or None for non-sharded names."""
    match = MULTI_PART_PATTERN.match(filename)
    return int(match.group(2)) if match else None


def missing_parts(grouped: GroupedFile) -> List[int]:
    """Shard indices declared by `part_count` but absent from `part_files`.

    Grouping itself never rejects incomplete sets; callers decide what to do.
    """
    if grouped.part_count is None:
        return []
    present = {part_index(name) for name in grouped.part_files}
    return [i for i in range(1, grouped.part_count + 1) if i not in present]
