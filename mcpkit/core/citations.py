from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import GroundingMetadata, GroundingSource, GroundingSupport


@dataclass(frozen=True)
class CitationInsertion:
    insert_at_index: int
    marker_text: str


def apply_citations(
    text: str,
    sources: Optional[Sequence[GroundingSource]] = None,
    grounding_metadata: Optional[GroundingMetadata] = None,
) -> str:
    """Add inline ``[n]`` markers, a numbered source list and the search queries.

    Segment end indices are UTF-8 byte offsets into ``text``, as reported by
    the Gemini grounding API. Ungrounded answers come back unchanged.
    """
    if grounding_metadata is None or not sources:
        return text

    encoded = text.encode("utf-8")
    insertions = [
        CitationInsertion(
            insert_at_index=support.segment_end_index,
            marker_text=_marker(support.chunk_indices),
        )
        for support in grounding_metadata.supports
        if _is_actionable(support)
    ]
    # Splice from the end so earlier offsets stay valid.
    insertions.sort(key=lambda insertion: insertion.insert_at_index, reverse=True)

    annotated = text
    for insertion in insertions:
        if insertion.insert_at_index < 0 or insertion.insert_at_index > len(encoded):
            continue
        position = _char_offset(encoded, insertion.insert_at_index)
        annotated = annotated[:position] + insertion.marker_text + annotated[position:]

    source_list = "\n".join(
        f"[{number}] {source.title} ({source.url})"
        for number, source in enumerate(sources, start=1)
    )
    result = f"{annotated}\n\nSources:\n{source_list}"
    if grounding_metadata.web_search_queries:
        result += f"\n\nSearched for: {', '.join(grounding_metadata.web_search_queries)}"
    return result


def _is_actionable(support: GroundingSupport) -> bool:
    return support.segment_end_index is not None and support.chunk_indices is not None


def _marker(chunk_indices: Optional[List[int]]) -> str:
    numbers = sorted(index + 1 for index in chunk_indices or [])
    return "[" + ",".join(str(number) for number in numbers) + "]"


def _char_offset(encoded: bytes, byte_offset: int) -> int:
    # An offset inside a multi-byte character snaps back to its start.
    return len(encoded[:byte_offset].decode("utf-8", errors="ignore"))
