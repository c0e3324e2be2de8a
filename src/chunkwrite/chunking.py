"""
Chunk splitting and chunk path naming.

Splits oversized content into ordered, non-overlapping fragments whose
in-order concatenation is exactly the input, and derives the sibling path
each fragment is written to.

Chunk naming: only the final path component is considered. Its extension is
the text after its last ".", provided that dot is neither the first nor the
last character of the component. The index token goes before the extension:

    report.md       -> report.part0.md
    archive.tar.gz  -> archive.tar.part2.gz
    Makefile        -> Makefile.part1
    .env            -> .env.part0

Chunks written by ChunkedWriter also carry their operation ID in the token,
so concurrent writes to the same target never share a chunk path:

    report.md       -> report.part0-chunk_0190b2c4-....md
"""

from __future__ import annotations

import math
import re
from typing import NamedTuple, Sequence

from chunkwrite.types import Content

CHUNK_TOKEN = "part"

_OPERATION_ID_RE = re.compile(r"[^./]+")
_TOKEN_RE = rf"{CHUNK_TOKEN}(?P<index>\d+)(?:-(?P<op>[^./]+))?"
_WITH_EXT_RE = re.compile(rf"^(?P<stem>.+)\.{_TOKEN_RE}\.(?P<ext>[^.]+)$")
_NO_EXT_RE = re.compile(rf"^(?P<stem>.+)\.{_TOKEN_RE}$")


def split_content(content: Content, num_chunks: int) -> list[Content]:
    """Partition content into ``num_chunks`` ordered fragments.

    Fragment i covers ``[i * part_size, min((i + 1) * part_size, len))`` with
    ``part_size = ceil(len / num_chunks)``. The last fragment may be shorter;
    when the content is shorter than num_chunks the trailing fragments are empty.

    Args:
        content: Text or bytes to split. Text splits on characters, bytes on
            bytes. Since chunk counts are byte-based, a text fragment mixing
            wide and narrow characters can exceed the chunk size in bytes.
        num_chunks: Number of fragments, at least 1.

    Returns:
        Exactly ``num_chunks`` fragments.
    """
    if num_chunks < 1:
        raise ValueError(f"num_chunks must be at least 1, got {num_chunks}")

    if num_chunks == 1:
        return [content]

    part_size = math.ceil(len(content) / num_chunks)
    return [content[i * part_size:(i + 1) * part_size] for i in range(num_chunks)]


def join_chunks(fragments: Sequence[Content]) -> Content:
    """Concatenate fragments in order (inverse of split_content)."""
    if not fragments:
        return ""
    if isinstance(fragments[0], bytes):
        return b"".join(fragments)  # type: ignore[arg-type]
    return "".join(fragments)  # type: ignore[arg-type]


def _split_name(name: str) -> tuple[str, str | None]:
    """Split a path component into (stem, extension or None)."""
    dot = name.rfind(".")
    if dot <= 0 or dot == len(name) - 1:
        return name, None
    return name[:dot], name[dot + 1:]


class ChunkRef(NamedTuple):
    """Parsed chunk path."""

    original: str
    index: int
    operation_id: str | None = None


def chunk_path(path: str, index: int, operation_id: str | None = None) -> str:
    """Derive the path a chunk with the given index is written to.

    Args:
        path: Original target path.
        index: Chunk index (>= 0).
        operation_id: Operation the chunk belongs to. When given, it is
            embedded in the index token so each operation gets its own paths.

    Returns:
        Sibling path embedding the index, extension preserved.
    """
    if index < 0:
        raise ValueError(f"Chunk index must be non-negative, got {index}")
    if operation_id is not None and not _OPERATION_ID_RE.fullmatch(operation_id):
        raise ValueError(f"Operation ID may not be empty or contain '.' or '/': {operation_id!r}")

    token = f"{CHUNK_TOKEN}{index}"
    if operation_id is not None:
        token = f"{token}-{operation_id}"

    head, sep, name = path.rpartition("/")
    stem, ext = _split_name(name)
    if ext is None:
        chunk_name = f"{name}.{token}"
    else:
        chunk_name = f"{stem}.{token}.{ext}"
    return f"{head}{sep}{chunk_name}"


def parse_chunk_path(path: str) -> ChunkRef | None:
    """Recover the original path, index and operation ID from a chunk path.

    A candidate is accepted only when deriving it forward reproduces the
    input exactly, so every chunk path parses to a single answer.

    Returns:
        ChunkRef, or None if the path is not a chunk path.
    """
    head, sep, name = path.rpartition("/")

    candidates: list[ChunkRef] = []
    for pattern in (_WITH_EXT_RE, _NO_EXT_RE):
        match = pattern.match(name)
        if match is None:
            continue
        groups = match.groupdict()
        original_name = groups["stem"]
        if groups.get("ext") is not None:
            original_name = f"{original_name}.{groups['ext']}"
        candidates.append(
            ChunkRef(f"{head}{sep}{original_name}", int(groups["index"]), groups["op"])
        )

    for ref in candidates:
        if chunk_path(ref.original, ref.index, ref.operation_id) == path:
            return ref
    return None
