"""Utility helpers for origins, HTML extraction, hashing and text chunking.

This module provides:
- normalize_origin: scheme://host[:port] with default ports dropped, for CORS allowlists
- content_hash: SHA-256 hex digest used for chunk and full-content deduplication
- html_to_text: product/page HTML to plain text using BeautifulSoup
- chunk_spans/chunk_text: fixed-size character chunking with overlap
"""
import hashlib
import re
from typing import List, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

DEFAULT_PORTS = {"80", "443"}


def normalize_origin(url: str) -> str:
    """Normalize a URL or Origin header value to `scheme://host[:port]`.

    Ports 80 and 443 are dropped whatever the scheme; the host is lowercased.

    Args:
        url: Raw URL or origin.

    Returns:
        str: Normalized origin.

    Raises:
        ValueError: If the value has no scheme or host.
    """
    try:
        parts = urlsplit((url or "").strip())
        port = parts.port
    except ValueError as e:
        raise ValueError(f"Invalid URL format: {url}") from e
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"Invalid URL format: {url}")
    origin = f"{parts.scheme.lower()}://{parts.hostname.lower()}"
    if port is not None and str(port) not in DEFAULT_PORTS:
        origin += f":{port}"
    return origin


def content_hash(text: str) -> str:
    """Compute the SHA-256 hex digest of a string.

    Args:
        text: Content to hash.

    Returns:
        str: 64-char hex digest.
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def html_to_text(html: str) -> str:
    """Convert an HTML fragment (product description, page body) to plain text.

    Script/style blocks are removed, block elements become line breaks and runs
    of spaces collapse. Plain text passes through unchanged apart from whitespace.

    Args:
        html: Raw HTML string.

    Returns:
        str: Extracted text.
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text("\n", strip=True)
    text = re.sub(r"[ \t]+", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def chunk_spans(text: str, chunk_size: int, overlap: int) -> List[Tuple[int, int, str]]:
    """Split text into (start_char, end_char, chunk) windows with overlap.

    Text no longer than chunk_size is a single chunk. Overlap is clamped to
    [0, chunk_size - 1] so the window always advances.

    Args:
        text: Input string to split.
        chunk_size: Window size in characters.
        overlap: Characters shared by consecutive windows.

    Returns:
        List[Tuple[int, int, str]]: Windows in order.
    """
    if not text:
        return []
    chunk_size = max(1, chunk_size)
    if len(text) <= chunk_size:
        return [(0, len(text), text)]
    overlap = max(0, min(overlap, chunk_size - 1))
    spans: List[Tuple[int, int, str]] = []
    start = 0
    n = len(text)
    while start < n:
        end = min(n, start + chunk_size)
        spans.append((start, end, text[start:end]))
        if end == n:
            break
        start = end - overlap
    return spans


def chunk_text(text: str, chunk_size: int, overlap: int) -> List[str]:
    """Return only the chunk strings from chunk_spans."""
    return [chunk for _, _, chunk in chunk_spans(text, chunk_size, overlap)]
