"""
Utility functions for file system operations and header construction.

This module provides helper functions for:
- Ensuring directory creation
- Deriving safe filenames and extensions for stored artifacts
- Building Content-Disposition headers from publication titles
"""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import quote

PDF_CONTENT_TYPE = "application/pdf"

# Characters kept verbatim in the ASCII fallback filename of a Content-Disposition header
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9 ._-]+")


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("document.pdf")
        ("document", ".pdf")
    """
    path = Path(filename)
    return path.stem, path.suffix


def allowed_pdf_extensions() -> list[str]:
    return [".pdf"]


def artifact_extension(filename: str | None) -> str:
    """Extension for a stored artifact; anything but an allowed PDF suffix becomes ``.pdf``."""
    _, suffix = split_extension(filename or "")
    suffix = suffix.lower()
    return suffix if suffix in allowed_pdf_extensions() else ".pdf"


def sanitize_filename(label: str, fallback: str = "publication") -> str:
    """
    Reduce a title to an ASCII-safe filename stem.

    Example:
        >>> sanitize_filename('Über "Quantum" Fields')
        "ber -Quantum- Fields"
    """
    cleaned = SANITIZE_PATTERN.sub("-", label.strip()).strip(" -_.")
    return cleaned or fallback


def content_disposition(disposition: str, title: str) -> str:
    """
    Build a Content-Disposition header suggesting ``<title>.pdf`` as filename.

    The plain ``filename`` parameter carries an ASCII fallback, ``filename*``
    the UTF-8 encoded title (RFC 6266).
    """
    fallback = sanitize_filename(title)
    encoded = quote(f"{title.strip() or fallback}.pdf", safe="")
    return f"{disposition}; filename=\"{fallback}.pdf\"; filename*=UTF-8''{encoded}"
