"""
XML sidecar projection of publication records.

The sidecar is a derived, disposable copy of a record's fields written next to
the artifacts as ``publication-<id>.xml``. It is rewritten after every
successful create or update and removed on delete; the record store always
wins when the two disagree.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, List, Tuple

from .database import PublicationRecord
from .utils import ensure_directory

logger = logging.getLogger(__name__)

ROOT_TAG = "publication"


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SidecarProjector:
    def __init__(self, output_dir: Path) -> None:
        self.output_dir = ensure_directory(Path(output_dir))

    @staticmethod
    def fields(record: PublicationRecord) -> List[Tuple[str, Any]]:
        """Element tags and values in document order."""
        return [
            ("title", record.title),
            ("author", record.author),
            ("volume", record.volume),
            ("issue", record.issue),
            ("year", record.year),
            ("doi", record.doi),
            ("isSpecialIssue", record.is_special_issue),
            ("content", record.content),
            ("id", record.id),
        ]

    def project(self, record: PublicationRecord) -> str:
        root = ET.Element(ROOT_TAG)
        for tag, value in self.fields(record):
            ET.SubElement(root, tag).text = _text(value)
        ET.indent(root, space="  ")
        return ET.tostring(root, encoding="utf-8", xml_declaration=True).decode("utf-8") + "\n"

    def path_for(self, record_id: str) -> Path:
        return self.output_dir / f"publication-{record_id}.xml"

    def persist(self, record_id: str, document: str) -> Path:
        path = self.path_for(record_id)
        tmp_path = path.with_suffix(".xml.tmp")
        tmp_path.write_text(document, encoding="utf-8")
        tmp_path.replace(path)
        logger.info(f"Wrote sidecar {path.name}")
        return path

    def retire(self, record_id: str) -> None:
        path = self.path_for(record_id)
        path.unlink(missing_ok=True)
        logger.info(f"Removed sidecar {path.name}")
