"""Bulk OCR over local files using Tesseract."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytesseract
from PIL import Image, UnidentifiedImageError  # type: ignore[import]

from docflow.app.ports import BulkDocument, BulkOperationPort, ItemStatus
from docflow.app.ports.bulk import (
    STATUS_INTERNAL,
    STATUS_INVALID_ARGUMENT,
    STATUS_NOT_FOUND,
    STATUS_OK,
)
from docflow.errors import BulkOperationError
from docflow.utils.fsio import atomic_write_text
from docflow.utils.hashing import compute_sha256

logger = logging.getLogger(__name__)

FILE_SCHEME = "file://"


def uri_to_path(uri: str) -> Path | None:
    """Map ``file://`` URIs and bare paths to a local path; other schemes give ``None``."""
    if uri.startswith(FILE_SCHEME):
        return Path(uri[len(FILE_SCHEME):])
    if "://" in uri:
        return None
    return Path(uri)


class TesseractBulkOCRAdapter(BulkOperationPort):
    """Run Tesseract over every document of a batch.

    One JSON result per input is written into the output location. Per-item
    problems become status codes; only an unusable output location fails the
    whole call.
    """

    def __init__(self, *, lang: str = "eng") -> None:
        self.lang = lang

        version = self._get_tesseract_version()
        major = self._extract_major_version(version)
        if major is not None and major < 4:
            raise RuntimeError(
                f"Tesseract 4.0+ required (found {version}). "
                "Upgrade: brew upgrade tesseract",
            )

    def process(self, documents: list[BulkDocument], output_uri: str) -> list[ItemStatus]:
        output_dir = uri_to_path(output_uri)
        if output_dir is None:
            raise BulkOperationError(f"unsupported output location: {output_uri}")
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BulkOperationError(f"cannot create output location {output_dir}: {exc}") from exc

        return [self._process_one(document, output_dir) for document in documents]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _process_one(self, document: BulkDocument, output_dir: Path) -> ItemStatus:
        path = uri_to_path(document.uri)
        if path is None:
            return _status(document, STATUS_INVALID_ARGUMENT, "unsupported uri scheme")
        if not document.mime_type.startswith("image/"):
            return _status(
                document, STATUS_INVALID_ARGUMENT, f"unsupported mime type {document.mime_type}"
            )
        if not path.is_file():
            return _status(document, STATUS_NOT_FOUND, f"input not found: {path}")

        try:
            with Image.open(path) as image:
                text, confidence = self._ocr_image(image)
        except UnidentifiedImageError as exc:
            return _status(document, STATUS_INVALID_ARGUMENT, f"unreadable image: {exc}")
        except (pytesseract.TesseractError, OSError) as exc:
            logger.warning("OCR failed for %s: %s", document.uri, exc)
            return _status(document, STATUS_INTERNAL, str(exc))

        result = {
            "uri": document.uri,
            "mime_type": document.mime_type,
            "language": self.lang,
            "confidence": confidence,
            "text": text,
        }
        destination = output_dir / _result_name(document.uri)
        try:
            atomic_write_text(
                destination, json.dumps(result, separators=(",", ":"), ensure_ascii=False)
            )
        except OSError as exc:
            return _status(document, STATUS_INTERNAL, f"failed to write result: {exc}")

        return _status(document, STATUS_OK)

    def _ocr_image(self, image: Image.Image) -> tuple[str, float]:
        text = pytesseract.image_to_string(image, lang=self.lang)
        data = pytesseract.image_to_data(
            image,
            lang=self.lang,
            output_type=pytesseract.Output.DICT,
        )
        confidences = [
            float(conf)
            for conf in data.get("conf", [])
            if conf not in {"-1", -1}
        ]
        avg_confidence = (
            sum(confidences) / len(confidences) / 100 if confidences else 0.0
        )
        return text, avg_confidence

    @staticmethod
    def _extract_major_version(version: str) -> int | None:
        parts = str(version).split(".", 1)
        try:
            return int(parts[0])
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _get_tesseract_version() -> str:
        try:
            return str(pytesseract.get_tesseract_version())
        except pytesseract.TesseractNotFoundError as exc:  # type: ignore[attr-defined]
            raise RuntimeError(
                "Tesseract not installed. Install with:\n"
                "  macOS: brew install tesseract\n"
                "  Ubuntu: apt-get install tesseract-ocr",
            ) from exc


def _status(document: BulkDocument, code: int, message: str = "") -> ItemStatus:
    return ItemStatus(uri=document.uri, code=code, message=message)


def _result_name(uri: str) -> str:
    stem = Path(uri.rsplit("/", 1)[-1]).stem or "document"
    return f"{stem}-{compute_sha256(uri.encode('utf-8'))[:12]}.json"
