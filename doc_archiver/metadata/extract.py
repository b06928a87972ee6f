import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import docx
import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError

from .. import config
from ..exceptions import ExtractionError
from ..models import OcrStatus, SnapshotEntry


@dataclass
class ExtractedContent:
    text: Optional[str] = None
    preview: Optional[str] = None
    ocr_status: OcrStatus = OcrStatus.SKIPPED

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


class ContentExtractor:
    """
    Unified interface for pulling text and a preview out of archived files.

    Strategies:
      - Images: Pillow thumbnail for preview, 'pytesseract' for OCR.
      - Word: 'python-docx' paragraphs and table cells.
      - Text/CSV/JSON: decoded and truncated.
      - Everything else (PDF included): binary preview only, no text.

    extract() never raises. Any failure degrades to "no text".
    """

    def __init__(self, ocr_languages: str = config.OCR_LANGUAGES):
        self.ocr_languages = ocr_languages

    def extract(self, entry: SnapshotEntry) -> ExtractedContent:
        path = entry.location
        kind = config.EXT_TO_KIND.get(path.suffix.lower(), 'other')

        try:
            if kind == 'image':
                return self._extract_image(path)
            if kind == 'word':
                return self._extract_word(path)
            if kind == 'text':
                return self._extract_text(path)
            return self._extract_binary(path, entry.mime_type)
        except ExtractionError as e:
            logging.warning(f"Extraction failed for {entry.path}: {e}")
        except Exception as e:
            logging.error(f"Unexpected extraction error for {entry.path}: {e}")
        return ExtractedContent(text=None, preview=None, ocr_status=OcrStatus.FAILED)

    # --- Strategies ---

    def _extract_image(self, path: Path) -> ExtractedContent:
        try:
            with Image.open(path) as img:
                img.load()
                preview = self._thumbnail_data_uri(img)
                gray = ImageOps.grayscale(img)
        except (UnidentifiedImageError, OSError) as e:
            raise ExtractionError(f"cannot decode image {path.name}: {e}") from e

        # OCR failure is not an extraction failure: we still have the preview
        try:
            text = pytesseract.image_to_string(gray, lang=self.ocr_languages) or ""
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError, RuntimeError) as e:
            logging.warning(f"OCR failed for {path.name}: {e}")
            return ExtractedContent(text="", preview=preview, ocr_status=OcrStatus.FAILED)

        return ExtractedContent(text=text.strip(), preview=preview, ocr_status=OcrStatus.COMPLETED)

    def _extract_word(self, path: Path) -> ExtractedContent:
        try:
            document = docx.Document(str(path))
        except Exception as e:
            # python-docx raises a zoo of types (PackageNotFoundError, KeyError, BadZipFile)
            raise ExtractionError(f"cannot open Word document {path.name}: {e}") from e

        parts = [p.text for p in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                parts.append("\t".join(cell.text for cell in row.cells))

        text = "\n".join(p for p in parts if p is not None).strip()
        if not text:
            # Keep a signal for the classifier instead of an empty string
            text = config.EMPTY_DOCUMENT_MARKER

        return ExtractedContent(
            text=text[:config.TEXT_CONTENT_LIMIT],
            preview=text[:config.TEXT_PREVIEW_LIMIT],
            ocr_status=OcrStatus.COMPLETED,
        )

    def _extract_text(self, path: Path) -> ExtractedContent:
        try:
            # A UTF-8 char is at most 4 bytes; no need to read past that
            with path.open('rb') as f:
                raw = f.read(config.TEXT_CONTENT_LIMIT * 4)
        except OSError as e:
            raise ExtractionError(f"cannot read {path.name}: {e}") from e

        try:
            text = raw.decode('utf-8')
        except UnicodeDecodeError:
            # Possibly cut mid-character, or a legacy encoding
            text = raw.decode('utf-8', errors='ignore') or raw.decode('latin-1')

        text = text[:config.TEXT_CONTENT_LIMIT]
        return ExtractedContent(
            text=text,
            preview=text[:config.TEXT_PREVIEW_LIMIT],
            ocr_status=OcrStatus.COMPLETED,
        )

    def _extract_binary(self, path: Path, mime_type: str) -> ExtractedContent:
        try:
            size = path.stat().st_size
            if size > config.MAX_BINARY_PREVIEW_BYTES:
                logging.debug(f"{path.name} too large for inline preview ({size} bytes)")
                return ExtractedContent(text=None, preview=None, ocr_status=OcrStatus.SKIPPED)
            data = path.read_bytes()
        except OSError as e:
            raise ExtractionError(f"cannot read {path.name}: {e}") from e

        mime = mime_type or "application/octet-stream"
        encoded = base64.b64encode(data).decode('ascii')
        return ExtractedContent(
            text=None,
            preview=f"data:{mime};base64,{encoded}",
            ocr_status=OcrStatus.SKIPPED,
        )

    # --- Helpers ---

    def _thumbnail_data_uri(self, img: Image.Image) -> str:
        thumb = img.copy()
        thumb.thumbnail(config.THUMBNAIL_SIZE)
        if thumb.mode not in ('RGB', 'RGBA', 'L'):
            thumb = thumb.convert('RGBA')
        buf = io.BytesIO()
        thumb.save(buf, format='PNG')
        return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode('ascii')
