"""
Rasterizer
Splits a source file into an ordered sequence of page images.

- PDF: every page rendered to PNG with PyMuPDF, in document order
- Image: the source itself is the single page
- Text: the source itself is the single page (recognition is skipped later)
"""

import fitz  # PyMuPDF
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import RasterizationError

logger = logging.getLogger(__name__)

KIND_PDF = "pdf"
KIND_IMAGE = "image"
KIND_TEXT = "text"

DEFAULT_MEDIA_TYPE = "application/octet-stream"


def guess_media_type(filename: str) -> str:
    """Media type from a file name, application/octet-stream if unknown"""
    media_type, _ = mimetypes.guess_type(str(filename))
    return media_type or DEFAULT_MEDIA_TYPE


def source_kind(media_type: Optional[str]) -> str:
    """
    Classify a media type.

    Unknown types are treated as a single image page; the recognizer decides
    whether anything can be read from it.
    """
    media_type = (media_type or "").lower()
    if media_type == "application/pdf":
        return KIND_PDF
    if media_type.startswith("text/"):
        return KIND_TEXT
    return KIND_IMAGE


@dataclass
class RasterizedSource:
    """Ordered page images of one source"""
    image_paths: List[str] = field(default_factory=list)
    page_count: int = 0
    kind: str = KIND_IMAGE


class Rasterizer:
    """Produces one image path per page of a source file"""

    def __init__(self, output_root: Optional[Path] = None, dpi: int = 300):
        """
        Args:
            output_root: Directory for rendered pages. Defaults to a `pages`
                directory next to each source.
            dpi: Render resolution for PDF pages
        """
        self.output_root = Path(output_root) if output_root else None
        self.dpi = dpi

    def rasterize(self, source_path: str, media_type: Optional[str] = None) -> RasterizedSource:
        """
        Rasterize a source into ordered page images.

        Args:
            source_path: Stored source file
            media_type: MIME type; guessed from the file name if None

        Returns:
            RasterizedSource with image paths and page count

        Raises:
            RasterizationError: If the source is missing, unreadable or has
                no pages
        """
        path = Path(source_path)
        if not path.is_file():
            raise RasterizationError(f"Source file not found: {source_path}")

        kind = source_kind(media_type or guess_media_type(path.name))

        if kind != KIND_PDF:
            logger.info(f"Single-page {kind} source: {path.name}")
            return RasterizedSource(image_paths=[str(path)], page_count=1, kind=kind)

        image_paths = self._render_pdf(path)
        return RasterizedSource(
            image_paths=image_paths, page_count=len(image_paths), kind=KIND_PDF
        )

    def render_page(
        self,
        source_path: str,
        page_number: int,
        media_type: Optional[str] = None
    ) -> Tuple[str, str]:
        """
        Render a single page again.

        Args:
            source_path: Stored source file
            page_number: 1-based page number
            media_type: MIME type; guessed from the file name if None

        Returns:
            (image_path, kind) for the page

        Raises:
            RasterizationError: If the source is missing or unreadable, or
                the page number is out of range
        """
        path = Path(source_path)
        if not path.is_file():
            raise RasterizationError(f"Source file not found: {source_path}")

        kind = source_kind(media_type or guess_media_type(path.name))
        if kind != KIND_PDF:
            if page_number != 1:
                raise RasterizationError(
                    f"{path.name} has a single page, got page {page_number}"
                )
            return str(path), kind

        try:
            doc = fitz.open(path)
        except Exception as e:
            logger.error(f"Failed to open PDF: {e}")
            raise RasterizationError(f"Cannot open PDF {path.name}: {e}") from e

        try:
            if not 1 <= page_number <= len(doc):
                raise RasterizationError(
                    f"Page {page_number} out of range for {path.name} ({len(doc)} pages)"
                )
            pages_dir = self._pages_dir(path)
            pages_dir.mkdir(parents=True, exist_ok=True)
            return self._save_page(doc, page_number, path, pages_dir), KIND_PDF
        except RasterizationError:
            raise
        except Exception as e:
            logger.error(f"Failed to render page {page_number} of {path.name}: {e}", exc_info=True)
            raise RasterizationError(f"Cannot rasterize {path.name}: {e}") from e
        finally:
            doc.close()

    def _pages_dir(self, source: Path) -> Path:
        if self.output_root:
            return self.output_root / source.stem
        return source.parent / "pages"

    def _render_pdf(self, source: Path) -> List[str]:
        try:
            doc = fitz.open(source)
        except Exception as e:
            logger.error(f"Failed to open PDF: {e}")
            raise RasterizationError(f"Cannot open PDF {source.name}: {e}") from e

        try:
            page_count = len(doc)
            if page_count == 0:
                raise RasterizationError(f"PDF has no pages: {source.name}")

            pages_dir = self._pages_dir(source)
            pages_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Rasterizing {source.name}: {page_count} pages at {self.dpi} DPI")

            return [
                self._save_page(doc, page_number, source, pages_dir)
                for page_number in range(1, page_count + 1)
            ]
        except RasterizationError:
            raise
        except Exception as e:
            logger.error(f"Failed to rasterize {source.name}: {e}", exc_info=True)
            raise RasterizationError(f"Cannot rasterize {source.name}: {e}") from e
        finally:
            doc.close()

    def _save_page(self, doc, page_number: int, source: Path, pages_dir: Path) -> str:
        pix = doc[page_number - 1].get_pixmap(dpi=self.dpi)
        image_path = pages_dir / f"{source.stem}-{page_number}.png"
        pix.save(str(image_path))
        pix = None  # release pixmap memory
        return str(image_path)
