"""PDF page rendering with PyMuPDF."""

from __future__ import annotations

import asyncio
from pathlib import Path

from docflow.core.errors import TransformError


class PdfRenderer:
    """Render every page of a PDF to an image file.

    Output files are named ``page-0001.png``, ``page-0002.png``, ... and
    returned in page order.
    """

    name = "render"

    def __init__(self, dpi: int = 150, image_format: str = "png") -> None:
        self.dpi = dpi
        self.image_format = image_format
        self.output_suffix = f".{image_format}"

    async def __call__(self, source: Path, workdir: Path) -> list[Path]:
        return await asyncio.to_thread(self._render, Path(source), Path(workdir))

    def _render(self, source: Path, workdir: Path) -> list[Path]:
        import fitz

        workdir.mkdir(parents=True, exist_ok=True)

        try:
            document = fitz.open(source)
        except Exception as exc:  # fitz raises its own FileDataError/RuntimeError types
            raise TransformError(f"Could not open {source.name}: {exc}") from exc

        outputs: list[Path] = []
        try:
            if document.page_count == 0:
                raise TransformError(f"{source.name} has no pages")

            for index in range(document.page_count):
                pixmap = document.load_page(index).get_pixmap(dpi=self.dpi)
                target = workdir / f"page-{index + 1:04d}{self.output_suffix}"
                pixmap.save(str(target))
                outputs.append(target)
        finally:
            document.close()

        return outputs


__all__ = ["PdfRenderer"]
