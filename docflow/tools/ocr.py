"""Text extraction with the Tesseract OCR command-line tool."""

from __future__ import annotations

import asyncio
from pathlib import Path

from docflow.tools.base import require_binary, run_tool_async


class TesseractExtractor:
    """Extract plain text from a page image."""

    name = "extract"
    output_suffix = ".txt"

    def __init__(self, language: str = "eng", psm: int = 3) -> None:
        self.language = language
        self.psm = psm

    async def __call__(self, source: Path, workdir: Path) -> list[Path]:
        binary = require_binary("tesseract")
        workdir.mkdir(parents=True, exist_ok=True)

        result = await run_tool_async(
            [binary, str(source), "stdout", "-l", self.language, "--psm", str(self.psm)]
        )

        target = workdir / f"{Path(source).stem}{self.output_suffix}"
        await asyncio.to_thread(target.write_text, result.stdout, encoding="utf-8")
        return [target]


__all__ = ["TesseractExtractor"]
