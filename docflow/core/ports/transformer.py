"""Collaborator contract for the external transformation tools."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class Transformer(Protocol):
    """Turns one local input file into one or more local output files.

    Implementations wrap an external tool (renderer, OCR engine, speech
    synthesizer, transcoder) and raise ``TransformError`` when it fails. They
    write only inside ``workdir`` and return outputs in page order.
    """

    name: str
    output_suffix: str

    async def __call__(self, source: Path, workdir: Path) -> list[Path]: ...


__all__ = ["Transformer"]
