"""Speech synthesis with the espeak-ng command-line tool."""

from __future__ import annotations

import asyncio
from pathlib import Path

from docflow.tools.base import require_binary, run_tool_async


class EspeakSynthesizer:
    """Synthesize a page of text into a WAV file.

    Empty pages still produce a (silent) WAV so every page keeps a slot in
    the final report.
    """

    name = "synthesize"
    output_suffix = ".wav"

    def __init__(self, voice: str = "en-us", words_per_minute: int = 165, sample_rate: int = 22050) -> None:
        self.voice = voice
        self.words_per_minute = words_per_minute
        self.sample_rate = sample_rate

    async def __call__(self, source: Path, workdir: Path) -> list[Path]:
        binary = require_binary("espeak-ng")
        workdir.mkdir(parents=True, exist_ok=True)

        text = (await asyncio.to_thread(Path(source).read_text, encoding="utf-8")).strip() or " "
        target = workdir / f"{Path(source).stem}{self.output_suffix}"

        await run_tool_async(
            [
                binary,
                "-v", self.voice,
                "-s", str(self.words_per_minute),
                "-w", str(target),
                "--stdin",
            ],
            input_text=text,
        )
        return [target]


__all__ = ["EspeakSynthesizer"]
