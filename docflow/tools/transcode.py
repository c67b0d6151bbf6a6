"""FFmpeg-based transcoding of raw page audio into its container format."""

from __future__ import annotations

from pathlib import Path

from docflow.tools.base import require_binary, run_tool_async


class FfmpegTranscoder:
    """Convert WAV audio into the configured container (mp3 by default)."""

    name = "transcode"

    def __init__(
        self,
        codec: str = "libmp3lame",
        bitrate: str = "128k",
        sample_rate: int = 22050,
        container: str = "mp3",
    ) -> None:
        self.codec = codec
        self.bitrate = bitrate
        self.sample_rate = sample_rate
        self.output_suffix = f".{container}"

    async def __call__(self, source: Path, workdir: Path) -> list[Path]:
        binary = require_binary("ffmpeg")
        workdir.mkdir(parents=True, exist_ok=True)
        target = workdir / f"{Path(source).stem}{self.output_suffix}"

        await run_tool_async(
            [
                binary,
                "-y",
                "-i", str(source),
                "-c:a", self.codec,
                "-b:a", self.bitrate,
                "-ar", str(self.sample_rate),
                "-ac", "1",  # Mono
                str(target),
            ]
        )
        return [target]


__all__ = ["FfmpegTranscoder"]
