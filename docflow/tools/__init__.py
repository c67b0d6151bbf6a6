"""Adapters for the external transformation tools invoked by stage workers."""

from docflow.tools.ocr import TesseractExtractor
from docflow.tools.render import PdfRenderer
from docflow.tools.speech import EspeakSynthesizer
from docflow.tools.transcode import FfmpegTranscoder

__all__ = ["EspeakSynthesizer", "FfmpegTranscoder", "PdfRenderer", "TesseractExtractor"]
