"""Image normalisation helpers."""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path

from PIL import Image, ImageOps

from signature_formatter.errors import CodecError, DecodeError
from signature_formatter.imgproc.envelope import TargetEnvelope

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255)


class PixelNormalizer:
    """Resizes signatures to the envelope footprint and writes them as JPEG.

    Every public method reads one file and writes exactly one new file; the
    source is never modified. Images are encoded into memory first, so a
    ``CodecError`` always means the JPEG encoder failed while an ``OSError``
    means the destination could not be written.
    """

    def __init__(self, envelope: TargetEnvelope) -> None:
        self._envelope = envelope

    @property
    def envelope(self) -> TargetEnvelope:
        return self._envelope

    def normalize(self, source: Path, destination: Path, quality: int) -> Path:
        """Cover-fit ``source`` to exactly the target pixel size."""

        image = self._load(source)
        fitted = ImageOps.fit(
            image,
            self._envelope.size,
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )
        return self._write_jpeg(fitted, destination, quality)

    def encode(self, source: Path, destination: Path, quality: int) -> Path:
        """Re-encode ``source`` at ``quality`` without touching its dimensions."""

        return self._write_jpeg(self._load(source), destination, quality)

    def upscale(self, source: Path, destination: Path, scale_factor: float, quality: int) -> Path:
        """Contain-fit ``source`` into the envelope grown by ``scale_factor``.

        Aspect ratio is preserved and the uncovered canvas is padded with
        opaque white.
        """

        if scale_factor < 1.0:
            raise ValueError("Upscaling never shrinks below the target size.")
        canvas_size = self._envelope.scaled_size(scale_factor)
        padded = ImageOps.pad(
            self._load(source),
            canvas_size,
            method=Image.Resampling.LANCZOS,
            color=WHITE,
            centering=(0.5, 0.5),
        )
        return self._write_jpeg(padded, destination, quality)

    @staticmethod
    def _load(source: Path) -> Image.Image:
        try:
            with Image.open(source) as img:
                img.load()
                oriented = ImageOps.exif_transpose(img)
                return _flatten(oriented)
        except FileNotFoundError:
            raise
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Cannot decode image {source.name}.") from exc

    @staticmethod
    def _write_jpeg(image: Image.Image, destination: Path, quality: int) -> Path:
        buffer = BytesIO()
        try:
            image.save(buffer, format="JPEG", quality=quality)
        except (OSError, ValueError) as exc:
            raise CodecError(f"JPEG encoding failed at quality {quality}.") from exc

        destination.write_bytes(buffer.getvalue())
        logger.debug("Wrote %s (%sx%s, quality %s)", destination.name, *image.size, quality)
        return destination


def _flatten(image: Image.Image) -> Image.Image:
    """Return an RGB copy with any transparency composited onto white."""

    if image.mode in ("RGBA", "LA", "PA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, WHITE)
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image.copy()
