"""Quality and resolution search that lands a JPEG inside a byte-size window."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from signature_formatter.imgproc.envelope import MAX_QUALITY, TargetEnvelope
from signature_formatter.imgproc.normalize import PixelNormalizer
from signature_formatter.metrics.prometheus_exporter import encode_attempts_total
from signature_formatter.storage.files import FileRole, RequestFiles

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EncodingAttempt:
    """Outcome of a single encode pass, measured from disk."""

    quality: int
    scale_factor: float
    byte_size: int
    file_path: Path


@dataclass(frozen=True, slots=True)
class EncodingResult:
    """Terminal outcome of :meth:`SizeConstrainedEncoder.encode`.

    ``attempts`` is a log of every pass in order. Passes are written over
    a shared working or output file, so only ``path`` (and
    ``final.file_path``) is guaranteed to hold the bytes its attempt
    measured; earlier attempts' paths may be gone or hold later passes.
    """

    path: Path
    final: EncodingAttempt
    attempts: tuple[EncodingAttempt, ...]
    fast_path: bool
    within_envelope: bool


def next_quality(attempt: EncodingAttempt, envelope: TargetEnvelope) -> int | None:
    """Return the quality for the next pass, or ``None`` to accept ``attempt``.

    Undersized results step quality up and oversized results step it down,
    clamped to ``envelope.quality_bounds``. Once quality is saturated in the
    needed direction the attempt is accepted even though it is out of range.
    """

    low, high = envelope.quality_bounds
    if attempt.byte_size < envelope.min_bytes and attempt.quality < high:
        return min(attempt.quality + envelope.quality_step, high)
    if attempt.byte_size > envelope.max_bytes and attempt.quality > low:
        return max(attempt.quality - envelope.quality_step, low)
    return None


def _measure(path: Path) -> int:
    return path.stat().st_size


class SizeConstrainedEncoder:
    """Drives encode passes until the output size falls inside the envelope."""

    def __init__(self, normalizer: PixelNormalizer) -> None:
        self._normalizer = normalizer
        self._envelope = normalizer.envelope

    def encode(self, source: Path, files: RequestFiles) -> EncodingResult:
        """Format ``source`` and return the accepted JPEG.

        Every path written along the way is allocated from ``files`` so the
        caller can hand the whole set to the lifecycle manager, including
        when this method raises.
        """

        envelope = self._envelope
        source_size = _measure(source)

        if envelope.contains(source_size):
            return self._encode_once(source, files)

        attempts, accepted = self._search_quality(source, files)
        if accepted.byte_size < envelope.min_bytes:
            attempts.extend(self._upscale(accepted, files))
        else:
            output = files.allocate(FileRole.OUTPUT, "formatted_signature")
            os.replace(accepted.file_path, output)
            attempts[-1] = replace(accepted, file_path=output)

        final = attempts[-1]
        within = envelope.contains(final.byte_size)
        logger.info(
            "Encoded %s in %d passes: %d bytes at quality %d, scale %.1f%s",
            source.name,
            len(attempts),
            final.byte_size,
            final.quality,
            final.scale_factor,
            "" if within else " (outside envelope)",
        )
        return EncodingResult(
            path=final.file_path,
            final=final,
            attempts=tuple(attempts),
            fast_path=False,
            within_envelope=within,
        )

    def _encode_once(self, source: Path, files: RequestFiles) -> EncodingResult:
        output = files.allocate(FileRole.OUTPUT, "formatted_signature")
        self._normalizer.normalize(source, output, MAX_QUALITY)
        encode_attempts_total.labels(stage="fast_path").inc()
        attempt = EncodingAttempt(
            quality=MAX_QUALITY,
            scale_factor=1.0,
            byte_size=_measure(output),
            file_path=output,
        )
        logger.info("Source %s already fits the envelope; re-encoded once.", source.name)
        return EncodingResult(
            path=output,
            final=attempt,
            attempts=(attempt,),
            fast_path=True,
            within_envelope=self._envelope.contains(attempt.byte_size),
        )

    def _search_quality(
        self,
        source: Path,
        files: RequestFiles,
    ) -> tuple[list[EncodingAttempt], EncodingAttempt]:
        """Run the quality passes; return them with the attempt to keep.

        When consecutive passes straddle the window (one under ``min_bytes``,
        the next over ``max_bytes``) the search would revisit a quality it
        already tried. It stops there and keeps the undersized pass so that
        upscale compensation can lift it into range.
        """

        envelope = self._envelope
        working = files.allocate(FileRole.INTERMEDIATE, "temp_signature")
        self._normalizer.normalize(source, working, MAX_QUALITY)

        attempts: list[EncodingAttempt] = []
        tried: set[int] = set()
        previous: EncodingAttempt | None = None
        quality = envelope.initial_quality
        while True:
            candidate = files.allocate(FileRole.INTERMEDIATE, "intermediate_signature")
            self._normalizer.encode(working, candidate, quality)
            encode_attempts_total.labels(stage="quality").inc()
            attempt = EncodingAttempt(
                quality=quality,
                scale_factor=1.0,
                byte_size=_measure(candidate),
                file_path=candidate,
            )
            attempts.append(attempt)
            tried.add(quality)
            logger.debug("Quality %d -> %d bytes", quality, attempt.byte_size)

            following = next_quality(attempt, envelope)
            if following is None:
                return attempts, attempt
            if following in tried:
                if attempt.byte_size > envelope.max_bytes and previous is not None:
                    if previous.byte_size < envelope.min_bytes:
                        # The previous pass was moved onto the working file.
                        return attempts, replace(previous, file_path=working)
                return attempts, attempt

            os.replace(candidate, working)
            previous = attempt
            quality = following

    def _upscale(self, base: EncodingAttempt, files: RequestFiles) -> list[EncodingAttempt]:
        envelope = self._envelope
        output = files.allocate(FileRole.OUTPUT, "formatted_signature")
        attempts: list[EncodingAttempt] = []
        byte_size = base.byte_size
        step = 0
        while byte_size < envelope.min_bytes:
            scale_factor = envelope.scale_factor_for(step)
            if scale_factor > envelope.max_scale_factor:
                logger.warning(
                    "Gave up upscaling at %.1fx with %d bytes (< %d)",
                    envelope.scale_factor_for(step - 1),
                    byte_size,
                    envelope.min_bytes,
                )
                break

            candidate = files.allocate(FileRole.OUTPUT, "upscaled_signature")
            self._normalizer.upscale(base.file_path, candidate, scale_factor, MAX_QUALITY)
            os.replace(candidate, output)
            encode_attempts_total.labels(stage="upscale").inc()
            byte_size = _measure(output)
            attempts.append(
                EncodingAttempt(
                    quality=MAX_QUALITY,
                    scale_factor=scale_factor,
                    byte_size=byte_size,
                    file_path=output,
                ),
            )
            logger.debug("Scale %.1f -> %d bytes", scale_factor, byte_size)
            step += 1

        return attempts
