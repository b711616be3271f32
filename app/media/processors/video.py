"""
Video processors for stills, playfield clips and faststart remuxing.

Uses FFmpeg/FFprobe via subprocess for video processing with proper
error handling for:
- Corrupted video files
- Unsupported codecs
- Videos without video tracks
- Timeout constraints

Processors:
    VideoScreenshotProcessor: Grabs a still frame from the original
    VideoThumbProcessor: Transcodes a scaled (and rotated) clip
    VideoOptimizationProcessor: Moves the MP4 index to the front
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import TYPE_CHECKING, Any

from django.conf import settings
from PIL import Image

from media.categories import MimeCategory
from media.processors.base import (
    VIDEO_PROBE_TIMEOUT,
    VIDEO_SCREENSHOT_TIMEOUT,
    VIDEO_TRANSCODE_TIMEOUT,
    CreationProcessor,
    OptimizationProcessor,
    PermanentProcessingError,
    TransientProcessingError,
)
from media.processors.image import save_image

if TYPE_CHECKING:
    from media.models import MediaFile
    from media.variations import Variation

logger = logging.getLogger(__name__)

# Position of the still frame, relative to the duration
SCREENSHOT_POSITION = 0.25

# FFmpeg transpose filters by clockwise rotation
TRANSPOSE_FILTERS = {
    90: "transpose=1",
    180: "transpose=1,transpose=1",
    270: "transpose=2",
}


# =============================================================================
# Exceptions
# =============================================================================


class VideoProcessingError(PermanentProcessingError):
    """
    Raised when video processing fails permanently.

    This exception indicates a non-recoverable error such as:
    - Corrupted video file
    - Unsupported video codec
    - No video track present
    - Invalid container format

    Jobs are NOT retried when this exception is raised.
    """

    pass


# =============================================================================
# FFmpeg Helpers
# =============================================================================


def _run(media_file: "MediaFile", cmd: list[str], timeout: int) -> subprocess.CompletedProcess:
    """
    Run an FFmpeg binary and map its failures to processing errors.

    Raises:
        VideoProcessingError: Non-zero exit status.
        TransientProcessingError: Timeout or binary not installed.
    """
    binary = cmd[0]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning(
            f"{binary} timed out",
            extra={"media_file_id": str(media_file.pk), "timeout": timeout},
        )
        raise TransientProcessingError(f"{binary} timed out after {timeout} seconds")
    except FileNotFoundError:
        logger.error(
            f"{binary} not found - ensure FFmpeg is installed",
            extra={"media_file_id": str(media_file.pk)},
        )
        raise TransientProcessingError(f"{binary} not found - FFmpeg may not be installed")

    if result.returncode != 0:
        stderr = result.stderr.strip() if result.stderr else "Unknown error"
        logger.warning(
            f"{binary} failed",
            extra={
                "media_file_id": str(media_file.pk),
                "returncode": result.returncode,
                # Truncate long errors
                "stderr": stderr[-500:],
            },
        )
        raise VideoProcessingError(f"{binary} failed: {stderr[-500:]}")

    return result


def probe_video(media_file: "MediaFile", path: str) -> dict[str, Any]:
    """
    Extract metadata from a video file using FFprobe.

    Returns:
        Dictionary with width, height, codec, has_audio and, when known,
        duration in seconds.

    Raises:
        VideoProcessingError: If video cannot be read (permanent failure).
        TransientProcessingError: For timeout errors that should be retried.
    """
    result = _run(
        media_file,
        [
            settings.FFPROBE_PATH,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            path,
        ],
        VIDEO_PROBE_TIMEOUT,
    )

    try:
        probe_data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        logger.warning(
            "Failed to parse FFprobe output",
            extra={"media_file_id": str(media_file.pk), "error": str(e)},
        )
        raise VideoProcessingError(f"Failed to parse video metadata: {e}") from e

    video_stream = None
    audio_stream = None
    for stream in probe_data.get("streams", []):
        codec_type = stream.get("codec_type")
        if codec_type == "video" and video_stream is None:
            video_stream = stream
        elif codec_type == "audio" and audio_stream is None:
            audio_stream = stream

    if video_stream is None:
        logger.warning(
            "No video track found in file",
            extra={"media_file_id": str(media_file.pk)},
        )
        raise VideoProcessingError("No video track found in file")

    metadata: dict[str, Any] = {
        "width": video_stream.get("width"),
        "height": video_stream.get("height"),
        "codec": video_stream.get("codec_name"),
        "has_audio": audio_stream is not None,
    }

    # Duration from format (more reliable) or stream
    format_info = probe_data.get("format", {})
    duration_str = format_info.get("duration") or video_stream.get("duration")
    if duration_str:
        try:
            metadata["duration"] = float(duration_str)
        except (ValueError, TypeError):
            pass

    return metadata


def _video_filters(variation: "Variation") -> str:
    filters = []
    if variation.rotate:
        filters.append(TRANSPOSE_FILTERS[variation.rotate % 360])
    if variation.width and variation.height:
        filters.append(
            f"scale={variation.width}:{variation.height}:force_original_aspect_ratio=decrease"
        )
    # libx264 needs even dimensions
    filters.append("scale=trunc(iw/2)*2:trunc(ih/2)*2")
    return ",".join(filters)


# =============================================================================
# Processors
# =============================================================================


class VideoScreenshotProcessor(CreationProcessor):
    """Extracts a still image from an original video."""

    name = "video.screenshot"

    def can_process(self, media_file, src_variation, dest_variation) -> bool:
        return (
            src_variation is None
            and media_file.get_category() == MimeCategory.VIDEO
            and media_file.get_category(dest_variation) == MimeCategory.IMAGE
        )

    def get_order(self, variation: "Variation | None" = None) -> int:
        # Stills are sources of further variations
        return 50

    def run(self, media_file, src_path, dest_path, src_variation, dest_variation) -> dict[str, Any]:
        metadata = probe_video(media_file, src_path)
        position = metadata.get("duration", 0) * SCREENSHOT_POSITION

        _run(
            media_file,
            [
                settings.FFMPEG_PATH,
                "-y",
                "-ss",
                f"{position:.2f}",
                "-i",
                src_path,
                "-vframes",
                "1",
                "-f",
                "image2",
                dest_path,
            ],
            VIDEO_SCREENSHOT_TIMEOUT,
        )

        try:
            with Image.open(dest_path) as img:
                img.load()
                if dest_variation.width and dest_variation.height:
                    img.thumbnail(
                        (dest_variation.width, dest_variation.height),
                        Image.Resampling.LANCZOS,
                    )
                    save_image(img, dest_path, media_file.get_mime_type(dest_variation))
                width, height = img.size
        except Image.UnidentifiedImageError as e:
            logger.warning(
                "Could not process extracted frame",
                extra={"media_file_id": str(media_file.pk), "error": str(e)},
            )
            raise VideoProcessingError(f"Extracted frame is invalid or corrupted: {e}") from e

        logger.info(
            "Extracted still frame",
            extra={
                "media_file_id": str(media_file.pk),
                "variation": dest_variation.name,
                "position": position,
                "size": f"{width}x{height}",
            },
        )
        return {"width": width, "height": height, "duration": metadata.get("duration")}


class VideoThumbProcessor(CreationProcessor):
    """Transcodes a scaled, optionally rotated, H.264 clip without audio."""

    name = "video.thumb"

    def can_process(self, media_file, src_variation, dest_variation) -> bool:
        return (
            media_file.get_category(src_variation) == MimeCategory.VIDEO
            and media_file.get_category(dest_variation) == MimeCategory.VIDEO
        )

    def get_order(self, variation: "Variation | None" = None) -> int:
        return 200 + (variation.priority if variation else 0)

    def run(self, media_file, src_path, dest_path, src_variation, dest_variation) -> dict[str, Any]:
        logger.info(
            "Transcoding video variation",
            extra={"media_file_id": str(media_file.pk), "variation": dest_variation.name},
        )
        _run(
            media_file,
            [
                settings.FFMPEG_PATH,
                "-y",
                "-i",
                src_path,
                "-vf",
                _video_filters(dest_variation),
                "-c:v",
                "libx264",
                "-preset",
                "medium",
                "-crf",
                "23",
                "-pix_fmt",
                "yuv420p",
                "-an",
                dest_path,
            ],
            VIDEO_TRANSCODE_TIMEOUT,
        )
        metadata = probe_video(media_file, dest_path)
        return {"width": metadata["width"], "height": metadata["height"]}


class VideoOptimizationProcessor(OptimizationProcessor):
    """
    Remuxes MP4 files so the index precedes the media data.

    Streams are copied, so the run is fast and lossless. Browsers can start
    playback before the download finished.
    """

    name = "video.optimize"

    def can_process(self, media_file, variation=None) -> bool:
        if variation is not None and not variation.optimizable:
            return False
        return media_file.get_mime_type(variation) == "video/mp4"

    def get_order(self, variation: "Variation | None" = None) -> int:
        return 500 + (variation.priority if variation else 50)

    def run(self, media_file, src_path, dest_path, variation=None) -> None:
        _run(
            media_file,
            [
                settings.FFMPEG_PATH,
                "-y",
                "-i",
                src_path,
                "-map",
                "0",
                "-c",
                "copy",
                "-movflags",
                "+faststart",
                dest_path,
            ],
            VIDEO_TRANSCODE_TIMEOUT,
        )
        logger.info(
            "Remuxed video for streaming",
            extra={
                "media_file_id": str(media_file.pk),
                "variation": variation.name if variation else None,
            },
        )
        return None
