"""
Technical metadata extraction with ffprobe.

The first video stream supplies resolution, frame rate and codec;
the container format supplies duration and bitrate.
"""

import json
import logging
import subprocess
from typing import Any, Callable, Dict, Optional

import ffmpeg

from ..errors import ProbeError
from ..models import VideoMetadata

logger = logging.getLogger("video_screener")


def parse_frame_rate(value: Optional[str]) -> float:
    """
    Evaluate an ffprobe rational such as "30000/1001".
    
    Returns 0.0 for absent, malformed, zero-denominator or negative input.
    """
    if value is None:
        return 0.0
    
    text = str(value).strip()
    if not text:
        return 0.0
    
    try:
        if "/" in text:
            numerator, denominator = text.split("/", 1)
            rate = float(numerator) / float(denominator)
        else:
            rate = float(text)
    except (ValueError, ZeroDivisionError):
        return 0.0
    
    # nan and inf fail this check too
    if not (0.0 <= rate < float("inf")):
        return 0.0
    return rate


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if result >= 0 else default


def _to_int(value: Any) -> Optional[int]:
    try:
        result = int(value)
    except (TypeError, ValueError):
        return None
    return result if result > 0 else None


def metadata_from_probe(probe: Dict[str, Any]) -> VideoMetadata:
    """Build VideoMetadata from ffprobe's JSON output"""
    streams = probe.get('streams') or []
    video_stream = next(
        (stream for stream in streams if stream.get('codec_type') == 'video'),
        None
    )
    fmt = probe.get('format') or {}
    
    if video_stream is None:
        logger.warning("No video stream reported by ffprobe")
        video_stream = {}
    
    duration = _to_float(fmt.get('duration'))
    if not duration:
        duration = _to_float(video_stream.get('duration'))
    
    return VideoMetadata(
        duration=duration,
        width=_to_int(video_stream.get('width')),
        height=_to_int(video_stream.get('height')),
        fps=parse_frame_rate(video_stream.get('r_frame_rate')),
        bitrate=_to_int(fmt.get('bit_rate')) or 0,
        codec=video_stream.get('codec_name') or None,
    )


def run_ffprobe(video_path: str, timeout: Optional[float] = None, cmd: str = "ffprobe") -> Dict[str, Any]:
    """
    Run ffprobe and return its JSON output.
    
    Builds the same command as ffmpeg.probe but bounds it with timeout;
    the process is killed when the deadline passes.
    
    Raises:
        ffmpeg.Error: on a non-zero exit
        subprocess.TimeoutExpired: if ffprobe runs past timeout
    """
    args = [cmd, "-show_format", "-show_streams", "-of", "json", video_path]
    process = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    try:
        out, err = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()
        raise
    
    if process.returncode != 0:
        raise ffmpeg.Error(cmd, out, err)
    return json.loads(out.decode("utf-8"))


class MetadataExtractor:
    """Runs ffprobe with a bounded timeout and normalizes its output"""
    
    def __init__(self, timeout: float = 30.0, probe_fn: Callable[..., Dict[str, Any]] = run_ffprobe):
        self.timeout = timeout
        self._probe = probe_fn
    
    def probe(self, video_path: str) -> VideoMetadata:
        """
        Inspect a video file.
        
        Args:
            video_path: Path to the video
            
        Returns:
            VideoMetadata for the file
            
        Raises:
            ProbeError: if the inspection tool fails in any way
        """
        try:
            probe = self._probe(video_path, timeout=self.timeout)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode(errors='replace') if e.stderr else str(e)
            raise ProbeError(f"ffprobe failed for {video_path}: {stderr.strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"ffprobe timed out after {self.timeout}s for {video_path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ProbeError(f"Could not probe {video_path}: {e}") from e
        
        metadata = metadata_from_probe(probe)
        logger.info(
            f"Probed {video_path}: {metadata.duration:.2f}s, {metadata.resolution}, "
            f"{metadata.fps:.2f}fps, codec={metadata.codec}"
        )
        return metadata
