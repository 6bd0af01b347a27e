import base64
import os
import logging
import subprocess
from typing import Callable, Dict, List, Optional, Any

import ffmpeg
from PIL import Image

from ..errors import ExtractionError, ProbeError
from ..models import Frame
from .metadata import MetadataExtractor
from .util import get_frames_dir, frame_filename

logger = logging.getLogger("video_screener")

FRAME_EXTENSIONS = ('.jpg', '.jpeg', '.png')


def sample_timestamps(duration: float, count: int) -> List[float]:
    """
    Evenly spaced capture points that stay inside the video.
    
    Uses duration * i / (count + 1) for i in 1..count, so the first frame
    lands near the start and the last near the end without touching either.
    """
    if count < 1:
        return []
    duration = max(duration or 0.0, 0.0)
    return [round(duration * i / (count + 1), 3) for i in range(1, count + 1)]


def capture_frame(video_path: str, timestamp: float, frame_path: str,
                  width: int, height: int, timeout: float) -> None:
    """Write a single scaled JPEG at timestamp using ffmpeg"""
    process = (
        ffmpeg
        .input(video_path, ss=timestamp)
        .filter('scale', width, height)
        .output(frame_path, vframes=1, format='image2', vcodec='mjpeg')
        .overwrite_output()
        .run_async(pipe_stdout=True, pipe_stderr=True)
    )
    try:
        out, err = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()
        raise
    
    if process.returncode != 0:
        raise ffmpeg.Error('ffmpeg', out, err)


def validate_frame_file(frame_path: str) -> bool:
    """Validate that frame file exists and is readable"""
    if not os.path.exists(frame_path):
        return False
    
    try:
        # Try to open with PIL
        with Image.open(frame_path) as img:
            img.verify()
        return True
    except Exception:
        return False


class FrameSampler:
    """Samples N stills from a video into the per-job frame archive"""
    
    def __init__(self, data_dir: str, size: tuple = (640, 480), timeout: float = 60.0,
                 extractor: Optional[MetadataExtractor] = None,
                 capture_fn: Callable[..., None] = capture_frame):
        self.data_dir = data_dir
        self.width, self.height = size
        self.timeout = timeout
        self.extractor = extractor or MetadataExtractor()
        self._capture = capture_fn
    
    def extract(self, video_path: str, job_id: str, n: int = 5,
                duration: Optional[float] = None) -> List[Frame]:
        """
        Extract n evenly distributed frames.
        
        Frames are written to frames/{job_id}/frame-{i}.jpg (1-indexed) and
        read back into memory. The files are kept as the review archive.
        
        Returns:
            Ordered list of Frame objects
            
        Raises:
            ExtractionError: if ffmpeg fails or times out
        """
        if duration is None:
            try:
                duration = self.extractor.probe(video_path).duration
            except ProbeError as e:
                raise ExtractionError(f"Could not determine duration for job {job_id}: {e}") from e
        
        try:
            frames_dir = get_frames_dir(self.data_dir, job_id)
        except OSError as e:
            raise ExtractionError(f"Could not create frame archive for job {job_id}: {e}") from e
        
        timestamps = sample_timestamps(duration, n)
        logger.info(f"Extracting {n} frames for job {job_id} into {frames_dir}")
        
        frames = []
        for index, timestamp in enumerate(timestamps, start=1):
            frame_path = os.path.join(frames_dir, frame_filename(index))
            
            try:
                self._capture(video_path, timestamp, frame_path,
                              self.width, self.height, self.timeout)
            except ffmpeg.Error as e:
                stderr = e.stderr.decode(errors='replace') if e.stderr else str(e)
                raise ExtractionError(
                    f"ffmpeg failed extracting frame {index} for job {job_id}: {stderr.strip()}"
                ) from e
            except subprocess.TimeoutExpired as e:
                raise ExtractionError(
                    f"ffmpeg timed out extracting frame {index} for job {job_id}"
                ) from e
            except OSError as e:
                raise ExtractionError(f"Could not run ffmpeg for job {job_id}: {e}") from e
            
            if not validate_frame_file(frame_path):
                logger.warning(f"Frame {index} for job {job_id} missing or unreadable, skipping")
                continue
            
            try:
                with open(frame_path, 'rb') as frame_file:
                    data = frame_file.read()
            except OSError as e:
                raise ExtractionError(f"Could not read frame {index} for job {job_id}: {e}") from e
            
            frames.append(Frame(index=index, data=data, path=frame_path, timestamp=timestamp))
            logger.debug(f"Extracted frame {index} for job {job_id} at {timestamp:.2f}s")
        
        logger.info(f"Extracted {len(frames)}/{n} frames for job {job_id}, archived in {frames_dir}")
        return frames


def list_archived_frames(data_dir: str, job_id: str) -> List[Dict[str, Any]]:
    """
    List archived frames for manual review.
    
    Returns:
        Frame entries with id, filename and a base64 data URL, in index order
    """
    frames_dir = get_frames_dir(data_dir, job_id, create=False)
    if not os.path.isdir(frames_dir):
        return []
    
    def sort_key(filename: str):
        stem = os.path.splitext(filename)[0]
        _, _, number = stem.rpartition('-')
        return (int(number) if number.isdigit() else 0, filename)
    
    filenames = sorted(
        (name for name in os.listdir(frames_dir) if name.lower().endswith(FRAME_EXTENSIONS)),
        key=sort_key
    )
    
    entries = []
    for position, filename in enumerate(filenames, start=1):
        with open(os.path.join(frames_dir, filename), 'rb') as frame_file:
            encoded = base64.b64encode(frame_file.read()).decode('utf-8')
        entries.append({
            'id': position,
            'filename': filename,
            'data': f"data:image/jpeg;base64,{encoded}"
        })
    return entries
