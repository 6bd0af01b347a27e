import os
import mimetypes
from typing import Optional


DEFAULT_DATA_DIR = "/app/data"
DEFAULT_FRAMES_DIR = "frames"


def resolve_video_path(stored_path: str, data_dir: str = DEFAULT_DATA_DIR) -> str:
    """Resolve a stored path to an absolute path under data_dir"""
    # If stored_path is already absolute, use it
    if os.path.isabs(stored_path):
        return stored_path
    
    # Otherwise, resolve relative to data directory
    return os.path.join(data_dir, stored_path.lstrip("/"))


def get_frames_dir(data_dir: str, job_id: str, create: bool = True) -> str:
    """Get the archive directory for a job's frames"""
    frames_dir = os.path.join(data_dir, DEFAULT_FRAMES_DIR, str(job_id))
    if create:
        os.makedirs(frames_dir, exist_ok=True)
    return frames_dir


def frame_filename(index: int) -> str:
    """Archive file name for a 1-indexed frame"""
    return f"frame-{index}.jpg"


def guess_mime_type(path: str, default: str = "video/mp4") -> str:
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or default


def get_file_size(file_path: str) -> Optional[int]:
    """Get file size in bytes, or None if the file is missing"""
    try:
        return os.path.getsize(file_path)
    except OSError:
        return None
