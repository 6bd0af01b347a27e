import os
import re
import math
import asyncio
import logging
from typing import Optional, Tuple, Iterator
from threading import Thread

from fastapi import FastAPI, HTTPException, Header, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
import uvicorn

from .models import JobStatus
from .pipeline.frames import list_archived_frames
from .pipeline.util import resolve_video_path

logger = logging.getLogger("video_screener")

STREAM_CHUNK_SIZE = 1024 * 1024
RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")
TERMINAL_EVENTS = ("completed", "failed")
MAX_PAGE_SIZE = 100

# Public sort keys, as they appear in job payloads
SORT_KEYS = {
    "createdAt": "created_at",
    "uploadDate": "created_at",
    "processedAt": "processed_at",
    "title": "title",
    "duration": "duration",
    "size": "size_bytes",
    "status": "status",
    "sensitivityFlag": "sensitivity_flag",
    "processProgress": "process_progress",
}


class JobRequest(BaseModel):
    video_path: str
    title: Optional[str] = None


def parse_range(header: str, file_size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single byte range against file_size.

    Returns:
        Inclusive (start, end), or None when the range cannot be satisfied
    """
    match = RANGE_PATTERN.match(header.strip())
    if not match or file_size <= 0:
        return None

    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        # Suffix range: the final N bytes
        length = int(last)
        if length == 0:
            return None
        return max(file_size - length, 0), file_size - 1

    start = int(first)
    end = int(last) if last else file_size - 1
    end = min(end, file_size - 1)
    if start >= file_size or end < start:
        return None
    return start, end


def iter_file(path: str, start: int, end: int, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
    with open(path, 'rb') as video_file:
        video_file.seek(start)
        remaining = end - start + 1
        while remaining > 0:
            chunk = video_file.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


def create_app(service) -> FastAPI:
    """Build the HTTP API around a WorkerService"""
    app = FastAPI(title="Video Screener API")

    def load_job(job_id: str):
        job = service.store.find_by_id(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Video not found")
        return job

    @app.get("/healthz")
    def health_check():
        """Health check endpoint"""
        try:
            service.store.ping()
            return {"ok": True, "status": "healthy"}
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            raise HTTPException(status_code=503, detail=f"Job store unavailable: {str(e)}")

    @app.get("/stats")
    def get_stats():
        """Get job counts and worker statistics"""
        try:
            return {
                "stats": service.store.get_stats(),
                "worker": service.get_stats()
            }
        except Exception as e:
            logger.error(f"Error getting stats: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error fetching stats: {str(e)}")

    @app.post("/jobs", status_code=202)
    def submit_job(request: JobRequest):
        """Register a stored video and start screening it"""
        video_path = resolve_video_path(request.video_path, service.config.DATA_DIR)
        if not os.path.isfile(video_path):
            raise HTTPException(status_code=400, detail=f"Video file not found: {request.video_path}")

        job = service.submit_upload(video_path, title=request.title or "")
        return {
            "message": "Video registered and processing started",
            "video": job.to_dict()
        }

    @app.get("/jobs")
    def list_jobs(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
        status: Optional[str] = None,
        sensitivity_flag: Optional[str] = Query(default=None, alias="sensitivityFlag"),
        search: Optional[str] = None,
        sort_by: str = Query(default="createdAt", alias="sortBy"),
        order: str = "desc"
    ):
        """List jobs with filtering, sorting and pagination"""
        if sort_by not in SORT_KEYS:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot sort by {sort_by}; expected one of {', '.join(SORT_KEYS)}"
            )
        filters = {"status": status, "sensitivity_flag": sensitivity_flag, "search": search}
        try:
            jobs = service.store.find(
                filters,
                sort_by=SORT_KEYS[sort_by],
                order=order,
                skip=(page - 1) * limit,
                limit=limit
            )
            total = service.store.count(filters)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {
            "videos": [job.to_dict() for job in jobs],
            "pagination": {
                "currentPage": page,
                "totalPages": math.ceil(total / limit),
                "totalVideos": total,
                "limit": limit
            }
        }

    @app.get("/jobs/{job_id}")
    def get_job(job_id: str):
        return {"video": load_job(job_id).to_dict()}

    @app.get("/jobs/{job_id}/frames")
    def get_frames(job_id: str):
        """Archived frames for manual review"""
        load_job(job_id)
        frames = list_archived_frames(service.config.DATA_DIR, job_id)
        if not frames:
            raise HTTPException(
                status_code=404,
                detail="Video frames have not been extracted yet or were deleted."
            )
        return {
            "videoId": job_id,
            "totalFrames": len(frames),
            "frames": frames
        }

    @app.get("/jobs/{job_id}/stream")
    def stream_video(job_id: str, range_header: Optional[str] = Header(default=None, alias="range")):
        """Stream a screened video with byte-range support"""
        job = load_job(job_id)
        if job.status != JobStatus.COMPLETED:
            raise HTTPException(
                status_code=400,
                detail=f"Video is not ready for streaming (status: {job.status.value})"
            )
        if not os.path.isfile(job.path):
            raise HTTPException(status_code=404, detail="Video file not found")

        file_size = os.path.getsize(job.path)
        media_type = job.mime_type or "video/mp4"

        if range_header is None:
            return StreamingResponse(
                iter_file(job.path, 0, file_size - 1),
                media_type=media_type,
                headers={"Content-Length": str(file_size), "Accept-Ranges": "bytes"}
            )

        byte_range = parse_range(range_header, file_size)
        if byte_range is None:
            raise HTTPException(
                status_code=416,
                detail="Requested range not satisfiable",
                headers={"Content-Range": f"bytes */{file_size}"}
            )

        start, end = byte_range
        return StreamingResponse(
            iter_file(job.path, start, end),
            status_code=206,
            media_type=media_type,
            headers={
                "Content-Range": f"bytes {start}-{end}/{file_size}",
                "Accept-Ranges": "bytes",
                "Content-Length": str(end - start + 1)
            }
        )

    @app.websocket("/ws/jobs/{job_id}")
    async def job_events(websocket: WebSocket, job_id: str):
        """Forward a job's progress events until its terminal event"""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def listener(event):
            # Called on the pipeline thread
            loop.call_soon_threadsafe(queue.put_nowait, event.to_message())

        async def forward():
            while True:
                message = await queue.get()
                await websocket.send_json(message)
                if message.get("event") in TERMINAL_EVENTS:
                    return True

        async def watch_disconnect():
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return False

        # Subscribe before accepting so no event published after the
        # handshake is missed
        subscription = service.broadcaster.subscribe(job_id, listener)
        try:
            await websocket.accept()
            tasks = [asyncio.ensure_future(forward()), asyncio.ensure_future(watch_disconnect())]
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            finished = [task.result() for task in done]
            if any(finished):
                await websocket.close()
            else:
                logger.debug(f"Websocket client for job {job_id} disconnected")
        except WebSocketDisconnect:
            logger.debug(f"Websocket client for job {job_id} disconnected")
        finally:
            subscription.cancel()

    return app


class HealthServer:
    def __init__(self, service, port: int = 8000, host: str = "0.0.0.0"):
        self.service = service
        self.port = port
        self.host = host
        self.app = create_app(service)
        self.server = None
        self.server_thread = None
        self.running = False

    def start(self):
        """Start the HTTP server in a background thread"""
        if self.running:
            return

        self.server = uvicorn.Server(uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",  # Reduce uvicorn logging
            access_log=False
        ))

        def run_server():
            try:
                self.server.run()
            except Exception as e:
                logger.error(f"HTTP server error: {str(e)}")

        self.server_thread = Thread(target=run_server, daemon=True)
        self.server_thread.start()
        self.running = True

        logger.info(f"HTTP server started on port {self.port}")

    def stop(self):
        """Stop the HTTP server"""
        if self.server is not None:
            self.server.should_exit = True
        self.running = False
        logger.info("HTTP server stopped")


def start_health_server(service) -> HealthServer:
    """Start the HTTP server on the configured port"""
    server = HealthServer(service, service.config.HTTP_PORT)
    server.start()
    return server
