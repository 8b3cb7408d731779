"""
Clip pipeline and job queue.

A job moves pending -> downloading -> processing -> completed (or failed).
The download stage owns progress 0-0.5 and the transcode stage 0.5-1.0;
a cache hit skips straight to processing. Each job carries its own cancel
event, so cancelling one job stops only its running tool.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from clipcutter.core.constants import (
    ErrorCode, JobStatus, TERMINAL_STATUSES, DOWNLOAD_TIMEOUT, CLIP_TIMEOUT,
    SAFETY_DELAY_RANGE, PROGRESS_DOWNLOAD_START, PROGRESS_DOWNLOAD_END,
    PROGRESS_CLIP_START, PROGRESS_CLIP_END, DEFAULT_OUTPUT_ROOT, DOWNLOAD_TEMP_DIR,
)
from clipcutter.core.clip_video import clip_video, validate_time_range
from clipcutter.core.content_cache import ContentCache
from clipcutter.core.download_video import download_video
from clipcutter.core.error_codes import JobError, InsufficientCredits
from clipcutter.core.models import ClipJob
from clipcutter.core.safety import SafetyTracker
from clipcutter.core.url_parse import validate_video_url
from clipcutter.core.video_info import fetch_video_info

logger = logging.getLogger(__name__)

JobCallback = Callable[[ClipJob], None]


class ClipPipeline:
    """Runs one ClipJob end to end. Stateless apart from its collaborators."""

    def __init__(self, ytdlp_path: str, ffmpeg_path: str,
                 output_dir: str | Path = DEFAULT_OUTPUT_ROOT,
                 cache: Optional[ContentCache] = None,
                 safety: Optional[SafetyTracker] = None,
                 account=None,
                 temp_dir: str | Path | None = None,
                 download_timeout: float = DOWNLOAD_TIMEOUT,
                 clip_timeout: float = CLIP_TIMEOUT,
                 delay_range: tuple[float, float] = SAFETY_DELAY_RANGE,
                 downloader=download_video,
                 clipper=clip_video,
                 info_fetcher=fetch_video_info):
        self.ytdlp_path = ytdlp_path
        self.ffmpeg_path = ffmpeg_path
        self.output_dir = Path(output_dir)
        self.cache = cache
        self.safety = safety
        self.account = account
        self.temp_dir = temp_dir
        self.download_timeout = download_timeout
        self.clip_timeout = clip_timeout
        self.delay_range = delay_range
        self._downloader = downloader
        self._clipper = clipper
        self._info_fetcher = info_fetcher

    # ── Job state helpers ─────────────────────────────────────────────

    @staticmethod
    def _notify(job: ClipJob, on_update: Optional[JobCallback]):
        if on_update is None:
            return
        try:
            on_update(job)
        except Exception as e:
            logger.warning("Job update callback failed: %s", e)

    def _set_status(self, job: ClipJob, status: str, on_update):
        logger.info("Job %s: %s -> %s", job.id, job.status, status)
        job.status = status
        self._notify(job, on_update)

    def _progress_reporter(self, job: ClipJob, start: float, end: float,
                           on_update) -> Callable[[float], None]:
        """Map a stage's 0-1 progress into [start, end]; never move backwards."""
        lock = threading.Lock()

        def report(fraction: float):
            value = start + (end - start) * max(0.0, min(fraction, 1.0))
            with lock:
                if value <= job.progress:
                    return
                job.progress = value
            self._notify(job, on_update)

        return report

    # ── Pipeline ──────────────────────────────────────────────────────

    def run_job(self, job: ClipJob, cancel_event: Optional[threading.Event] = None,
                on_update: Optional[JobCallback] = None) -> ClipJob:
        """Run the job to a terminal status. Never raises for job failures."""
        cancel_event = cancel_event or threading.Event()
        try:
            self._run(job, cancel_event, on_update)
        except JobError as e:
            logger.warning("Job %s failed: %s", job.id, e)
            job.error_code = e.code
            job.error_message = e.message[:2000]
            self._set_status(job, JobStatus.FAILED, on_update)
        except Exception as e:
            logger.error("Unexpected error processing job %s: %s", job.id, e, exc_info=True)
            job.error_code = "ERR_UNEXPECTED"
            job.error_message = str(e)[:2000]
            self._set_status(job, JobStatus.FAILED, on_update)
        return job

    def _working_dir(self) -> Path:
        return Path(self.temp_dir or DOWNLOAD_TEMP_DIR)

    def _discard_working_copy(self, job: ClipJob):
        """Delete the job's source video once clipping is over. Best effort."""
        if not job.downloaded_path:
            return
        path = Path(job.downloaded_path)
        if self.cache is not None and path.parent == self.cache.videos_dir:
            return
        try:
            path.unlink()
            logger.debug("Removed working copy %s", path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete working copy %s: %s", path, e)

    def _run(self, job: ClipJob, cancel_event: threading.Event, on_update):
        validate_video_url(job.url)
        validate_time_range(job.start_time, job.end_time)

        if self.account is not None and not self.account.can_clip():
            raise InsufficientCredits()

        if job.video_info is None and self._info_fetcher is not None:
            job.video_info = self._info_fetcher(
                job.url, self.ytdlp_path, cache=self.cache, cancel_event=cancel_event,
                delay_range=self.delay_range)

        content_id = job.video_info.id if job.video_info else None
        working = None
        if self.cache is not None:
            # Private link; survives eviction by other jobs
            working = self.cache.checkout(content_id, job.quality, self._working_dir(),
                                          url=job.url)

        if working is not None:
            job.used_cache = True
            job.downloaded_path = str(working)
            job.progress = PROGRESS_DOWNLOAD_END
        else:
            self._set_status(job, JobStatus.DOWNLOADING, on_update)
            if self.safety is not None:
                self.safety.track_download()
            downloaded = self._downloader(
                job, self.ytdlp_path, self.ffmpeg_path,
                temp_dir=self._working_dir(),
                cache=self.cache,
                cancel_event=cancel_event,
                on_progress=self._progress_reporter(
                    job, PROGRESS_DOWNLOAD_START, PROGRESS_DOWNLOAD_END, on_update),
                timeout=self.download_timeout,
                delay_range=self.delay_range,
            )
            job.downloaded_path = str(downloaded)

        try:
            job.progress = max(job.progress, PROGRESS_DOWNLOAD_END)
            self._set_status(job, JobStatus.PROCESSING, on_update)
            output = self._clipper(
                job.downloaded_path, job, self.ffmpeg_path, self.output_dir,
                cancel_event=cancel_event,
                on_progress=self._progress_reporter(
                    job, PROGRESS_CLIP_START, PROGRESS_CLIP_END, on_update),
                timeout=self.clip_timeout,
            )
        finally:
            self._discard_working_copy(job)
        job.output_path = str(output)

        if self.account is not None:
            # The clip exists either way; a failed decrement is reconciled
            # on the next account refresh
            try:
                self.account.consume_credit()
            except JobError as e:
                logger.warning("Failed to record credit use for job %s: %s", job.id, e)

        job.progress = PROGRESS_CLIP_END
        self._set_status(job, JobStatus.COMPLETED, on_update)


class JobQueue:
    """
    Runs ClipJobs on a thread pool.
    Each job gets its own cancel event; cancel(job_id) stops its tool.
    """

    def __init__(self, pipeline: ClipPipeline, max_workers: int = 2):
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="clip-job")
        self._lock = threading.Lock()
        self._jobs: dict[str, ClipJob] = {}
        self._cancel_events: dict[str, threading.Event] = {}

        # Callbacks
        self.on_job_updated: Optional[JobCallback] = None

    def submit(self, job: ClipJob) -> Future:
        event = threading.Event()
        with self._lock:
            self._jobs[job.id] = job
            self._cancel_events[job.id] = event
        return self._executor.submit(self._run, job, event)

    def _run(self, job: ClipJob, event: threading.Event) -> ClipJob:
        try:
            if event.is_set():
                # Cancelled while still queued
                job.error_code = ErrorCode.CANCELLED
                job.error_message = "Cancelled by user"
                job.status = JobStatus.FAILED
                return job
            return self.pipeline.run_job(job, cancel_event=event,
                                         on_update=self.on_job_updated)
        finally:
            with self._lock:
                self._cancel_events.pop(job.id, None)

    def cancel(self, job_id: str) -> bool:
        """Signal a queued or running job to stop. Returns False if unknown or finished."""
        with self._lock:
            event = self._cancel_events.get(job_id)
        if event is None:
            return False
        logger.info("Cancelling job %s", job_id)
        event.set()
        return True

    def get_job(self, job_id: str) -> Optional[ClipJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def active_jobs(self) -> list[ClipJob]:
        with self._lock:
            return [j for j in self._jobs.values() if j.status not in TERMINAL_STATUSES]

    def forget(self, job_id: str) -> bool:
        """Drop a finished job from the registry. Running jobs are kept."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in TERMINAL_STATUSES:
                return False
            del self._jobs[job_id]
            return True

    def prune_finished(self) -> int:
        """Drop every completed or failed job. Returns how many were dropped."""
        with self._lock:
            finished = [jid for jid, j in self._jobs.items() if j.status in TERMINAL_STATUSES]
            for jid in finished:
                del self._jobs[jid]
        return len(finished)

    def shutdown(self, wait: bool = True, cancel_running: bool = False):
        if cancel_running:
            with self._lock:
                events = list(self._cancel_events.values())
            for event in events:
                event.set()
        self._executor.shutdown(wait=wait)
