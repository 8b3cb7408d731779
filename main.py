#!/usr/bin/env python3
"""
ClipCutter v1.0.0 main entry point.
Command-line front end for downloading and clipping videos.
"""

import argparse
import json
import logging
import os
import shutil
import sys
import traceback
from datetime import datetime
from pathlib import Path

# ── Ensure Homebrew paths are in PATH ────────────────────────────────
# Shells launched from the Dock do not source ~/.zshrc, so Homebrew's
# bin directories are missing and yt-dlp / ffmpeg are not found.
HOMEBREW_PATHS = [
    "/opt/homebrew/bin",          # Apple Silicon default
    "/opt/homebrew/sbin",
    "/usr/local/bin",             # Intel Mac default
    "/usr/local/sbin",
]

current_path = os.environ.get("PATH", "")
for p in HOMEBREW_PATHS:
    if os.path.isdir(p) and p not in current_path.split(":"):
        current_path = p + ":" + current_path
os.environ["PATH"] = current_path

PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from clipcutter.core.constants import (  # noqa: E402
    APP_NAME, APP_VERSION, LOG_DIR, AspectMode, QUALITY_OPTIONS, JobStatus,
)

logger = logging.getLogger("clipcutter")


def setup_logging(verbose: bool = False):
    """Log to ~/Library/Logs/ClipCutter/app.log, warnings (or more) to stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "app.log", encoding="utf-8"),
            console,
        ],
    )


def resolve_tool(configured: str, name: str) -> str | None:
    """Configured path if it exists, else the first match on PATH."""
    if configured and Path(configured).is_file():
        return configured
    return shutil.which(name)


def check_prerequisites(config) -> tuple[str, str]:
    """Return (yt-dlp path, ffmpeg path) or exit with a message."""
    ytdlp = resolve_tool(config.ytdlp_path, "yt-dlp")
    ffmpeg = resolve_tool(config.ffmpeg_path, "ffmpeg")

    missing = []
    if not ytdlp:
        missing.append("yt-dlp (install with: brew install yt-dlp)")
    if not ffmpeg:
        missing.append("ffmpeg (install with: brew install ffmpeg)")
    if missing:
        logger.error("Missing tools. PATH = %s", os.environ.get("PATH", ""))
        print("Missing required tools:\n  " + "\n  ".join(missing), file=sys.stderr)
        sys.exit(1)

    logger.info("yt-dlp found at: %s", ytdlp)
    logger.info("ffmpeg found at: %s", ffmpeg)
    return ytdlp, ffmpeg


# ── Service wiring ────────────────────────────────────────────────────

def build_cache(config):
    from clipcutter.core.content_cache import ContentCache
    return ContentCache(config.cache_dir, max_bytes=config.cache_max_bytes,
                        enabled=config.cache_enabled)


def build_account_service(config):
    from clipcutter.core.account_cache import AccountStateCache
    from clipcutter.core.account_service import AccountService
    from clipcutter.core.backend_client import BackendClient
    from clipcutter.core.credential_store import (
        KeychainCredentialStore, InMemoryCredentialStore,
    )
    from clipcutter.core.device_id import get_device_id

    credentials = KeychainCredentialStore() if sys.platform == "darwin" else InMemoryCredentialStore()
    return AccountService(
        client=BackendClient(config.api_base_url),
        cache=AccountStateCache(),
        device_id=get_device_id(),
        credentials=credentials,
    )


# ── Commands ──────────────────────────────────────────────────────────

def cmd_clip(args, config) -> int:
    from clipcutter.core.cleanup import cleanup_temp_downloads
    from clipcutter.core.job_pipeline import ClipPipeline
    from clipcutter.core.models import ClipJob
    from clipcutter.core.safety import SafetyTracker

    ytdlp, ffmpeg = check_prerequisites(config)
    cleanup_temp_downloads()
    cache = build_cache(config)
    cache.purge_expired()
    if args.no_cache:
        cache.enabled = False
    safety = SafetyTracker()

    pipeline = ClipPipeline(
        ytdlp, ffmpeg,
        output_dir=args.output_dir or config.output_root,
        cache=cache,
        safety=safety,
        account=build_account_service(config),
        download_timeout=config.download_timeout,
        clip_timeout=config.clip_timeout,
    )
    job = ClipJob(url=args.url, start_time=args.start, end_time=args.end,
                  aspect_mode=args.aspect, quality=args.quality or config.default_quality)

    def on_update(j):
        print(f"\r{j.status:<12} {j.progress * 100:5.1f}%", end="", flush=True)

    pipeline.run_job(job, on_update=on_update)
    print()

    status = safety.safety_status()
    if status.show_counter:
        print(f"{status.daily_count} downloads today.")
    if status.show_tip:
        print("Tip: pace your downloads to avoid temporary blocks from YouTube.")

    if job.status != JobStatus.COMPLETED:
        print(f"Failed: {job.error_message}", file=sys.stderr)
        return 1
    print(job.output_path)
    return 0


def cmd_info(args, config) -> int:
    from clipcutter.core.video_info import fetch_video_info

    ytdlp, _ = check_prerequisites(config)
    info = fetch_video_info(args.url, ytdlp, cache=build_cache(config))
    print(json.dumps({**info.to_dict(), "quality_options": info.quality_options()}, indent=2))
    return 0


def cmd_status(args, config) -> int:
    account = build_account_service(config)
    snapshot = account.refresh(force=args.refresh)
    usage = account.usage_status()
    print(json.dumps({
        "device_id": snapshot.device_id,
        "status": usage.status,
        "remaining": usage.remaining,
    }, indent=2))
    return 0


def cmd_activate(args, config) -> int:
    build_account_service(config).activate_license(args.license_key)
    print("License activated.")
    return 0


def cmd_cache(args, config) -> int:
    from clipcutter.core.content_cache import format_bytes

    cache = build_cache(config)
    if args.action == "purge":
        print(f"Removed {cache.purge_expired()} expired entries.")
    elif args.action == "clear":
        cache.clear()
        print("Cache cleared.")
    else:
        for entry in sorted(cache.entries(), key=lambda e: e.last_accessed, reverse=True):
            print(f"{entry.content_id}  {entry.quality:>6}  "
                  f"{format_bytes(entry.file_size):>10}  {entry.title}")
        print(f"Total: {format_bytes(cache.total_size())}")
    return 0


def cmd_diagnostics(args, config) -> int:
    from clipcutter.core.diagnostics import get_diagnostics

    ytdlp = resolve_tool(config.ytdlp_path, "yt-dlp") or config.ytdlp_path
    ffmpeg = resolve_tool(config.ffmpeg_path, "ffmpeg") or config.ffmpeg_path
    print(json.dumps(get_diagnostics(ytdlp, ffmpeg, build_cache(config)), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clipcutter", description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    clip = sub.add_parser("clip", help="Download a video and cut a clip")
    clip.add_argument("url")
    clip.add_argument("start", help="HH:MM:SS")
    clip.add_argument("end", help="HH:MM:SS")
    clip.add_argument("--aspect", default=AspectMode.ORIGINAL,
                      choices=[AspectMode.ORIGINAL, AspectMode.VERTICAL,
                               AspectMode.SQUARE, AspectMode.FOUR_THREE])
    clip.add_argument("--quality", type=str.lower, choices=QUALITY_OPTIONS)
    clip.add_argument("--output-dir")
    clip.add_argument("--no-cache", action="store_true")
    clip.set_defaults(func=cmd_clip)

    info = sub.add_parser("info", help="Show video information")
    info.add_argument("url")
    info.set_defaults(func=cmd_info)

    status = sub.add_parser("status", help="Show license / credit status")
    status.add_argument("--refresh", action="store_true")
    status.set_defaults(func=cmd_status)

    activate = sub.add_parser("activate", help="Activate a license key")
    activate.add_argument("license_key")
    activate.set_defaults(func=cmd_activate)

    cache = sub.add_parser("cache", help="Inspect or clean the video cache")
    cache.add_argument("action", nargs="?", default="list", choices=["list", "purge", "clear"])
    cache.set_defaults(func=cmd_cache)

    diag = sub.add_parser("diagnostics", help="Show tool versions and cache state")
    diag.set_defaults(func=cmd_diagnostics)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("PATH: %s", os.environ.get("PATH", ""))
    logger.info("=" * 60)

    from clipcutter.core.config import AppConfig
    from clipcutter.core.error_codes import JobError

    try:
        return args.func(args, AppConfig())
    except JobError as e:
        logger.error("Command failed: %s", e)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.critical("Fatal error: %s\n%s", error_msg, traceback.format_exc())
        print(f"Fatal error: {error_msg}\nCheck logs at: {LOG_DIR / 'app.log'}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
