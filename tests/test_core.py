#!/usr/bin/env python3
"""
Unit tests for ClipCutter core modules.
Tests cover: URL admission, progress parsing, format selection, error
classification, clip arguments, configuration, cleanup and credentials.
"""

import base64
import os
import sys
import tempfile
import time
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from clipcutter.core.constants import (
    ErrorCode, RETRYABLE_ERRORS, AspectMode, API_BASE_URL_ENV, DEFAULT_API_BASE_URL,
)
from clipcutter.core.error_codes import (
    JobError, InvalidInput, NetworkTransient, InsufficientCredits, is_retryable,
)
from clipcutter.core.url_parse import extract_video_id, validate_video_url, is_video_url
from clipcutter.core.progress_parse import (
    parse_download_progress, parse_transcode_progress, parse_timestamp,
)
from clipcutter.core.download_video import (
    build_format_selector, classify_tool_error, is_fragment_error, build_downloader_args,
)
from clipcutter.core.clip_video import (
    build_output_filename, build_clip_args, validate_time_range, time_to_seconds,
    clip_source_id,
)
from clipcutter.core.config import AppConfig
from clipcutter.core.cleanup import cleanup_temp_downloads
from clipcutter.core.device_id import get_device_id
from clipcutter.core.credential_store import KeychainCredentialStore, InMemoryCredentialStore
from clipcutter.core.process_runner import ProcessOutcome
from clipcutter.core.models import ClipJob, VideoInfo


class TestURLAdmission(unittest.TestCase):
    """Test video URL parsing and validation."""

    def test_standard_url(self):
        self.assertEqual(
            validate_video_url("https://www.youtube.com/watch?v=dQw4w9WgXcQ"),
            "dQw4w9WgXcQ",
        )

    def test_short_url(self):
        self.assertEqual(validate_video_url("https://youtu.be/dQw4w9WgXcQ"), "dQw4w9WgXcQ")

    def test_shorts_and_mobile(self):
        self.assertEqual(extract_video_id("https://www.youtube.com/shorts/dQw4w9WgXcQ"),
                         "dQw4w9WgXcQ")
        self.assertEqual(validate_video_url("https://m.youtube.com/watch?v=dQw4w9WgXcQ"),
                         "dQw4w9WgXcQ")

    def test_music_host_admitted(self):
        self.assertEqual(
            validate_video_url("https://music.youtube.com/watch?v=dQw4w9WgXcQ&list=x"),
            "dQw4w9WgXcQ",
        )

    def test_admissible_without_id(self):
        self.assertIsNone(validate_video_url("https://www.youtube.com/@somechannel"))

    def _assert_rejected(self, url):
        with self.assertRaises(InvalidInput) as ctx:
            validate_video_url(url)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_URL)

    def test_empty_rejected(self):
        self._assert_rejected("")
        self._assert_rejected("   ")

    def test_too_long_rejected(self):
        self._assert_rejected("https://www.youtube.com/watch?v=dQw4w9WgXcQ&x=" + "a" * 2048)

    def test_control_characters_rejected(self):
        self._assert_rejected("https://www.youtube.com/watch?v=dQw4w9WgXcQ\n")
        self._assert_rejected("https://www.youtube.com/watch?v=dQw4w9WgXcQ\x00")
        self._assert_rejected("https://www.youtube.com/watch\r?v=dQw4w9WgXcQ")

    def test_wrong_scheme_rejected(self):
        self._assert_rejected("ftp://www.youtube.com/watch?v=dQw4w9WgXcQ")
        self._assert_rejected("www.youtube.com/watch?v=dQw4w9WgXcQ")

    def test_foreign_host_rejected(self):
        self._assert_rejected("https://vimeo.com/123456")
        self._assert_rejected("https://youtube.com.evil.example/watch?v=dQw4w9WgXcQ")

    def test_embedded_scheme_rejected(self):
        self._assert_rejected("https://www.youtube.com/redirect?q=javascript:alert(1)")

    def test_is_video_url(self):
        self.assertTrue(is_video_url("https://youtu.be/dQw4w9WgXcQ"))
        self.assertFalse(is_video_url("not a url"))
        self.assertFalse(is_video_url("https://www.youtube.com/@somechannel"))


class TestProgressParsing(unittest.TestCase):

    def test_download_percentage(self):
        line = "[download]  45.5% of 15.30MiB at 2.1MiB/s ETA 00:05"
        self.assertEqual(parse_download_progress(line), 45.5)

    def test_download_integer_percentage(self):
        self.assertEqual(parse_download_progress("[download] 100% of 10MiB"), 100.0)

    def test_download_non_progress_line(self):
        self.assertIsNone(parse_download_progress("[youtube] dQw4w9WgXcQ: Downloading webpage"))
        self.assertIsNone(parse_download_progress("[download] Destination: x.mp4"))

    def test_transcode_duration_then_time(self):
        progress = parse_transcode_progress("  Duration: 00:01:40.00, start: 0.000000")
        self.assertEqual(progress.total_duration, 100.0)
        self.assertIsNone(progress.fraction)

        progress = parse_transcode_progress(
            "frame=  120 fps=30 q=28.0 size=512kB time=00:00:25.00 bitrate=167kbits/s",
            progress.total_duration)
        self.assertAlmostEqual(progress.fraction, 0.25)

    def test_transcode_time_without_total(self):
        progress = parse_transcode_progress("time=00:00:25.00 bitrate=1kbits/s")
        self.assertIsNone(progress.total_duration)
        self.assertIsNone(progress.fraction)

    def test_transcode_known_total_not_replaced(self):
        progress = parse_transcode_progress("Duration: 01:00:00.00", 10.0)
        self.assertEqual(progress.total_duration, 10.0)

    def test_transcode_fraction_clamped(self):
        progress = parse_transcode_progress("time=00:00:30.00", 10.0)
        self.assertEqual(progress.fraction, 1.0)

    def test_parse_timestamp(self):
        self.assertEqual(parse_timestamp("01:02:03.5"), 3723.5)
        self.assertIsNone(parse_timestamp("1:02"))


class TestFormatSelection(unittest.TestCase):

    def test_1080p(self):
        self.assertEqual(
            build_format_selector("1080p"),
            "bestvideo[height<=1080]+bestaudio[ext=m4a]/bestvideo[height<=1080]"
            "+bestaudio/best[height<=1080]/best",
        )

    def test_height_table(self):
        for height in (480, 720, 1440, 2160):
            with self.subTest(height=height):
                self.assertEqual(
                    build_format_selector(f"{height}p"),
                    f"bestvideo[height<={height}]+bestaudio[ext=m4a]/"
                    f"bestvideo[height<={height}]+bestaudio/"
                    f"best[height<={height}]/best",
                )

    def test_best_is_case_insensitive(self):
        self.assertEqual(build_format_selector("Best"), "bestvideo+bestaudio/best")
        self.assertEqual(build_format_selector("best"), "bestvideo+bestaudio/best")

    def test_uppercase_label(self):
        self.assertEqual(build_format_selector("1080P"), build_format_selector("1080p"))

    def test_unknown_falls_back_to_720(self):
        self.assertEqual(build_format_selector("ultra"), build_format_selector("720p"))
        self.assertIn("height<=720", build_format_selector(""))

    def test_downloader_args(self):
        args = build_downloader_args("https://youtu.be/dQw4w9WgXcQ", "480p",
                                     "/opt/ffmpeg", "/tmp/x.%(ext)s", "UA/1.0")
        self.assertEqual(args[-1], "https://youtu.be/dQw4w9WgXcQ")
        self.assertEqual(args[args.index("--ffmpeg-location") + 1], "/opt/ffmpeg")
        self.assertEqual(args[args.index("--user-agent") + 1], "UA/1.0")
        self.assertEqual(args[args.index("--referer") + 1], "https://www.youtube.com/")
        self.assertEqual(args[args.index("--sleep-interval") + 1], "3")
        self.assertEqual(args[args.index("--max-sleep-interval") + 1], "8")
        self.assertIn("--no-playlist", args)
        self.assertNotIn("--fragment-retries", args)

    def test_retry_args(self):
        args = build_downloader_args("u", "720p", "f", "o", "ua", attempt=2)
        self.assertIn("--fragment-retries", args)
        self.assertEqual(args[-1], "u")


class TestErrorClassification(unittest.TestCase):

    def test_rate_limit(self):
        self.assertIn("temporarily blocked", classify_tool_error("ERROR: HTTP Error 429"))
        self.assertIn("temporarily blocked", classify_tool_error("Too Many Requests"))

    def test_bot_check(self):
        msg = classify_tool_error("ERROR: Sign in to confirm you're not a bot")
        self.assertIn("verification", msg)

    def test_age_restricted(self):
        self.assertIn("age-restricted", classify_tool_error("Sign in to confirm your age"))

    def test_private(self):
        self.assertIn("private", classify_tool_error("ERROR: Private video"))

    def test_region(self):
        self.assertIn("region", classify_tool_error("not available in your country"))

    def test_forbidden(self):
        self.assertIn("Access denied", classify_tool_error("ERROR: HTTP Error 403: Forbidden"))

    def test_rate_limit_wins_over_forbidden(self):
        text = "HTTP Error 403 ... HTTP Error 429"
        self.assertIn("temporarily blocked", classify_tool_error(text))

    def test_unknown_passes_through(self):
        self.assertEqual(classify_tool_error("something odd"), "something odd")

    def test_fragment_error_detection(self):
        self.assertTrue(is_fragment_error("fragment 3 not found, HTTP Error 403"))
        self.assertTrue(is_fragment_error("[download] 100% ... ERROR: oops"))
        self.assertFalse(is_fragment_error("ERROR: Private video"))


class TestClipArguments(unittest.TestCase):

    def test_output_filename(self):
        self.assertEqual(build_output_filename("00:10:30", "00:20:45"),
                         "clip_00-10-30_to_00-20-45.mp4")

    def test_output_filename_with_mode(self):
        self.assertEqual(build_output_filename("00:10:30", "00:20:45", AspectMode.VERTICAL),
                         "clip_00-10-30_to_00-20-45_vertical.mp4")
        self.assertEqual(build_output_filename("00:00:01", "00:00:02", AspectMode.FOUR_THREE),
                         "clip_00-00-01_to_00-00-02_4-3.mp4")

    def test_output_filename_includes_source(self):
        name = build_output_filename("00:10:30", "00:20:45", source_id="dQw4w9WgXcQ")
        self.assertEqual(name, "clip_dQw4w9WgXcQ_00-10-30_to_00-20-45.mp4")
        self.assertNotEqual(name, build_output_filename("00:10:30", "00:20:45",
                                                        source_id="jNQXAC9IVRw"))

    def test_source_id_from_video_or_url(self):
        job = ClipJob(url="https://youtu.be/dQw4w9WgXcQ", start_time="00:00:01",
                      end_time="00:00:02", video_info=VideoInfo(id="dQw4w9WgXcQ"))
        self.assertEqual(clip_source_id(job), "dQw4w9WgXcQ")

        a = ClipJob(url="https://youtu.be/aaaaaaaaaaa", start_time="00:00:01", end_time="00:00:02")
        b = ClipJob(url="https://youtu.be/bbbbbbbbbbb", start_time="00:00:01", end_time="00:00:02")
        self.assertTrue(clip_source_id(a).startswith("url-"))
        self.assertNotEqual(clip_source_id(a), clip_source_id(b))
        self.assertEqual(clip_source_id(a), clip_source_id(a))

    def test_odd_ids_are_filesystem_safe(self):
        job = ClipJob(url="https://youtu.be/x", start_time="00:00:01", end_time="00:00:02",
                      video_info=VideoInfo(id="../a:b c"))
        self.assertEqual(clip_source_id(job), "___a_b_c")

    def test_original_has_no_crop(self):
        args = build_clip_args(Path("in.mp4"), "00:00:01", "00:00:05",
                               AspectMode.ORIGINAL, Path("out.mp4"))
        self.assertNotIn("-vf", args)
        self.assertEqual(args[:6], ["-i", "in.mp4", "-ss", "00:00:01", "-to", "00:00:05"])
        self.assertEqual(args[-2:], ["-y", "out.mp4"])
        self.assertIn("libx264", args)
        self.assertIn("aac", args)

    def test_square_crop(self):
        args = build_clip_args(Path("in.mp4"), "00:00:01", "00:00:05",
                               AspectMode.SQUARE, Path("out.mp4"))
        self.assertTrue(args[args.index("-vf") + 1].startswith("crop="))

    def test_time_validation(self):
        self.assertEqual(time_to_seconds("01:02:03"), 3723)
        self.assertEqual(validate_time_range("00:00:10", "00:01:00"), 50)
        for bad in ("1:00:00", "00:60:00", "00:00:60", "00:00", "aa:bb:cc"):
            with self.assertRaises(InvalidInput):
                time_to_seconds(bad)

    def test_end_must_follow_start(self):
        with self.assertRaises(InvalidInput):
            validate_time_range("00:01:00", "00:01:00")
        with self.assertRaises(InvalidInput):
            validate_time_range("00:02:00", "00:01:00")


class TestErrorCodes(unittest.TestCase):

    def test_retryable_errors(self):
        self.assertIn(ErrorCode.NETWORK_TRANSIENT, RETRYABLE_ERRORS)
        self.assertTrue(is_retryable(ErrorCode.NETWORK_TRANSIENT))

    def test_non_retryable_errors(self):
        self.assertFalse(is_retryable(ErrorCode.INVALID_URL))
        self.assertFalse(is_retryable(ErrorCode.INSUFFICIENT_CREDITS))

    def test_job_error_auto_retryable(self):
        self.assertTrue(JobError(ErrorCode.NETWORK_TRANSIENT, "x").retryable)
        self.assertFalse(JobError(ErrorCode.TOOL_FAILED, "x").retryable)
        self.assertTrue(NetworkTransient("x").retryable)
        self.assertFalse(InsufficientCredits().retryable)
        self.assertEqual(InsufficientCredits().code, ErrorCode.INSUFFICIENT_CREDITS)


class TestModels(unittest.TestCase):

    def test_video_info_from_ytdlp(self):
        info = VideoInfo.from_ytdlp({
            "id": "dQw4w9WgXcQ", "title": "T", "duration": 212, "uploader": "U",
            "formats": [
                {"height": 1080, "vcodec": "avc1"},
                {"height": 720, "vcodec": "avc1"},
                {"height": 720, "vcodec": "vp9"},
                {"height": None, "vcodec": "none"},
                {"height": 144, "vcodec": "avc1"},
            ],
        })
        self.assertEqual(info.heights, [144, 720, 1080])
        self.assertEqual(info.quality_options(), ["1080p", "720p", "best"])
        self.assertEqual(VideoInfo.from_dict(info.to_dict()), info)


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "config.json"

    def tearDown(self):
        self.tmp.cleanup()

    def test_defaults(self):
        config = AppConfig(self.path)
        self.assertTrue(config.cache_enabled)
        self.assertEqual(config.default_quality, "720p")

    def test_timeouts_clamped(self):
        config = AppConfig(self.path)
        config.set('download_timeout', 1)
        self.assertEqual(config.download_timeout, 30)
        config.set('clip_timeout', "bogus")
        self.assertEqual(config.clip_timeout, 900)

    def test_invalid_quality_reset(self):
        config = AppConfig(self.path)
        config.set('default_quality', "8K")
        self.assertEqual(config.default_quality, "720p")
        config.set('default_quality', "1080P")
        self.assertEqual(config.default_quality, "1080p")

    def test_persisted_and_reloaded(self):
        AppConfig(self.path).set('cache_enabled', False)
        self.assertFalse(AppConfig(self.path).cache_enabled)

    def test_api_base_url_env_override(self):
        config = AppConfig(self.path)
        with mock.patch.dict(os.environ, {API_BASE_URL_ENV: "http://localhost:3000/api/"}):
            self.assertEqual(config.api_base_url, "http://localhost:3000/api")
        with mock.patch.dict(os.environ, {API_BASE_URL_ENV: ""}):
            self.assertEqual(config.api_base_url, DEFAULT_API_BASE_URL)

    def test_corrupt_file_uses_defaults(self):
        self.path.write_text("{not json")
        self.assertEqual(AppConfig(self.path).default_quality, "720p")


class TestCleanupAndDeviceId(unittest.TestCase):

    def test_cleanup_removes_only_old_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            old = tmp / "old.mp4"
            fresh = tmp / "fresh.mp4"
            old.write_bytes(b"x")
            fresh.write_bytes(b"y")
            three_hours_ago = time.time() - 3 * 3600
            os.utime(old, (three_hours_ago, three_hours_ago))

            self.assertEqual(cleanup_temp_downloads(tmp), 1)
            self.assertFalse(old.exists())
            self.assertTrue(fresh.exists())

    def test_cleanup_missing_dir(self):
        self.assertEqual(cleanup_temp_downloads(Path("/nonexistent/clipcutter-tmp")), 0)

    def test_device_id_is_stable(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "sub" / "device_id"
            first = get_device_id(path)
            self.assertTrue(first)
            self.assertEqual(get_device_id(path), first)


class TestCredentialStore(unittest.TestCase):

    def test_keychain_roundtrip_via_security_cli(self):
        stored = {}

        def fake_security(tool, args, timeout=10):
            command = args[0]
            account = args[args.index("-a") + 1]
            if command == "add-generic-password":
                stored[account] = args[args.index("-w") + 1]
                return ProcessOutcome(exit_code=0)
            if command == "find-generic-password":
                if account in stored:
                    return ProcessOutcome(exit_code=0, output=(stored[account] + "\n").encode())
                return ProcessOutcome(exit_code=44)
            if command == "delete-generic-password":
                return ProcessOutcome(exit_code=0 if stored.pop(account, None) else 44)
            raise AssertionError(command)

        store = KeychainCredentialStore(runner=fake_security)
        self.assertIsNone(store.get("license_key"))
        self.assertTrue(store.put("license_key", b"PRO-1234"))
        self.assertEqual(stored["license_key"], base64.b64encode(b"PRO-1234").decode())
        self.assertEqual(store.get("license_key"), b"PRO-1234")
        self.assertTrue(store.delete("license_key"))
        self.assertFalse(store.delete("license_key"))

    def test_in_memory_store(self):
        store = InMemoryCredentialStore()
        self.assertTrue(store.put("k", b"v"))
        self.assertEqual(store.get("k"), b"v")
        self.assertTrue(store.delete("k"))
        self.assertIsNone(store.get("k"))


if __name__ == "__main__":
    unittest.main()
