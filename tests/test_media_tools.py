"""Unit tests for the ffmpeg/ffprobe helpers, with subprocess mocked out."""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from media_tools import (
    FFmpegMediaSource,
    MediaToolError,
    SubtitleCodec,
    SubtitleTrack,
    extract_subtitle_track,
    extract_tail_frames,
    find_best_subtitle_track,
    run_cmd,
)


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def probe_output(streams):
    return completed(json.dumps({"streams": streams}))


class TestRunCmd:
    def test_missing_binary(self):
        with patch("media_tools.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(MediaToolError, match="ffprobe not found"):
                run_cmd(["ffprobe", "x"])

    def test_nonzero_exit(self):
        with patch("media_tools.subprocess.run", return_value=completed(returncode=1, stderr="boom")):
            with pytest.raises(MediaToolError, match="boom"):
                run_cmd(["ffmpeg", "x"])


class TestSubtitleTrackSelection:
    def test_srt_preferred_over_pgs(self):
        streams = [
            {"index": 2, "codec_name": "hdmv_pgs_subtitle", "tags": {"language": "eng"}},
            {"index": 3, "codec_name": "subrip", "tags": {"language": "eng"}},
        ]
        with patch("media_tools.subprocess.run", return_value=probe_output(streams)):
            track = find_best_subtitle_track(Path("x.mkv"))

        assert track == SubtitleTrack(index=3, codec=SubtitleCodec.SRT, language="eng")

    def test_pgs_when_no_srt(self):
        streams = [
            {"index": 2, "codec_name": "subrip", "tags": {"language": "fre"}},
            {"index": 4, "codec_name": "hdmv_pgs_subtitle", "tags": {"language": "eng"}},
            {"index": 5, "codec_name": "hdmv_pgs_subtitle", "tags": {"language": "eng"}},
        ]
        with patch("media_tools.subprocess.run", return_value=probe_output(streams)):
            track = find_best_subtitle_track(Path("x.mkv"))

        assert track.index == 4
        assert track.codec.is_image_based

    def test_unsupported_or_untagged_tracks(self):
        streams = [
            {"index": 2, "codec_name": "dvd_subtitle", "tags": {"language": "eng"}},
            {"index": 3, "codec_name": "subrip"},
        ]
        with patch("media_tools.subprocess.run", return_value=probe_output(streams)):
            assert find_best_subtitle_track(Path("x.mkv")) is None

    def test_bad_probe_json(self):
        with patch("media_tools.subprocess.run", return_value=completed("not json")):
            with pytest.raises(MediaToolError):
                find_best_subtitle_track(Path("x.mkv"))


class TestExtraction:
    def test_no_video_stream_means_no_frames(self):
        with patch("media_tools.subprocess.run", return_value=probe_output([])) as run:
            assert extract_tail_frames(Path("audio.mkv")) == []

        # only ffprobe ran
        assert run.call_count == 1

    def test_tail_frames_are_loaded_in_order(self):
        def fake_run(cmd, **kwargs):
            if cmd[0] == "ffprobe":
                return probe_output([{"index": 0, "codec_type": "video"}])
            output = Path(cmd[-1])
            for number, shade in ((2, 200), (1, 100)):
                Image.new("L", (4, 4), shade).save(output.parent / f"frame_{number:04d}.png")
            return completed()

        with patch("media_tools.subprocess.run", side_effect=fake_run) as run:
            frames = extract_tail_frames(Path("ep.mkv"), tail_seconds=20, fps=2)

        ffmpeg_cmd = run.call_args_list[1].args[0]
        assert ffmpeg_cmd[:3] == ["ffmpeg", "-sseof", "-20"]
        assert "fps=2" in ffmpeg_cmd
        assert [f.getpixel((0, 0)) for f in frames] == [100, 200]

    def test_subtitle_extraction_command(self, temp_dir: Path):
        track = SubtitleTrack(index=4, codec=SubtitleCodec.PGS)
        with patch("media_tools.subprocess.run", return_value=completed()) as run:
            path = extract_subtitle_track(Path("ep.mkv"), track, temp_dir)

        assert path == temp_dir / "extracted.sup"
        cmd = run.call_args.args[0]
        assert cmd[cmd.index("-map") + 1] == "0:4"
        assert cmd[cmd.index("-c:s") + 1] == "copy"

    def test_undecodable_pgs_is_media_error(self, temp_dir: Path):
        path = temp_dir / "extracted.sup"
        path.write_bytes(b"garbage-not-pgs")

        with pytest.raises(MediaToolError):
            FFmpegMediaSource().read_subtitle_images(path)

    def test_media_source_passes_window(self):
        source = FFmpegMediaSource(tail_seconds=30, fps=0.5)
        with patch("media_tools.extract_tail_frames", MagicMock(return_value=[])) as extract:
            source.extract_frames(Path("ep.mkv"))

        extract.assert_called_once_with(Path("ep.mkv"), 30, 0.5)
