"""
ffprobe / ffmpeg helpers: end-credit frames and subtitle tracks.
"""

import json
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from PIL import Image

from pgs_subtitles import PgsError, SubtitleImage, read_pgs_file

# Production codes sit in the closing credits
DEFAULT_TAIL_SECONDS = 15
DEFAULT_SAMPLE_FPS = 1


class MediaToolError(RuntimeError):
    """ffmpeg/ffprobe is missing or exited with an error."""


class SubtitleCodec(Enum):
    SRT = "subrip"
    PGS = "hdmv_pgs_subtitle"

    @property
    def extension(self) -> str:
        return "srt" if self is SubtitleCodec.SRT else "sup"

    @property
    def is_image_based(self) -> bool:
        return self is SubtitleCodec.PGS


@dataclass
class SubtitleTrack:
    index: int
    codec: SubtitleCodec
    language: Optional[str] = None


# ---------- Shell helpers ----------

def run_cmd(cmd: List[str]) -> subprocess.CompletedProcess:
    """Run a command and return the CompletedProcess, raising on error."""
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as e:
        raise MediaToolError(f"{cmd[0]} not found. Please install ffmpeg and ensure it's in your PATH.") from e

    if proc.returncode != 0:
        raise MediaToolError(f"Command failed: {' '.join(cmd)}\n{proc.stderr.strip()}")
    return proc


# ---------- ffprobe ----------

def probe_streams(video_path: Path, selector: str) -> List[Dict]:
    """
    List the streams of one type in a file.

    Args:
        video_path: Path to the video file
        selector: ffprobe stream selector ("v" video, "s" subtitles)
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_streams",
        "-select_streams", selector,
        str(video_path),
    ]
    proc = run_cmd(cmd)
    try:
        return json.loads(proc.stdout or "{}").get("streams", [])
    except ValueError as e:
        raise MediaToolError(f"Could not parse ffprobe output for {video_path}: {e}") from e


def has_video_stream(video_path: Path) -> bool:
    return bool(probe_streams(video_path, "v"))


def find_best_subtitle_track(video_path: Path) -> Optional[SubtitleTrack]:
    """
    Pick the English subtitle track to show the operator.

    Text (SRT) tracks beat image (PGS) tracks; otherwise the first
    matching track wins.
    """
    best: Optional[SubtitleTrack] = None

    for stream in probe_streams(video_path, "s"):
        language = (stream.get("tags") or {}).get("language")
        if language != "eng":
            continue

        try:
            codec = SubtitleCodec(stream.get("codec_name"))
        except ValueError:
            continue

        track = SubtitleTrack(index=int(stream["index"]), codec=codec, language=language)
        if codec is SubtitleCodec.SRT:
            return track
        if best is None:
            best = track

    return best


# ---------- ffmpeg ----------

def extract_tail_frames(
    video_path: Path,
    tail_seconds: float = DEFAULT_TAIL_SECONDS,
    fps: float = DEFAULT_SAMPLE_FPS,
) -> List[Image.Image]:
    """
    Extract still frames from the last seconds of a video.

    Args:
        video_path: Path to video file
        tail_seconds: Length of the trailing window
        fps: Frames sampled per second of the window

    Returns:
        Frames in playback order; empty if the file has no video stream
    """
    if not has_video_stream(video_path):
        return []

    frames: List[Image.Image] = []
    with tempfile.TemporaryDirectory() as tmpdir:
        output_pattern = Path(tmpdir) / "frame_%04d.png"
        cmd = [
            "ffmpeg",
            "-sseof", f"-{tail_seconds}",
            "-i", str(video_path),
            "-vf", f"fps={fps}",
            "-y",
            str(output_pattern),
        ]
        run_cmd(cmd)

        for frame_path in sorted(Path(tmpdir).glob("frame_*.png")):
            with Image.open(frame_path) as img:
                img.load()
                frames.append(img.copy())

    return frames


def extract_subtitle_track(video_path: Path, track: SubtitleTrack, output_dir: Path) -> Path:
    """Copy one subtitle stream out of the container, without re-encoding."""
    output_path = Path(output_dir) / f"extracted.{track.codec.extension}"
    cmd = [
        "ffmpeg",
        "-y",
        "-i", str(video_path),
        "-map", f"0:{track.index}",
        "-c:s", "copy",
        str(output_path),
    ]
    run_cmd(cmd)
    return output_path


class FFmpegMediaSource:
    """Frame/subtitle source backed by the ffmpeg command line tools."""

    def __init__(self, tail_seconds: float = DEFAULT_TAIL_SECONDS, fps: float = DEFAULT_SAMPLE_FPS):
        self.tail_seconds = tail_seconds
        self.fps = fps

    def extract_frames(self, video_path: Path) -> List[Image.Image]:
        return extract_tail_frames(video_path, self.tail_seconds, self.fps)

    def find_subtitle_track(self, video_path: Path) -> Optional[SubtitleTrack]:
        return find_best_subtitle_track(video_path)

    def extract_subtitles(self, video_path: Path, track: SubtitleTrack, output_dir: Path) -> Path:
        return extract_subtitle_track(video_path, track, output_dir)

    def read_subtitle_images(self, subtitle_path: Path) -> List[SubtitleImage]:
        try:
            return read_pgs_file(subtitle_path)
        except (OSError, PgsError) as e:
            raise MediaToolError(f"Could not decode PGS subtitles {subtitle_path}: {e}") from e
