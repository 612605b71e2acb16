"""Output layout of an HLS package.

    {output_root}/
      hls/master.m3u8
      hls/{preset}/index.m3u8
      hls/{preset}/segment_000.ts ...
      thumbnail.jpg
      poster.jpg
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

HLS_DIR_NAME = "hls"
MASTER_PLAYLIST_NAME = "master.m3u8"
SUB_PLAYLIST_NAME = "index.m3u8"
SEGMENT_PATTERN = "segment_%03d.ts"
THUMBNAIL_NAME = "thumbnail.jpg"
POSTER_NAME = "poster.jpg"


@dataclass(frozen=True)
class OutputLayout:
    """Paths of one job's package, all derived from output_root."""
    output_root: Path

    @classmethod
    def for_root(cls, output_root: str) -> "OutputLayout":
        return cls(Path(output_root))

    @property
    def hls_dir(self) -> Path:
        return self.output_root / HLS_DIR_NAME

    @property
    def master_playlist_path(self) -> Path:
        return self.hls_dir / MASTER_PLAYLIST_NAME

    @property
    def thumbnail_path(self) -> Path:
        return self.output_root / THUMBNAIL_NAME

    @property
    def poster_path(self) -> Path:
        return self.output_root / POSTER_NAME

    def rendition_dir(self, preset_name: str) -> Path:
        return self.hls_dir / preset_name

    def sub_playlist_path(self, preset_name: str) -> Path:
        return self.rendition_dir(preset_name) / SUB_PLAYLIST_NAME

    def segment_pattern(self, preset_name: str) -> Path:
        return self.rendition_dir(preset_name) / SEGMENT_PATTERN

    def relative_sub_playlist(self, preset_name: str) -> str:
        """Sub-manifest path as referenced from master.m3u8."""
        return f"{preset_name}/{SUB_PLAYLIST_NAME}"

    def prepare(self) -> None:
        self.hls_dir.mkdir(parents=True, exist_ok=True)


def normalize_root(output_root: str) -> str:
    """Canonical form of an output root, used to detect collisions."""
    return os.path.realpath(os.path.abspath(output_root))


def reset_directory(path: Path) -> None:
    """Make path an empty directory."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def remove_directory(path: Path) -> bool:
    """Remove a directory tree if present.

    Returns:
        True if something was removed
    """
    if not path.exists():
        return False
    shutil.rmtree(path, ignore_errors=True)
    logger.info("Removed partial output %s", path)
    return True


def remove_file(path: Path) -> bool:
    """Remove a file if present."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def write_text_atomic(path: Path, content: str) -> None:
    """Write a text file so readers never observe a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)
