"""HLS playlist generation and parsing.

Writes the master playlist for adaptive bitrate playback and reads the
per-quality media playlists ffmpeg produces.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from abrpipe.modules.transcoding.errors import (
    NoSuccessfulRenditionsError,
    RenditionOutputError,
)
from abrpipe.modules.transcoding.models import Rendition
from abrpipe.modules.transcoding.storage import OutputLayout, write_text_atomic

logger = logging.getLogger(__name__)

HLS_VERSION = 3

_STREAM_INF_RE = re.compile(r"^#EXT-X-STREAM-INF:(?P<attrs>.*)$")
_ATTR_RE = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')


@dataclass(frozen=True)
class MasterManifestEntry:
    """One variant stream of the master playlist."""
    bandwidth_bps: int
    resolution: str
    uri: str


@dataclass(frozen=True)
class MasterManifest:
    """Master playlist contents, one entry per successful rendition."""
    entries: tuple[MasterManifestEntry, ...] = field(default_factory=tuple)

    def render(self) -> str:
        lines = ["#EXTM3U", f"#EXT-X-VERSION:{HLS_VERSION}"]
        for entry in self.entries:
            lines.append(
                f"#EXT-X-STREAM-INF:BANDWIDTH={entry.bandwidth_bps},"
                f"RESOLUTION={entry.resolution}"
            )
            lines.append(entry.uri)
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class MediaPlaylist:
    """Segments listed by a per-quality playlist."""
    target_duration: int
    segments: tuple[str, ...]
    segment_durations: tuple[float, ...]
    ended: bool

    @property
    def total_duration(self) -> float:
        return sum(self.segment_durations)


def build_master_manifest(renditions: Sequence[Rendition]) -> MasterManifest:
    """Build the master manifest for a set of successful renditions.

    Entries are sorted by descending bandwidth, ties broken by name, so the
    result does not depend on the order renditions finished in.

    Args:
        renditions: Successful renditions

    Returns:
        MasterManifest with one entry per rendition
    """
    ordered = sorted(
        renditions,
        key=lambda r: (-r.preset.bandwidth_bps, -r.preset.width, r.preset.name),
    )
    return MasterManifest(entries=tuple(
        MasterManifestEntry(
            bandwidth_bps=rendition.preset.bandwidth_bps,
            resolution=rendition.preset.resolution,
            uri=rendition.sub_manifest_path or f"{rendition.preset.name}/index.m3u8",
        )
        for rendition in ordered
    ))


def assemble_master_playlist(
    layout: OutputLayout,
    successful_renditions: Sequence[Rendition],
) -> MasterManifest:
    """Write hls/master.m3u8 for the successful renditions.

    Must only be called once every rendition has resolved.

    Raises:
        NoSuccessfulRenditionsError: If there is nothing to list; no file is
            written in that case
    """
    if not successful_renditions:
        raise NoSuccessfulRenditionsError()

    manifest = build_master_manifest(successful_renditions)
    write_text_atomic(layout.master_playlist_path, manifest.render())
    logger.info(
        "Master playlist written with %d variants: %s",
        len(manifest.entries), layout.master_playlist_path,
    )
    return manifest


def parse_master_playlist(content: str) -> MasterManifest:
    """Parse a master playlist written by assemble_master_playlist."""
    entries = []
    pending_attrs = None
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _STREAM_INF_RE.match(line)
        if match:
            pending_attrs = dict(_ATTR_RE.findall(match.group("attrs")))
            continue
        if pending_attrs is not None and not line.startswith("#"):
            entries.append(MasterManifestEntry(
                bandwidth_bps=int(pending_attrs.get("BANDWIDTH", "0")),
                resolution=pending_attrs.get("RESOLUTION", ""),
                uri=line,
            ))
            pending_attrs = None
    return MasterManifest(entries=tuple(entries))


def parse_media_playlist(content: str) -> MediaPlaylist:
    """Parse a VOD media playlist.

    Raises:
        RenditionOutputError: If the content is not an HLS playlist
    """
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    if not lines or lines[0] != "#EXTM3U":
        raise RenditionOutputError("sub-manifest is not an HLS playlist")

    target_duration = 0
    segments: list[str] = []
    durations: list[float] = []
    pending_duration = None
    ended = False

    for line in lines[1:]:
        if line.startswith("#EXT-X-TARGETDURATION:"):
            target_duration = int(float(line.split(":", 1)[1]))
        elif line.startswith("#EXTINF:"):
            value = line.split(":", 1)[1].split(",", 1)[0]
            pending_duration = float(value)
        elif line == "#EXT-X-ENDLIST":
            ended = True
        elif not line.startswith("#"):
            segments.append(line)
            durations.append(pending_duration or 0.0)
            pending_duration = None

    return MediaPlaylist(
        target_duration=target_duration,
        segments=tuple(segments),
        segment_durations=tuple(durations),
        ended=ended,
    )


def verify_media_playlist(playlist_path: Path) -> MediaPlaylist:
    """Check that a sub-manifest exists and every segment it lists is on disk.

    Args:
        playlist_path: Path of hls/{preset}/index.m3u8

    Returns:
        The parsed playlist

    Raises:
        RenditionOutputError: If the playlist is absent, empty or references
            missing segments
    """
    if not playlist_path.is_file():
        raise RenditionOutputError(f"sub-manifest not created: {playlist_path}")

    playlist = parse_media_playlist(playlist_path.read_text(encoding="utf-8"))
    if not playlist.segments:
        raise RenditionOutputError(f"sub-manifest lists no segments: {playlist_path}")

    missing = [
        segment for segment in playlist.segments
        if not (playlist_path.parent / segment).is_file()
    ]
    if missing:
        raise RenditionOutputError(
            f"sub-manifest references {len(missing)} missing segment(s), "
            f"first: {missing[0]}"
        )
    return playlist
