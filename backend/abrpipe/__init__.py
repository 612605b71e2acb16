"""Adaptive-bitrate VOD transcoding pipeline.

Turns one uploaded video file into an HLS package (master manifest, one
sub-stream per quality tier, preview images) and tracks the job to completion.

Modules:
    - core: Configuration, structured logging, Prometheus metrics
    - modules.transcoding: Probing, quality ladder, rendition encoding,
      previews, manifest assembly and the job orchestrator
"""

__version__ = "0.1.0"
