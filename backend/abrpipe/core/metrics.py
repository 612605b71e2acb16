"""Prometheus metrics for the transcoding pipeline.

Collectors live on a private registry; an embedding service exposes them by
serving get_metrics() with get_content_type().
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "abrpipe_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Job Metrics
# ============================================
TRANSCODE_JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Total number of transcoding jobs by terminal status and failure kind",
    ["status", "failure_kind"],
    registry=REGISTRY,
)

TRANSCODE_JOB_DURATION_SECONDS = Histogram(
    "transcode_job_duration_seconds",
    "Wall-clock duration of transcoding jobs",
    ["status"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0],
    registry=REGISTRY,
)

TRANSCODE_JOBS_ACTIVE = Gauge(
    "transcode_jobs_active",
    "Number of jobs that have not reached a terminal status",
    registry=REGISTRY,
)

STAGE_DURATION_SECONDS = Histogram(
    "transcode_stage_duration_seconds",
    "Duration of each pipeline stage",
    ["stage"],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0, 3600.0],
    registry=REGISTRY,
)


# ============================================
# Rendition Metrics
# ============================================
RENDITION_ATTEMPTS_TOTAL = Counter(
    "rendition_attempts_total",
    "Encode attempts per preset by outcome",
    ["preset", "outcome"],
    registry=REGISTRY,
)

RENDITION_RESULTS_TOTAL = Counter(
    "rendition_results_total",
    "Final rendition outcomes per preset",
    ["preset", "state"],
    registry=REGISTRY,
)

RENDITION_ENCODE_DURATION_SECONDS = Histogram(
    "rendition_encode_duration_seconds",
    "Duration of successful rendition encodes including retries",
    ["preset"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
    registry=REGISTRY,
)

ENCODE_SLOTS_IN_USE = Gauge(
    "encode_slots_in_use",
    "Worker pool slots currently running an external encode",
    registry=REGISTRY,
)

ENCODE_SLOTS_TOTAL = Gauge(
    "encode_slots_total",
    "Size of the shared encode worker pool",
    registry=REGISTRY,
)


# ============================================
# Preview Metrics
# ============================================
PREVIEW_FAILURES_TOTAL = Counter(
    "preview_failures_total",
    "Preview images that could not be produced",
    ["kind"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format.

    Returns:
        bytes: Prometheus-formatted metrics
    """
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
