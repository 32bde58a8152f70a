"""
Prometheus metrics for the reprocessing pipeline and similarity retrieval.

HTTP-level metrics come from prometheus-fastapi-instrumentator in main.py;
these cover work the request metrics cannot see.
"""
from prometheus_client import Counter, Histogram

# Pipeline metrics
photos_processed_total = Counter(
    'photo_gps_photos_processed_total',
    'Photos run through the reprocessing pipeline',
    ['result'],
)
batch_size = Histogram(
    'photo_gps_batch_size',
    'Photos requested per batch',
    buckets=[1, 2, 5, 10, 20, 50, 100]
)

# Vision service metrics
vision_calls_total = Counter(
    'photo_gps_vision_calls_total',
    'Vision service calls by operation and outcome',
    ['operation', 'status'],
)
vision_call_duration_seconds = Histogram(
    'photo_gps_vision_call_duration_seconds',
    'Vision service call latency',
    ['operation'],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10, 30]
)

# Similarity metrics
similarity_requests_total = Counter(
    'photo_gps_similarity_requests_total',
    'Similarity lookups by scoring mode',
    ['mode'],
)


def record_vision_call(operation: str, status: str, duration: float):
    """Record one vision service call."""
    vision_calls_total.labels(operation=operation, status=status).inc()
    vision_call_duration_seconds.labels(operation=operation).observe(duration)


def record_photo_processed(success: bool):
    """Record a per-photo pipeline outcome."""
    photos_processed_total.labels(result="success" if success else "failed").inc()


def record_similarity_request(mode: str):
    """Record a similarity lookup (verified, fallback or empty)."""
    similarity_requests_total.labels(mode=mode).inc()
