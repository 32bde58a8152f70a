"""
Vision Service Client

Async HTTP client for the external vision service: subject detection and
cropping, background segmentation, embedding, and geometric verification.

Every call is bounded by a single timeout and returns a typed result. Missing
configuration, timeouts, non-2xx responses and malformed payloads are all
reported through the result status and never raised to the caller.
"""

import asyncio
import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from photo_gps.config import get_settings
from photo_gps.metrics import record_vision_call

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = re.compile(r"^data:image/\w+;base64,")


class VisionStatus(str, Enum):
    """Outcome of a vision service call."""
    DETECTED = "detected"
    NOT_DETECTED = "not_detected"
    OK = "ok"
    UNAVAILABLE = "unavailable"  # Service URL not configured
    TIMEOUT = "timeout"
    SERVICE_ERROR = "service_error"
    MALFORMED_RESPONSE = "malformed_response"


# ============================================================================
# Results
# ============================================================================

@dataclass
class CropResult:
    """Result of subject detection and cropping."""
    status: VisionStatus
    cropped_image: Optional[bytes] = None
    confidence: Optional[float] = None
    error: Optional[str] = None

    @property
    def detected(self) -> bool:
        return self.status == VisionStatus.DETECTED


@dataclass
class SegmentResult:
    """Result of background segmentation."""
    status: VisionStatus
    segmented_image: Optional[bytes] = None
    error: Optional[str] = None

    @property
    def detected(self) -> bool:
        return self.status == VisionStatus.DETECTED


@dataclass
class EmbedResult:
    """Result of embedding generation."""
    status: VisionStatus
    vector: Optional[list[float]] = None
    dim: Optional[int] = None
    model: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == VisionStatus.OK


@dataclass
class VerifyMatch:
    """Verification verdict for one candidate, by position in the request."""
    candidate_index: int
    is_same: bool
    score: float
    confidence_label: str
    match_count: int
    inlier_count: int


@dataclass
class VerifyResult:
    """Result of geometric verification of a query against candidates."""
    status: VisionStatus
    results: list[VerifyMatch] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == VisionStatus.OK


# ============================================================================
# Wire schemas
# ============================================================================

class _BoundingBox(BaseModel):
    confidence: Optional[float] = None


class _CropPayload(BaseModel):
    detected: bool
    cropped_image: Optional[str] = None
    bounding_box: Optional[_BoundingBox] = None


class _SegmentPayload(BaseModel):
    detected: bool
    segmented_image: Optional[str] = None


class _EmbedPayload(BaseModel):
    success: bool
    embedding: Optional[list[float]] = None
    embedding_dim: Optional[int] = None
    model: Optional[str] = None


class _VerifyMatchPayload(BaseModel):
    candidate_index: int
    is_same: bool
    score: float
    confidence: str
    matches: int = 0
    inliers: int = 0


class _VerifyPayload(BaseModel):
    success: bool
    results: list[_VerifyMatchPayload] = []


class _CallFailed(Exception):
    """Internal: a call ended in a degraded status."""

    def __init__(self, status: VisionStatus, message: str):
        self.status = status
        self.message = message
        super().__init__(message)


def decode_image(value: str) -> bytes:
    """Decode a base64 image, with or without a data URI prefix."""
    try:
        return base64.b64decode(DATA_URI_PREFIX.sub("", value), validate=True)
    except (binascii.Error, ValueError) as e:
        raise _CallFailed(VisionStatus.MALFORMED_RESPONSE, f"Invalid base64 image: {e}") from e


def _jpeg_part(field_name: str, filename: str, data: bytes) -> tuple:
    return (field_name, (filename, data, "image/jpeg"))


class VisionClient:
    """
    Client for the external vision service.

    Endpoints:
    - POST /crop-salamander   detect the subject and return a cropped image
    - POST /segment-salamander remove the background around the subject
    - POST /embed              embed a segmented image
    - POST /verify             compare a query image against N candidates
    """

    CROP_PATH = "/crop-salamander"
    SEGMENT_PATH = "/segment-salamander"
    EMBED_PATH = "/embed"
    VERIFY_PATH = "/verify"

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = 10.0,
        confidence_threshold: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Vision service base URL, or None when not configured
            timeout: Per-call timeout in seconds
            confidence_threshold: Default detection confidence threshold
            transport: Optional httpx transport (used in tests)
        """
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self.confidence_threshold = confidence_threshold
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return self.base_url is not None

    async def aclose(self):
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _post(
        self,
        path: str,
        files: list[tuple],
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        POST a multipart request and return the decoded JSON object.

        Raises:
            _CallFailed: for every degraded outcome
        """
        if not self.configured:
            raise _CallFailed(VisionStatus.UNAVAILABLE, "Vision service URL not configured")

        try:
            # wait_for cancels the in-flight request when the deadline passes
            response = await asyncio.wait_for(
                self._client.post(f"{self.base_url}{path}", files=files, params=params),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise _CallFailed(VisionStatus.TIMEOUT, "Timeout") from e
        except httpx.HTTPError as e:
            raise _CallFailed(VisionStatus.SERVICE_ERROR, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise _CallFailed(
                VisionStatus.SERVICE_ERROR,
                f"Vision API error: {response.status_code}",
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise _CallFailed(VisionStatus.MALFORMED_RESPONSE, "Response is not valid JSON") from e

        if not isinstance(payload, dict):
            raise _CallFailed(VisionStatus.MALFORMED_RESPONSE, "Response is not a JSON object")
        return payload

    def _finish(self, operation: str, result, started: float):
        """Log and record metrics for a finished call, then return its result."""
        duration = time.monotonic() - started
        record_vision_call(operation, result.status.value, duration)
        if result.status in (
            VisionStatus.UNAVAILABLE,
            VisionStatus.TIMEOUT,
            VisionStatus.SERVICE_ERROR,
            VisionStatus.MALFORMED_RESPONSE,
        ):
            logger.warning(
                "Vision %s degraded: status=%s error=%s",
                operation, result.status.value, result.error,
            )
        return result

    async def detect_and_crop(
        self,
        image: bytes,
        confidence_threshold: Optional[float] = None,
    ) -> CropResult:
        """
        Detect the subject and crop around it.

        Args:
            image: JPEG bytes of the working-size frame
            confidence_threshold: Minimum detection confidence

        Returns:
            CropResult; confidence is reported even when nothing is detected
        """
        started = time.monotonic()
        threshold = confidence_threshold if confidence_threshold is not None else self.confidence_threshold
        try:
            payload = await self._post(
                self.CROP_PATH,
                files=[_jpeg_part("file", "image.jpg", image)],
                params={"confidence": threshold, "return_base64": "true"},
            )
            data = _CropPayload.model_validate(payload)
            confidence = data.bounding_box.confidence if data.bounding_box else None

            if not data.detected:
                result = CropResult(status=VisionStatus.NOT_DETECTED, confidence=confidence)
            elif not data.cropped_image:
                raise _CallFailed(VisionStatus.MALFORMED_RESPONSE, "Detected without cropped_image")
            else:
                result = CropResult(
                    status=VisionStatus.DETECTED,
                    cropped_image=decode_image(data.cropped_image),
                    confidence=confidence,
                )
        except ValidationError as e:
            result = CropResult(status=VisionStatus.MALFORMED_RESPONSE, error=str(e))
        except _CallFailed as e:
            result = CropResult(status=e.status, error=e.message)

        return self._finish("crop", result, started)

    async def segment(self, image: bytes) -> SegmentResult:
        """Remove the background around the subject."""
        started = time.monotonic()
        try:
            payload = await self._post(
                self.SEGMENT_PATH,
                files=[_jpeg_part("file", "image.jpg", image)],
            )
            data = _SegmentPayload.model_validate(payload)

            if not data.detected:
                result = SegmentResult(status=VisionStatus.NOT_DETECTED)
            elif not data.segmented_image:
                raise _CallFailed(VisionStatus.MALFORMED_RESPONSE, "Detected without segmented_image")
            else:
                result = SegmentResult(
                    status=VisionStatus.DETECTED,
                    segmented_image=decode_image(data.segmented_image),
                )
        except ValidationError as e:
            result = SegmentResult(status=VisionStatus.MALFORMED_RESPONSE, error=str(e))
        except _CallFailed as e:
            result = SegmentResult(status=e.status, error=e.message)

        return self._finish("segment", result, started)

    async def embed(self, image: bytes) -> EmbedResult:
        """
        Embed a segmented image.

        The reported dim and model are kept even when no vector comes back,
        so callers can record what the service actually produced.
        """
        started = time.monotonic()
        try:
            payload = await self._post(
                self.EMBED_PATH,
                files=[_jpeg_part("file", "segmented.jpg", image)],
            )
            data = _EmbedPayload.model_validate(payload)

            if data.success and data.embedding is not None:
                result = EmbedResult(
                    status=VisionStatus.OK,
                    vector=data.embedding,
                    dim=data.embedding_dim if data.embedding_dim is not None else len(data.embedding),
                    model=data.model,
                )
            elif data.success:
                raise _CallFailed(VisionStatus.MALFORMED_RESPONSE, "Success without embedding")
            else:
                result = EmbedResult(
                    status=VisionStatus.SERVICE_ERROR,
                    dim=data.embedding_dim,
                    model=data.model,
                    error="No embedding returned",
                )
        except ValidationError as e:
            result = EmbedResult(status=VisionStatus.MALFORMED_RESPONSE, error=str(e))
        except _CallFailed as e:
            result = EmbedResult(status=e.status, error=e.message)

        return self._finish("embed", result, started)

    async def verify(self, query: bytes, candidates: list[bytes]) -> VerifyResult:
        """
        Verify a query image against an ordered list of candidates.

        Candidate parts are sent in list order so each result's
        candidate_index refers back to the caller's list position.
        """
        started = time.monotonic()
        files = [_jpeg_part("query", "query.jpg", query)]
        files.extend(
            _jpeg_part("candidates", f"candidate_{i}.jpg", data)
            for i, data in enumerate(candidates)
        )
        try:
            payload = await self._post(self.VERIFY_PATH, files=files)
            data = _VerifyPayload.model_validate(payload)

            if not data.success:
                result = VerifyResult(status=VisionStatus.SERVICE_ERROR, error="Verification unsuccessful")
            else:
                result = VerifyResult(
                    status=VisionStatus.OK,
                    results=[
                        VerifyMatch(
                            candidate_index=r.candidate_index,
                            is_same=r.is_same,
                            score=r.score,
                            confidence_label=r.confidence,
                            match_count=r.matches,
                            inlier_count=r.inliers,
                        )
                        for r in data.results
                    ],
                )
        except ValidationError as e:
            result = VerifyResult(status=VisionStatus.MALFORMED_RESPONSE, error=str(e))
        except _CallFailed as e:
            result = VerifyResult(status=e.status, error=e.message)

        logger.info(
            "Vision verify: status=%s candidates=%d results=%d duration_ms=%d",
            result.status.value, len(candidates), len(result.results),
            int((time.monotonic() - started) * 1000),
        )
        return self._finish("verify", result, started)


# Singleton instance
_vision_client: VisionClient | None = None


def get_vision_client() -> VisionClient:
    """Get or create vision client singleton."""
    global _vision_client
    if _vision_client is None:
        settings = get_settings()
        _vision_client = VisionClient(
            base_url=settings.vision_api_url,
            timeout=settings.vision_timeout_seconds,
            confidence_threshold=settings.crop_confidence_threshold,
        )
    return _vision_client


async def close_vision_client():
    """Close the vision client singleton if it was created."""
    global _vision_client
    if _vision_client is not None:
        await _vision_client.aclose()
        _vision_client = None
