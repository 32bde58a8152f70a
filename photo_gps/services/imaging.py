"""
Image Transform

Deterministic resize and JPEG re-encode used around every vision call.
"""

import io
from dataclasses import dataclass

from PIL import Image

from photo_gps.config import Settings


@dataclass(frozen=True)
class TransformConfig:
    """Target bounds and JPEG quality for a transform."""
    max_width: int
    max_height: int
    quality: int = 70

    @classmethod
    def square(cls, size: int, quality: int) -> "TransformConfig":
        return cls(max_width=size, max_height=size, quality=quality)


@dataclass(frozen=True)
class TransformProfiles:
    """The three transform configurations used by the pipeline."""
    working: TransformConfig
    cropped: TransformConfig
    segmented: TransformConfig

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransformProfiles":
        quality = settings.compression_quality
        return cls(
            working=TransformConfig.square(settings.full_image_size, quality),
            cropped=TransformConfig.square(settings.cropped_image_size, quality),
            segmented=TransformConfig.square(settings.effective_segmented_image_size, quality),
        )


def transform_image(data: bytes, config: TransformConfig) -> bytes:
    """
    Resize to fit inside the configured bounds and re-encode as JPEG.

    Aspect ratio is preserved and images are never enlarged. Transparent
    pixels are flattened onto black since JPEG has no alpha channel.

    Args:
        data: Encoded source image
        config: Target bounds and quality

    Returns:
        JPEG bytes
    """
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, (0, 0, 0))
            flattened.paste(rgba, mask=rgba.getchannel("A"))
            img = flattened
        elif img.mode != "RGB":
            img = img.convert("RGB")

        # thumbnail() only ever shrinks
        img.thumbnail((config.max_width, config.max_height), Image.Resampling.LANCZOS)

        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=config.quality)
        return buf.getvalue()
