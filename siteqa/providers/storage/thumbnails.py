from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError

from siteqa.core.config import get_settings
from siteqa.core.errors import ValidationError


THUMBNAIL_CONTENT_TYPE = "image/webp"


def make_thumbnail(data: bytes, *, width: int | None = None, quality: int | None = None) -> bytes:
    # Fixed-width lossy WEBP; height follows the source aspect ratio.
    settings = get_settings()
    target_width = width or settings.thumbnail_width
    target_quality = quality or settings.thumbnail_quality
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            ratio = target_width / float(image.width)
            target_height = max(1, round(image.height * ratio))
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA")
            resized = image.resize((target_width, target_height), Image.Resampling.LANCZOS)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise ValidationError("Attachment is not a readable image") from exc
    buffer = io.BytesIO()
    resized.save(buffer, format="WEBP", quality=target_quality)
    return buffer.getvalue()
