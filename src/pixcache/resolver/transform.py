"""Pillow-backed transform collaborator."""

from __future__ import annotations

import io

from PIL import Image, ImageOps, UnidentifiedImageError

from ..common.errors import TransformError


PASSTHROUGH_FORMATS = {"JPEG", "PNG", "WEBP"}
LOSSY_FORMATS = {"JPEG", "WEBP"}


def transform(data: bytes, width: int, height: int, crop: bool, quality: int) -> bytes:
    """Resize ``data`` to fit ``width`` x ``height``.

    With ``crop`` the image is scaled to cover the box and trimmed around the
    centre; otherwise the aspect ratio is kept and the image fits inside the
    box. JPEG, PNG and WebP keep their format, anything else becomes JPEG.
    """

    try:
        with Image.open(io.BytesIO(data)) as source:
            source_format = source.format or ""
            image = ImageOps.exif_transpose(source)
            if crop:
                image = ImageOps.fit(image, (width, height), Image.Resampling.BICUBIC, centering=(0.5, 0.5))
            else:
                image = image.copy()
                image.thumbnail((width, height), Image.Resampling.BICUBIC)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise TransformError(f"Unable to decode source image: {exc}") from exc

    output_format = source_format if source_format in PASSTHROUGH_FORMATS else "JPEG"
    if output_format == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    save_args: dict[str, object] = {}
    if output_format in LOSSY_FORMATS:
        save_args["quality"] = quality
    buffer = io.BytesIO()
    try:
        image.save(buffer, format=output_format, **save_args)
    except (OSError, ValueError) as exc:
        raise TransformError(f"Unable to encode {output_format} image: {exc}") from exc
    return buffer.getvalue()
