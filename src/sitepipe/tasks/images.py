"""Image compression task.

PNG and JPEG files are re-encoded with Pillow; everything else (SVG) is copied.
Only files whose output is missing or older than the source are processed.
"""

import io
import shutil
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..orchestrator import task
from ..orchestrator.cache import sync_mtime
from ..orchestrator.errors import TransformError


PILLOW_FORMATS = {".png": "PNG", ".jpg": "JPEG", ".jpeg": "JPEG"}


def compress_image(src: Path, quality: int = 85) -> bytes:
    """Return the smallest of the original bytes and a Pillow re-encoding."""
    original = src.read_bytes()
    fmt = PILLOW_FORMATS.get(src.suffix.lower())
    if fmt is None:
        return original
    with Image.open(io.BytesIO(original)) as img:
        buf = io.BytesIO()
        if fmt == "JPEG":
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(buf, format="JPEG", quality=quality, optimize=True, progressive=True)
        else:
            img.save(buf, format="PNG", optimize=True)
    data = buf.getvalue()
    return data if len(data) < len(original) else original


@task(
    name="images",
    inputs=lambda c: c.paths.images.inputs,
    output=lambda c: c.paths.images.out,
    exclude=lambda c: c.paths.images.exclude,
)
def images(ctx):
    """Compress new or changed images into the build folder."""
    before = after = 0
    for src, dest in ctx.newer():
        dest.parent.mkdir(parents=True, exist_ok=True)
        if src.suffix.lower() in PILLOW_FORMATS:
            try:
                data = compress_image(src, ctx.config.jpeg_quality)
            except (UnidentifiedImageError, OSError) as e:
                raise TransformError(ctx.task.name, f"{src}: {e}") from e
            dest.write_bytes(data)
            sync_mtime(src, dest)
        else:
            shutil.copy2(src, dest)
        before += src.stat().st_size
        after += dest.stat().st_size
        ctx.wrote()
    if ctx.processed:
        ctx.report_size("images", before, after)
