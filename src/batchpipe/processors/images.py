# images.py
# SPDX-License-Identifier: MIT
"""Image re-encoding processor built on Pillow."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from PIL import Image, ImageOps, UnidentifiedImageError, features

from ..core.config import ImageConvertConfig
from ..core.errors import Cancelled, ConversionError, PipelineConfigError
from ..core.interfaces import ProcessContext, WorkItem
from ..core.log import get_logger
from ..core.naming import replace_suffix
from ..sinks.files import AtomicFileSink

__all__ = ["ImageConverter", "OUTPUT_FORMATS", "encoder_options", "normalize_format"]

log = get_logger(__name__)

# format name -> (Pillow format id, output extension, Pillow feature flag)
OUTPUT_FORMATS: dict[str, tuple[str, str, str | None]] = {
    "avif": ("AVIF", ".avif", "avif"),
    "webp": ("WEBP", ".webp", "webp"),
    "jpeg": ("JPEG", ".jpg", None),
    "png": ("PNG", ".png", None),
}
_FORMAT_ALIASES = {"jpg": "jpeg"}


def normalize_format(name: str) -> str:
    """Return the canonical output format name or raise PipelineConfigError."""
    fmt = (name or "").strip().lower().lstrip(".")
    fmt = _FORMAT_ALIASES.get(fmt, fmt)
    if fmt not in OUTPUT_FORMATS:
        raise PipelineConfigError(
            f"unsupported image format {name!r}; expected one of {sorted(OUTPUT_FORMATS)}"
        )
    return fmt


def encoder_options(fmt: str, quality: int, effort: int) -> dict[str, Any]:
    """Translate quality and a 0-9 effort level into Pillow save() options.

    Effort 0 is the fastest encode, 9 the smallest output. AVIF takes it as
    ``speed`` (inverted, 0-10), WebP as ``method`` (0-6), JPEG switches on
    Huffman optimization and progressive scans, PNG uses it as the zlib level.
    """
    effort = max(0, min(9, int(effort)))
    quality = max(1, min(100, int(quality)))
    if fmt == "avif":
        return {"quality": quality, "speed": 10 - effort}
    if fmt == "webp":
        return {"quality": quality, "method": min(6, effort)}
    if fmt == "jpeg":
        return {"quality": quality, "optimize": effort >= 4, "progressive": effort >= 6}
    if fmt == "png":
        return {"compress_level": effort}
    raise PipelineConfigError(f"unsupported image format {fmt!r}")


def _has_alpha(im: Image.Image) -> bool:
    return im.mode in ("RGBA", "LA", "PA") or (im.mode == "P" and "transparency" in im.info)


def _prepare_mode(im: Image.Image, fmt: str) -> Image.Image:
    """Convert ``im`` into a mode the target encoder accepts."""
    if fmt == "jpeg":
        if _has_alpha(im):
            rgba = im.convert("RGBA")
            flat = Image.new("RGB", rgba.size, (255, 255, 255))
            flat.paste(rgba, mask=rgba.getchannel("A"))
            return flat
        if im.mode not in ("RGB", "L", "CMYK"):
            return im.convert("RGB")
        return im
    if fmt == "png":
        return im.convert("RGB") if im.mode == "CMYK" else im
    if im.mode not in ("RGB", "RGBA"):
        return im.convert("RGBA" if _has_alpha(im) else "RGB")
    return im


class ImageConverter:
    """Re-encode image files into one output format under ``output_dir``.

    ``a/b.JPG`` under the input root becomes ``output_dir/a/b.avif`` (for the
    default format). The relative directory structure is mirrored.

    Attributes:
        output_dir (Path): Root directory for converted files.
        config (ImageConvertConfig): Encoder settings.
        fmt (str): Canonical output format name.
        extension (str): Extension written for every output file.
    """

    def __init__(
        self,
        output_dir: str | os.PathLike[str],
        config: ImageConvertConfig | None = None,
        *,
        preferred_executor: str | None = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.config = config or ImageConvertConfig()
        self.fmt = normalize_format(self.config.format)
        pil_format, ext, feature = OUTPUT_FORMATS[self.fmt]
        if feature and not features.check(feature):
            raise PipelineConfigError(f"this Pillow build cannot write {self.fmt} images")
        self._pil_format = pil_format
        self.extension = ext
        self._options = encoder_options(self.fmt, self.config.quality, self.config.effort)
        if preferred_executor is not None:
            self.preferred_executor = preferred_executor

    def target_for(self, item: WorkItem) -> Path:
        return self.output_dir / replace_suffix(item.rel_path, self.extension)

    def _save_options(self, im: Image.Image) -> dict[str, Any]:
        opts = dict(self._options)
        if self.config.strip_metadata:
            return opts
        exif = im.info.get("exif")
        if exif:
            opts["exif"] = exif
        icc = im.info.get("icc_profile")
        if icc:
            opts["icc_profile"] = icc
        return opts

    def process(self, item: WorkItem, target: Path, ctx: ProcessContext) -> None:
        """Decode ``item.key``, apply EXIF orientation, and encode to ``target``.

        Raises:
            ConversionError: If the input is not a decodable image.
            Cancelled: If the run was stopped before encoding started.
            OSError: For read or write failures.
        """
        if ctx.cancelled:
            raise Cancelled("cancelled")
        try:
            with Image.open(item.key) as src:
                im = ImageOps.exif_transpose(src)
                im = _prepare_mode(im, self.fmt)
                opts = self._save_options(im)
                with AtomicFileSink(target) as sink:
                    im.save(sink.stream, format=self._pil_format, **opts)
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise ConversionError(str(exc)) from exc
        log.debug("Converted %s -> %s", item.key, target)

    def __repr__(self) -> str:
        return f"ImageConverter({str(self.output_dir)!r}, format={self.fmt!r})"
