"""
pipeline.py - File and image steps for genpage

    make_dirs         Create the img/ and thumbs/ output directories
    copy_file         Copy an original image byte for byte
    create_thumbnail  Write a bounded-size copy of an image
"""

import logging
import shutil
from pathlib import Path
from typing import Tuple, Union

from PIL import Image

logger = logging.getLogger(__name__)

IMG_DIR_NAME = "img"
THUMBS_DIR_NAME = "thumbs"

DEFAULT_PERMISSIONS = 0o755

# Maximum thumbnail dimensions (width or height)
DEFAULT_MAX = 320

# Modes the JPEG encoder accepts as-is
JPEG_MODES = ("1", "L", "RGB", "CMYK")

PathLike = Union[str, Path]


def make_dirs(output_dir: PathLike) -> Tuple[Path, Path]:
    """Create the image and thumbnail directories, return their paths"""
    output_dir = Path(output_dir)
    img_dir = output_dir / IMG_DIR_NAME
    thumbs_dir = output_dir / THUMBS_DIR_NAME

    for dir_path in (img_dir, thumbs_dir):
        logger.debug("Creating directory %r", str(dir_path))
        dir_path.mkdir(mode=DEFAULT_PERMISSIONS, parents=True, exist_ok=True)

    return img_dir, thumbs_dir


def copy_file(dst: PathLike, src: PathLike) -> None:
    """Copy the source file to the given destination.

    Both files are closed on every path out of this function. If the copy
    itself fails, that error is raised; a failure to close the destination
    at that point is logged as a warning and not raised.
    """
    with open(src, "rb") as fin:
        fout = open(dst, "wb")
        try:
            shutil.copyfileobj(fin, fout)
        except BaseException:
            try:
                fout.close()
            except OSError as close_err:
                logger.warning("Failed to close %r: %s", str(dst), close_err)
            raise
        fout.close()


def image_format(path: PathLike) -> str:
    """Return the Pillow format name for a path, based on its extension"""
    suffix = Path(path).suffix.lower()
    fmt = Image.registered_extensions().get(suffix)
    if fmt is None:
        raise ValueError(f"unknown image format for {str(path)!r}")
    return fmt


def create_thumbnail(dst: PathLike, src: PathLike, max_size: int) -> Tuple[int, int]:
    """
    Create a thumbnail of the source image and store it at the given
    destination, based on the given maximum dimension.

    The image is scaled down (never up) with bicubic resampling so that
    neither side exceeds max_size, keeping its aspect ratio. The output
    format follows the destination extension. Returns the thumbnail size.
    """
    if isinstance(max_size, bool) or not isinstance(max_size, int) or max_size < 1:
        raise ValueError(f"max_size must be a positive integer, got {max_size!r}")

    fmt = image_format(dst)

    with Image.open(src) as img:
        img.thumbnail((max_size, max_size), Image.BICUBIC)
        thumb = img

        # Convert RGBA / palette images for encoders that can't store them
        if fmt == "JPEG" and thumb.mode not in JPEG_MODES:
            thumb = thumb.convert("RGB")

        thumb.save(dst, fmt)
        return thumb.size
