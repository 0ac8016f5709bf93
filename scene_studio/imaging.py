"""
图片工具 - 文件与 base64 data URL 转换、白底去除
"""

import base64
import io
import logging
import mimetypes
from pathlib import Path
from typing import Union

from PIL import Image, ImageChops

from .exceptions import PathNotFoundError

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = ["image/png", "image/jpeg", "image/webp", "image/gif"]

ImageSource = Union[str, Path, bytes]


def file_to_data_url(path: Union[str, Path]) -> str:
    """
    读取图片文件并转换为 base64 data URL

    Args:
        path: 图片文件路径

    Returns:
        data URL (data:image/png;base64,...)
    """
    path = Path(path)
    if not path.exists():
        raise PathNotFoundError(str(path), f"图片文件不存在: {path}")

    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type not in SUPPORTED_MIME_TYPES:
        mime_type = "image/jpeg"

    base64_data = base64.b64encode(path.read_bytes()).decode("utf-8")
    logger.debug(f"图片转换成功: {path.name} -> {mime_type}, {len(base64_data)} bytes")
    return f"data:{mime_type};base64,{base64_data}"


def data_url_to_bytes(data_url: str) -> bytes:
    """解析 data URL 或纯 base64 字符串"""
    if data_url.startswith("data:"):
        # 格式: data:image/png;base64,xxxxx
        _, base64_data = data_url.split(",", 1)
    else:
        base64_data = data_url
    return base64.b64decode(base64_data)


def _load_bytes(source: ImageSource) -> bytes:
    if isinstance(source, bytes):
        return source
    if isinstance(source, str) and source.startswith("data:"):
        return data_url_to_bytes(source)
    path = Path(source)
    if not path.exists():
        raise PathNotFoundError(str(path), f"图片文件不存在: {path}")
    return path.read_bytes()


def remove_white_background(source: ImageSource, threshold: int = 240) -> str:
    """
    去除接近白色的背景

    RGB 三个通道都不低于 threshold 的像素变为透明。

    Args:
        source: 文件路径、原始字节或 data URL
        threshold: 白色判定阈值 (0-255)

    Returns:
        PNG 格式的 data URL
    """
    with Image.open(io.BytesIO(_load_bytes(source))) as img:
        rgba = img.convert("RGBA")

    red, green, blue, alpha = rgba.split()
    masks = [band.point(lambda v: 255 if v >= threshold else 0) for band in (red, green, blue)]
    white = ImageChops.multiply(ImageChops.multiply(masks[0], masks[1]), masks[2])
    rgba.putalpha(ImageChops.subtract(alpha, white))

    buffer = io.BytesIO()
    rgba.save(buffer, format="PNG")
    logger.debug(f"白底去除完成: {rgba.size[0]}x{rgba.size[1]}")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("utf-8")
