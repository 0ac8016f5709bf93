"""
输出管理器 - 生成结果列表与图片下载
"""

import logging
import time
from pathlib import Path
from typing import List, Optional

import httpx

from .exceptions import GeneratorError
from .imaging import data_url_to_bytes
from .models import GeneratedImage

logger = logging.getLogger(__name__)


class OutputManager:
    """输出管理器"""

    FILENAME_PREFIX = "amz-gen"

    def __init__(self, base_dir: Path = Path("./outputs"), transport: Optional[httpx.BaseTransport] = None):
        """
        初始化输出管理器

        Args:
            base_dir: 默认输出目录
            transport: 自定义 httpx transport（测试时注入）
        """
        self.base_dir = Path(base_dir)
        self.transport = transport

    def _filename(self) -> str:
        return f"{self.FILENAME_PREFIX}-{int(time.time() * 1000)}.png"

    def _unique_path(self, output_dir: Path) -> Path:
        path = output_dir / self._filename()
        while path.exists():
            time.sleep(0.001)
            path = output_dir / self._filename()
        return path

    def _fetch(self, url: str) -> bytes:
        """下载远程图片"""
        try:
            with httpx.Client(timeout=60.0, follow_redirects=True, transport=self.transport) as client:
                response = client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise GeneratorError(f"下载图片失败 {url}: {e}")
        return response.content

    def save_image(self, url: str, output_dir: Optional[Path] = None) -> Path:
        """
        保存图片到本地

        Args:
            url: data URL 或远程 URL
            output_dir: 输出目录，默认使用 base_dir

        Returns:
            保存的文件路径
        """
        output_dir = Path(output_dir) if output_dir else self.base_dir
        output_dir.mkdir(parents=True, exist_ok=True)

        if url.startswith(("http://", "https://")):
            image_data = self._fetch(url)
        else:
            try:
                image_data = data_url_to_bytes(url)
            except ValueError as e:
                raise GeneratorError(f"图片数据无法解码: {e}")

        output_path = self._unique_path(output_dir)
        with open(output_path, "wb") as f:
            f.write(image_data)

        logger.info(f"💾 图片已保存: {output_path}")
        return output_path


class ResultStore:
    """生成结果列表（最新的在前，只增不删）"""

    def __init__(self, output_manager: Optional[OutputManager] = None):
        self.output_manager = output_manager or OutputManager()
        self._images: List[GeneratedImage] = []

    @property
    def images(self) -> List[GeneratedImage]:
        return list(self._images)

    def __len__(self) -> int:
        return len(self._images)

    def add(self, image: GeneratedImage):
        """添加到列表最前面"""
        self._images.insert(0, image)

    def get(self, image_id: str) -> Optional[GeneratedImage]:
        for image in self._images:
            if image.id == image_id:
                return image
        return None

    def download(self, image_id: str, output_dir: Optional[Path] = None) -> Path:
        """
        下载结果图片，不修改记录

        Raises:
            GeneratorError: 结果不存在或下载失败
        """
        image = self.get(image_id)
        if image is None:
            raise GeneratorError(f"结果不存在: {image_id}")
        return self.output_manager.save_image(image.url, output_dir)
