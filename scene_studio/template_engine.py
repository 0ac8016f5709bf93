"""
模板引擎 - 负责 prompt 模板加载和占位符替换

占位符格式为 {{key}}，按字面量替换：不转义、不递归、缺失的 key 不报错。
"""

import logging
import re
from pathlib import Path
from typing import Mapping, Optional

from .exceptions import TemplateRenderError

logger = logging.getLogger(__name__)


def fill(template: str, variables: Mapping[str, str]) -> str:
    """
    替换模板中的占位符

    Args:
        template: 模板字符串
        variables: 变量字典，每个 key 对应模板中的 {{key}}

    Returns:
        替换后的字符串，没有对应变量的占位符保持原样
    """
    if not variables:
        return template

    # 一次扫描完成替换，替换进来的值不会再被处理
    markers = sorted(("{{" + key + "}}" for key in variables), key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(marker) for marker in markers))
    return pattern.sub(lambda m: str(variables[m.group(0)[2:-2]]), template)


class TemplateEngine:
    """Prompt 模板引擎"""

    def __init__(self, template_dir: Optional[Path] = None):
        """
        初始化模板引擎

        Args:
            template_dir: 模板文件目录，相对路径基于该目录解析
        """
        self.template_dir = Path(template_dir) if template_dir else None

    def _resolve(self, path: Path) -> Path:
        path = Path(path)
        if not path.is_absolute() and self.template_dir:
            return self.template_dir / path
        return path

    def load_template(self, path: Path) -> str:
        """
        从文件加载模板

        Args:
            path: 模板文件路径

        Returns:
            模板内容字符串
        """
        path = self._resolve(path)
        if not path.exists():
            raise TemplateRenderError(f"模板文件不存在: {path}", template=str(path))

        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateRenderError(f"读取模板文件失败: {e}", template=str(path))

    def render(self, template_str: str, variables: Mapping[str, str]) -> str:
        """渲染模板字符串"""
        rendered = fill(template_str, variables)
        logger.debug(f"模板渲染完成: {rendered[:200]}")
        return rendered
