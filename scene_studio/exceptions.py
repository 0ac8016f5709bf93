"""
自定义异常类
"""

from typing import Optional


class GeneratorError(Exception):
    """生成器基础异常"""
    pass


class ConfigurationError(GeneratorError):
    """配置错误（缺少或无效的 API 密钥等）"""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class PathNotFoundError(GeneratorError):
    """路径不存在错误"""

    def __init__(self, path: str, message: str = None):
        self.path = path
        msg = message or f"路径不存在: {path}"
        super().__init__(msg)


class TemplateRenderError(GeneratorError):
    """模板加载错误"""

    def __init__(self, message: str, template: str = None):
        self.template = template
        super().__init__(message)


class GenerationError(GeneratorError):
    """上游 API 调用失败或返回错误"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NoImageReturnedError(GeneratorError):
    """调用成功但响应中找不到图片"""

    def __init__(self, message: str, text: Optional[str] = None):
        self.text = text
        super().__init__(message)


class ParseError(GeneratorError):
    """推荐场景 JSON 解析失败（内部恢复，不向外抛出）"""

    def __init__(self, message: str, raw: str = None):
        self.raw = raw
        super().__init__(message)


class PresetError(GeneratorError):
    """预设操作错误"""

    def __init__(self, message: str, preset_id: str = None):
        self.preset_id = preset_id
        super().__init__(message)


class StateTransitionError(GeneratorError):
    """非法的状态转换"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"不允许的状态转换: {current} -> {target}")
