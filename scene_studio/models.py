"""
数据模型定义
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


DEFAULT_QUALITY = "High quality, photorealistic, 8k"


class LLMProvider(Enum):
    """模型提供方（值为展示名称）"""
    NANO_BANANA_PRO = "Nano Banana Pro"
    GEMINI_3_PRO_PREVIEW = "Gemini 3 Pro Preview"

    @property
    def model_id(self) -> str:
        """OpenRouter 上对应的模型 ID"""
        return PROVIDER_MODEL_MAP[self]


PROVIDER_MODEL_MAP: Dict[LLMProvider, str] = {
    LLMProvider.NANO_BANANA_PRO: "google/gemini-3-pro-image-preview",
    LLMProvider.GEMINI_3_PRO_PREVIEW: "google/gemini-3-pro-preview",
}


class ProcessingStep(Enum):
    """处理阶段"""
    IDLE = "IDLE"
    ANALYZING_IMAGE = "ANALYZING_IMAGE"
    EXPANDING_PROMPT = "EXPANDING_PROMPT"
    GENERATING_IMAGE = "GENERATING_IMAGE"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


def new_id() -> str:
    """生成唯一 ID"""
    return uuid.uuid4().hex


def now_ms() -> int:
    """当前时间戳（毫秒）"""
    return int(time.time() * 1000)


@dataclass
class ScenarioPreset:
    """场景预设"""
    id: str
    name: str
    description: str  # 扩展用的基础场景描述
    quality: str = DEFAULT_QUALITY  # 风格/质量标签
    icon: Optional[str] = None
    is_recommended: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """转换为可序列化的字典"""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "quality": self.quality,
            "icon": self.icon,
            "is_recommended": self.is_recommended,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioPreset":
        """从字典创建实例"""
        return cls(
            id=str(data.get("id") or new_id()),
            name=data["name"],
            description=data["description"],
            quality=data.get("quality") or DEFAULT_QUALITY,
            icon=data.get("icon"),
            is_recommended=bool(data.get("is_recommended", False)),
        )

    def copy(self) -> "ScenarioPreset":
        return replace(self)


@dataclass(frozen=True)
class GeneratedImage:
    """生成结果（创建后不可变）"""
    id: str
    url: str  # data URL 或远程 URL
    prompt: str  # 实际发送给生图接口的扩展 prompt
    vibe: str  # 预设名称
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        """转换为可序列化的字典"""
        return {
            "id": self.id,
            "url": self.url,
            "prompt": self.prompt,
            "vibe": self.vibe,
            "timestamp": self.timestamp,
        }


@dataclass
class ProcessingState:
    """流水线状态"""
    step: ProcessingStep = ProcessingStep.IDLE
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step.value, "message": self.message}


@dataclass
class ImageGenerationOptions:
    """图片生成选项"""
    quality: Optional[str] = None


@dataclass
class LLMServiceConfig:
    """LLM 服务配置（所有服务实例共享）"""
    api_key: Optional[str] = None
    base_url: str = "https://openrouter.ai/api/v1"
    model: Optional[str] = None  # 设置后覆盖 provider 对应的模型
    # Prompt 模板
    expand_prompt_system: Optional[str] = None
    expand_prompt_user_template: Optional[str] = None
    generation_prompt_template: Optional[str] = None
    # OpenRouter 统计信息
    site_url: Optional[str] = None
    site_name: Optional[str] = "AmzGen"
    timeout: float = 300.0
    proxy: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # 扩展配置项


@dataclass
class BatchResult:
    """一次批量生成的结果"""
    images: List[GeneratedImage]
    requested: int
    skipped: List[str]
    final_step: ProcessingStep
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.final_step == ProcessingStep.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        """转换为可序列化的字典"""
        return {
            "images": [img.to_dict() for img in self.images],
            "requested": self.requested,
            "skipped": self.skipped,
            "final_step": self.final_step.value,
            "error": self.error,
        }
