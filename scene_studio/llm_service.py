"""
LLM 服务接口 - 所有服务提供方必须实现此接口
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .exceptions import ConfigurationError, ParseError
from .models import ImageGenerationOptions, LLMProvider, LLMServiceConfig

logger = logging.getLogger(__name__)

API_KEY_ENV = "OPENROUTER_API_KEY"

DEFAULT_SYSTEM_INSTRUCTION = """# Role: E-Commerce Product Photography Expert

## Profile
- Description: Specialist in creating high-converting product images for online marketplaces (e.g., Amazon, Shopify).

## Mandate
1. **Platform Compliance**: Images must be high-resolution and professional, suitable for various e-commerce formats (Main Image, Lifestyle, Infographic background).
2. **Product Hero**: The product MUST be the central focus, clearly visible and occupying the majority of the frame.
3. **Context Integration**: If additional context is provided, integrate it as a supporting element that enhances the product's appeal without distraction.

## Rules
1.  **Output ONLY the final prompt text.**
2.  **Do NOT describe the product visual details** (color, shape) as it comes from the input image.
3.  **Keywords**: Commercial, High Resolution, Sharp Focus, Depth of Field, Studio Lighting, E-commerce Quality.
4.  **Composition**: Ensure natural interaction if people are involved, but keep the product as the undisputed subject."""

DEFAULT_USER_TEMPLATE = """# Task: Write a Commercial Image Gen Prompt

## Input Data
- **Target Scene**: "{{basePrompt}}"
- **Additional Context**: "{{customContext}}"

## Instructions
Based on the input, write a detailed, commercial-grade prompt.
- Ensure the scene highlights the product's value proposition.
- Emphasize lighting and texture for a premium, trustworthy look.
- Adapt the style to fit general e-commerce standards (clean, professional)."""

DEFAULT_GENERATION_TEMPLATE = """Create a high-end commercial product image for e-commerce.
Reference Image: Use the provided product image as the main subject.
Scene Description: {{prompt}}.
Requirements:
- **Focus**: Sharp on the product.
- **Composition**: Product is the hero, centered and commanding attention.
- **Lighting**: Professional studio or natural commercial lighting.
Style: E-commerce Lifestyle, High Resolution, Photorealistic, Advertisement."""

RECOMMEND_INSTRUCTION = """Analyze the product image. Suggest 3 distinct, commercial e-commerce photography scenarios suitable for online marketplaces like Amazon.
Focus on environments, lighting, and props that increase conversion rates.
Scenarios should be diverse (e.g., studio, lifestyle, creative) but strictly professional.
Do NOT use restricted terms like 'Amazon Choice' or 'Best Seller'.
Output format: JSON array of strings.
ONLY output the JSON array."""

EDIT_INSTRUCTION = """Perform an inpainting/edit task on the image using the provided mask.
The white area in the mask indicates the region to modify.
Instruction: {{prompt}}
Return ONLY the resulting image."""

FALLBACK_SCENARIOS = [
    "A clean studio setting with soft lighting.",
    "A lifestyle setting with natural sunlight.",
    "A professional commercial background.",
]

_DATA_URL_PREFIX = re.compile(r"^data:[^;,]*;base64,")
_MARKDOWN_IMAGE = re.compile(r"!\[.*?\]\((.*?)\)")
_BARE_URL = re.compile(r"(https?://[^\s)]+)", re.IGNORECASE)
_CODE_FENCE = re.compile(r"```(?:json)?\n?|\n?```")


def strip_data_url_prefix(image_base64: str) -> str:
    """去掉 data:image/...;base64, 前缀"""
    return _DATA_URL_PREFIX.sub("", image_base64)


def to_image_part(image: str) -> Dict[str, Any]:
    """构建消息中的图片部分，远程 URL 原样传递"""
    if image.startswith(("http://", "https://")):
        url = image
    else:
        url = f"data:image/png;base64,{strip_data_url_prefix(image)}"
    return {"type": "image_url", "image_url": {"url": url}}


def _attachment_url(message: Dict[str, Any]) -> Optional[str]:
    """从 message 的结构化图片字段中取 URL"""
    images = message.get("images")
    if isinstance(images, list):
        for image in images:
            if not isinstance(image, dict):
                continue
            image_url = image.get("image_url", {})
            url = image_url.get("url") if isinstance(image_url, dict) else None
            if url:
                return url

    content = message.get("content")
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and item.get("type") == "image_url":
                image_url = item.get("image_url", {})
                url = image_url.get("url") if isinstance(image_url, dict) else None
                if url:
                    return url
    return None


def _text_url(content: str) -> Optional[str]:
    """从文本内容中查找图片：markdown 图片 -> 裸 URL -> data URL"""
    match = _MARKDOWN_IMAGE.search(content)
    if match:
        target = match.group(1).strip()
        if "http" in target or target.startswith("data:image"):
            return target

    match = _BARE_URL.search(content)
    if match:
        return match.group(1)

    stripped = content.strip()
    if stripped.startswith("data:image"):
        return stripped
    return None


def message_text(message: Dict[str, Any]) -> str:
    """取 message 中的文本内容"""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            item.get("text", "") for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        )
    return ""


def extract_image_url(response_data: Dict[str, Any]) -> Optional[str]:
    """
    从 chat completion 响应中提取图片

    先检查所有 choice 的结构化图片字段，再对文本做匹配，
    避免前面 choice 中类似 URL 的文字抢先命中。

    Args:
        response_data: API 响应 JSON

    Returns:
        图片的 data URL 或远程 URL，未找到返回 None
    """
    choices = response_data.get("choices") or []
    messages = [
        choice.get("message") or {}
        for choice in choices
        if isinstance(choice, dict)
    ]

    for message in messages:
        url = _attachment_url(message)
        if url:
            return url

    for message in messages:
        text = message_text(message)
        if text:
            url = _text_url(text)
            if url:
                return url

    return None


def first_text(response_data: Dict[str, Any]) -> str:
    """取第一个 choice 的文本，用于诊断"""
    choices = response_data.get("choices") or []
    if choices and isinstance(choices[0], dict):
        return message_text(choices[0].get("message") or {})
    return ""


def parse_scenarios(content: str) -> List[str]:
    """
    解析推荐场景 JSON 数组

    去掉代码块标记后，取第一个能完整解析的 [...] 子串。

    Raises:
        ParseError: 找不到合法的字符串数组
    """
    text = _CODE_FENCE.sub("", content or "").strip()
    decoder = json.JSONDecoder()

    start = text.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("[", start + 1)
            continue
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            return value
        start = text.find("[", start + 1)

    raise ParseError("推荐结果中没有合法的 JSON 字符串数组", raw=content)


class LLMService(ABC):
    """LLM 服务抽象基类"""

    def __init__(self, config: Optional[LLMServiceConfig] = None, provider: LLMProvider = LLMProvider.NANO_BANANA_PRO):
        """
        Args:
            config: 共享配置（每次调用时读取）
            provider: 该实例对应的模型提供方
        """
        self.config = config or LLMServiceConfig()
        self.provider = provider

    def get_provider(self) -> LLMProvider:
        """获取服务提供方"""
        return self.provider

    def resolve_api_key(self) -> Optional[str]:
        """按顺序解析密钥：显式配置 -> 环境变量"""
        return self.config.api_key or os.getenv(API_KEY_ENV) or None

    def is_available(self) -> bool:
        """检查服务是否可用（是否配置了密钥），不发起网络请求"""
        return bool(self.resolve_api_key())

    def require_api_key(self) -> str:
        api_key = self.resolve_api_key()
        if not api_key:
            raise ConfigurationError(
                f"未找到 API 密钥，请设置 {API_KEY_ENV} 或在配置中提供 api_key",
                field="api_key",
            )
        return api_key

    @abstractmethod
    def expand_prompt(self, base_prompt: str, custom_context: str = "") -> str:
        """
        扩展基础场景描述为详细的生图 prompt

        Args:
            base_prompt: 基础场景描述
            custom_context: 用户自定义上下文

        Returns:
            扩展后的 prompt
        """

    @abstractmethod
    def generate_image(
        self,
        image_base64: str,
        prompt: str,
        options: Optional[ImageGenerationOptions] = None,
    ) -> str:
        """
        生成产品场景图

        Args:
            image_base64: 产品图 base64（可带 data URL 前缀）
            prompt: 场景 prompt
            options: 生成选项

        Returns:
            生成图片的 data URL 或远程 URL
        """

    @abstractmethod
    def recommend_scenarios(self, image_base64: str) -> List[str]:
        """根据产品图推荐场景描述"""

    @abstractmethod
    def edit_image(self, image_base64: str, mask_base64: str, prompt: str) -> str:
        """
        局部重绘

        Args:
            image_base64: 原图
            mask_base64: 蒙版（白色区域为修改区域）
            prompt: 编辑指令

        Returns:
            编辑后图片的 URL
        """
