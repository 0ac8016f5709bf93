"""
OpenRouter 服务实现 - 使用 OpenAI 兼容接口

参考文档: https://openrouter.ai/docs/features/multimodal/image-generation
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import OpenAI

from .exceptions import GenerationError, NoImageReturnedError, ParseError
from .llm_service import (
    DEFAULT_GENERATION_TEMPLATE,
    DEFAULT_SYSTEM_INSTRUCTION,
    DEFAULT_USER_TEMPLATE,
    EDIT_INSTRUCTION,
    FALLBACK_SCENARIOS,
    RECOMMEND_INSTRUCTION,
    LLMService,
    extract_image_url,
    first_text,
    parse_scenarios,
    to_image_part,
)
from .models import ImageGenerationOptions, LLMProvider, LLMServiceConfig, PROVIDER_MODEL_MAP
from .template_engine import fill

logger = logging.getLogger(__name__)

IMAGE_MODEL = PROVIDER_MODEL_MAP[LLMProvider.NANO_BANANA_PRO]


def _upstream_message(response: httpx.Response) -> str:
    """从错误响应中取上游错误信息"""
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or response.text[:200]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.reason_phrase or str(data)[:200]


def _openai_error_message(e: openai.APIStatusError) -> str:
    body = e.body
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return e.message


class OpenRouterService(LLMService):
    """OpenRouter 服务：文本调用走 OpenAI SDK，图片调用直接用 httpx"""

    def __init__(
        self,
        config: Optional[LLMServiceConfig] = None,
        provider: LLMProvider = LLMProvider.NANO_BANANA_PRO,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        初始化 OpenRouter 服务

        Args:
            config: 共享配置
            provider: 模型提供方
            transport: 自定义 httpx transport（测试时注入）
        """
        super().__init__(config, provider)
        self.transport = transport

    @property
    def model_id(self) -> str:
        return self.config.model or self.provider.model_id

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    def _extra_headers(self) -> Dict[str, str]:
        headers = {}
        if self.config.site_url:
            headers["HTTP-Referer"] = self.config.site_url
        if self.config.site_name:
            headers["X-Title"] = self.config.site_name
        return headers

    def _http_client(self) -> httpx.Client:
        kwargs: Dict[str, Any] = {"timeout": self.config.timeout}
        if self.transport is not None:
            kwargs["transport"] = self.transport
        elif self.config.proxy:
            kwargs["proxy"] = self.config.proxy
        return httpx.Client(**kwargs)

    def _text_client(self, api_key: str) -> OpenAI:
        # 不做重试：一次失败直接向上抛出
        return OpenAI(
            api_key=api_key,
            base_url=self.base_url,
            max_retries=0,
            timeout=self.config.timeout,
            http_client=self._http_client(),
        )

    def _chat(self, api_key: str, messages: List[Dict[str, Any]], **kwargs) -> Optional[str]:
        """发送一次文本对话请求，返回第一个 choice 的文本"""
        extra_headers = self._extra_headers()
        try:
            with self._text_client(api_key) as client:
                completion = client.chat.completions.create(
                    model=self.model_id,
                    messages=messages,
                    extra_headers=extra_headers if extra_headers else None,
                    **kwargs,
                )
        except ValueError as e:
            # SDK 解析响应体失败时抛出的不是 OpenAIError
            logger.error(f"OpenRouter 响应不是合法 JSON: {e}")
            raise GenerationError(f"OpenRouter 响应不是合法 JSON: {e}")

        error = getattr(completion, "error", None)
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise GenerationError(f"OpenRouter 返回错误: {message}")

        choices = getattr(completion, "choices", None)
        if choices and choices[0].message:
            return choices[0].message.content
        return None

    def _post_image_request(self, api_key: str, model: str, content: List[Dict[str, Any]], log_prefix: str) -> Dict[str, Any]:
        """
        发送一次图片请求并返回响应 JSON

        直接使用 httpx，避免 OpenAI SDK 丢弃 message.images 字段
        """
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self._extra_headers())

        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": content}],
        }
        if model == IMAGE_MODEL:
            payload["modalities"] = ["image", "text"]

        logger.debug(f"{log_prefix} 发送请求到 OpenRouter, model={model}")

        try:
            with self._http_client() as http_client:
                response = http_client.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = _upstream_message(e.response)
            logger.error(f"{log_prefix} OpenRouter HTTP 错误: {status} - {message}")
            raise GenerationError(f"OpenRouter API error: {message}", status_code=status)
        except httpx.HTTPError as e:
            logger.error(f"{log_prefix} OpenRouter 请求失败: {e}")
            raise GenerationError(f"OpenRouter 请求失败: {e}")
        except ValueError as e:
            raise GenerationError(f"OpenRouter 响应不是合法 JSON: {e}")

        if not isinstance(data, dict):
            raise GenerationError(f"OpenRouter 响应格式错误: {str(data)[:200]}")

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise GenerationError(f"OpenRouter API error: {message}", status_code=data.get("code"))

        logger.debug(f"{log_prefix} 响应数据: {str(data)[:500]}")
        return data

    def expand_prompt(self, base_prompt: str, custom_context: str = "") -> str:
        api_key = self.require_api_key()

        system_instruction = self.config.expand_prompt_system or DEFAULT_SYSTEM_INSTRUCTION
        user_template = self.config.expand_prompt_user_template or DEFAULT_USER_TEMPLATE
        user_prompt = fill(user_template, {
            "basePrompt": base_prompt,
            "customContext": custom_context,
        })

        logger.debug(f"🔵 [Expand Prompt] 输入: {user_prompt}")

        try:
            text = self._chat(
                api_key,
                [
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.7,
            )
        except openai.APIStatusError as e:
            logger.error(f"扩展 prompt 失败: {e}")
            raise GenerationError(
                f"Failed to expand prompt: {_openai_error_message(e)}",
                status_code=e.status_code,
            )
        except openai.OpenAIError as e:
            logger.error(f"扩展 prompt 失败: {e}")
            raise GenerationError(f"Failed to expand prompt: {e}")

        expanded = text or f"A professional product shot in a {base_prompt} setting."
        logger.debug(f"🟢 [Expand Prompt] 输出: {expanded}")
        return expanded

    def generate_image(
        self,
        image_base64: str,
        prompt: str,
        options: Optional[ImageGenerationOptions] = None,
    ) -> str:
        api_key = self.require_api_key()

        generation_template = self.config.generation_prompt_template or DEFAULT_GENERATION_TEMPLATE
        full_prompt = fill(generation_template, {"prompt": prompt})
        if options and options.quality:
            full_prompt += f"\nStyle/Quality: {options.quality}"

        logger.debug(f"🎨 [Generate Image] 最终 prompt: {full_prompt}")

        content = [
            {"type": "text", "text": full_prompt},
            to_image_part(image_base64),
        ]
        data = self._post_image_request(api_key, self.model_id, content, "[Generate Image]")

        image_url = extract_image_url(data)
        if image_url:
            return image_url

        text = first_text(data)
        if text:
            logger.warning(f"模型返回了文本而不是图片: {text[:200]}")
            raise NoImageReturnedError(
                f"The selected model returned text instead of an image: {text[:100]}",
                text=text,
            )
        raise NoImageReturnedError("No valid image content returned from OpenRouter API (checked all choices).")

    def recommend_scenarios(self, image_base64: str) -> List[str]:
        api_key = self.require_api_key()

        try:
            content = self._chat(
                api_key,
                [
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": RECOMMEND_INSTRUCTION},
                            to_image_part(image_base64),
                        ],
                    }
                ],
            )
            logger.debug(f"🔍 [Recommend Scenarios] 原始输出: {content}")
            return parse_scenarios(content or "")
        except ParseError as e:
            logger.warning(f"推荐结果解析失败，使用默认场景: {e}")
        except (openai.OpenAIError, GenerationError) as e:
            logger.error(f"推荐场景请求失败，使用默认场景: {e}")

        return list(FALLBACK_SCENARIOS)

    def edit_image(self, image_base64: str, mask_base64: str, prompt: str) -> str:
        api_key = self.require_api_key()

        logger.debug(f"🎨 [Edit Image] 发送请求到 {IMAGE_MODEL}")

        content = [
            {"type": "text", "text": fill(EDIT_INSTRUCTION, {"prompt": prompt})},
            to_image_part(image_base64),
            to_image_part(mask_base64),
        ]
        data = self._post_image_request(api_key, IMAGE_MODEL, content, "[Edit Image]")

        image_url = extract_image_url(data)
        if image_url:
            return image_url

        text = first_text(data)
        logger.warning(f"编辑响应中没有图片，模型输出: {text[:200]}")
        raise NoImageReturnedError(
            "No image returned for edit request. The model might have output text instead: "
            + (text[:100] or "Empty response"),
            text=text or None,
        )
