"""
LLM 服务工厂 - 负责创建和缓存服务实例
"""

import logging
from typing import Callable, Dict, List, Optional

from .llm_service import LLMService
from .models import ImageGenerationOptions, LLMProvider, LLMServiceConfig
from .openrouter_service import OpenRouterService

logger = logging.getLogger(__name__)

ServiceBuilder = Callable[[LLMServiceConfig, LLMProvider], LLMService]


class LLMServiceFactory:
    """每个 provider 缓存一个服务实例，所有实例共享同一份配置"""

    def __init__(
        self,
        config: Optional[LLMServiceConfig] = None,
        builder: Optional[ServiceBuilder] = None,
    ):
        """
        Args:
            config: 共享配置
            builder: 服务构造函数，默认创建 OpenRouterService
        """
        self.config = config or LLMServiceConfig()
        self._builder = builder or OpenRouterService
        self._instances: Dict[LLMProvider, LLMService] = {}

    def register_config(self, config: LLMServiceConfig):
        """替换共享配置并清空实例缓存"""
        self.config = config
        self._instances.clear()
        logger.debug("LLM 服务配置已更新，缓存已清空")

    def get_service(self, provider: LLMProvider = LLMProvider.NANO_BANANA_PRO) -> LLMService:
        """获取（或创建）指定 provider 的服务实例"""
        service = self._instances.get(provider)
        if service is None:
            service = self._builder(self.config, provider)
            self._instances[provider] = service
            logger.debug(f"创建 LLM 服务: {provider.value}")
        return service

    def is_service_available(self, provider: LLMProvider = LLMProvider.NANO_BANANA_PRO) -> bool:
        """服务是否可用，不抛异常"""
        try:
            return self.get_service(provider).is_available()
        except Exception as e:
            logger.debug(f"检查服务可用性失败: {e}")
            return False

    # 便捷方法

    def expand_prompt(self, base_prompt: str, provider: LLMProvider, custom_context: str = "") -> str:
        """扩展提示词"""
        return self.get_service(provider).expand_prompt(base_prompt, custom_context)

    def generate_product_scene(
        self,
        image_base64: str,
        prompt: str,
        provider: LLMProvider,
        options: Optional[ImageGenerationOptions] = None,
    ) -> str:
        """生成产品场景图"""
        return self.get_service(provider).generate_image(image_base64, prompt, options)

    def recommend_scenarios(self, image_base64: str, provider: LLMProvider) -> List[str]:
        """推荐场景"""
        return self.get_service(provider).recommend_scenarios(image_base64)

    def edit_image(self, image_base64: str, mask_base64: str, prompt: str, provider: LLMProvider) -> str:
        """编辑图片"""
        return self.get_service(provider).edit_image(image_base64, mask_base64, prompt)
