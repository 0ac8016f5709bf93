"""
Scene Studio - 产品场景图生成

将一张普通的产品图，按选中的场景预设依次：
- 扩展 (Expansion): 把简短场景描述扩展为详细的生图 prompt
- 生成 (Generation): 用产品图 + 扩展后的 prompt 生成电商场景图
"""

__version__ = "1.0.0"

from .models import (
    DEFAULT_QUALITY,
    BatchResult,
    GeneratedImage,
    ImageGenerationOptions,
    LLMProvider,
    LLMServiceConfig,
    ProcessingState,
    ProcessingStep,
    ScenarioPreset,
)
from .exceptions import (
    GeneratorError,
    ConfigurationError,
    GenerationError,
    NoImageReturnedError,
    ParseError,
    PathNotFoundError,
    PresetError,
    StateTransitionError,
    TemplateRenderError,
)
from .template_engine import TemplateEngine, fill
from .llm_service import LLMService
from .openrouter_service import OpenRouterService
from .service_factory import LLMServiceFactory
from .state_manager import StateManager
from .preset_store import DEFAULT_PRESETS, PresetLibrary
from .output_manager import OutputManager, ResultStore
from .config import ConfigManager, CredentialStore
from .engine import GenerationEngine

__all__ = [
    # Enums
    "LLMProvider",
    "ProcessingStep",
    # Data Models
    "DEFAULT_QUALITY",
    "BatchResult",
    "GeneratedImage",
    "ImageGenerationOptions",
    "LLMServiceConfig",
    "ProcessingState",
    "ScenarioPreset",
    # Exceptions
    "GeneratorError",
    "ConfigurationError",
    "GenerationError",
    "NoImageReturnedError",
    "ParseError",
    "PathNotFoundError",
    "PresetError",
    "StateTransitionError",
    "TemplateRenderError",
    # Components
    "fill",
    "TemplateEngine",
    "LLMService",
    "OpenRouterService",
    "LLMServiceFactory",
    "StateManager",
    "DEFAULT_PRESETS",
    "PresetLibrary",
    "OutputManager",
    "ResultStore",
    "ConfigManager",
    "CredentialStore",
    "GenerationEngine",
]
