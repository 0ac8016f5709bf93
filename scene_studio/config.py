"""
配置管理器 - 负责加载配置、预设和本地保存的 API 密钥
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import ConfigurationError, PathNotFoundError, TemplateRenderError
from .models import LLMServiceConfig, ScenarioPreset
from .preset_store import DEFAULT_PRESETS
from .template_engine import TemplateEngine

logger = logging.getLogger(__name__)

HOME_ENV = "SCENE_STUDIO_HOME"
CREDENTIAL_KEY = "openrouter_api_key"


def default_home() -> Path:
    """本地数据目录，可通过 SCENE_STUDIO_HOME 覆盖"""
    return Path(os.getenv(HOME_ENV) or Path.home() / ".scene_studio")


class CredentialStore:
    """本地保存的 API 密钥（唯一持久化的数据）"""

    FILE_NAME = "credentials.json"

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else default_home() / self.FILE_NAME

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"密钥文件损坏: {self.path}, {e}", field=CREDENTIAL_KEY)
        return data if isinstance(data, dict) else {}

    def load(self) -> Optional[str]:
        """读取保存的密钥"""
        value = self._read().get(CREDENTIAL_KEY)
        return value.strip() if isinstance(value, str) and value.strip() else None

    def save(self, api_key: str):
        """保存密钥，空字符串等同于清除"""
        api_key = (api_key or "").strip()
        if not api_key:
            self.clear()
            return

        data = self._read()
        data[CREDENTIAL_KEY] = api_key
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        logger.info(f"🔑 API 密钥已保存: {self.path}")

    def clear(self):
        """删除保存的密钥"""
        data = self._read()
        if CREDENTIAL_KEY not in data:
            return
        data.pop(CREDENTIAL_KEY)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        logger.info("🔑 API 密钥已清除")


class ConfigManager:
    """配置管理器"""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        project_root: Optional[Path] = None,
        credential_store: Optional[CredentialStore] = None,
    ):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径 (config.json)，未指定时尝试项目根目录下的默认文件
            project_root: 项目根目录，用于解析相对路径
            credential_store: 本地密钥存储
        """
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self.config_path = Path(config_path) if config_path else None
        self.credential_store = credential_store or CredentialStore()
        self._data: Optional[Dict[str, Any]] = None

    def _load_json(self, path: Path) -> Any:
        """加载JSON文件"""
        if not path.exists():
            raise PathNotFoundError(str(path), f"配置文件不存在: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"JSON解析错误: {path}, {e}")

    def _resolve_path(self, path_str: str) -> Path:
        """解析路径，相对路径相对于项目根目录"""
        p = Path(path_str)
        if p.is_absolute():
            return p
        return self.project_root / p

    def load_data(self) -> Dict[str, Any]:
        """读取配置文件内容，没有配置文件时返回空字典"""
        if self._data is not None:
            return self._data

        path = self.config_path
        if path is None:
            default_path = self.project_root / "config.json"
            if not default_path.exists():
                logger.debug("未找到 config.json，使用默认配置")
                self._data = {}
                return self._data
            path = default_path

        data = self._load_json(path)
        if not isinstance(data, dict):
            raise ConfigurationError(f"配置文件根对象必须是字典: {path}")
        self._data = data
        return data

    def _prompt(self, prompts_cfg: Dict[str, Any], key: str) -> Optional[str]:
        """内联模板优先，其次读取模板文件"""
        inline = prompts_cfg.get(key)
        if inline:
            return inline
        path_str = prompts_cfg.get(f"{key}_path")
        if not path_str:
            return None
        try:
            return TemplateEngine(self.project_root).load_template(Path(path_str))
        except TemplateRenderError as e:
            raise ConfigurationError(str(e), field=f"prompts.{key}_path")

    def load_service_config(self, api_key: Optional[str] = None) -> LLMServiceConfig:
        """
        构建 LLM 服务配置

        Args:
            api_key: 显式指定的密钥（优先于本地保存的密钥和配置文件）
        """
        data = self.load_data()
        openrouter_cfg = data.get("openrouter", {})
        prompts_cfg = data.get("prompts", {})

        explicit_key = (
            api_key
            or self.credential_store.load()
            or openrouter_cfg.get("api_key")
            or None
        )

        try:
            timeout = float(openrouter_cfg.get("timeout", 300.0))
        except (TypeError, ValueError):
            raise ConfigurationError("openrouter.timeout 必须是数字", field="openrouter.timeout")

        return LLMServiceConfig(
            api_key=explicit_key,
            base_url=os.getenv("OPENROUTER_BASE_URL") or openrouter_cfg.get("base_url", "https://openrouter.ai/api/v1"),
            model=openrouter_cfg.get("model") or None,
            expand_prompt_system=self._prompt(prompts_cfg, "expand_system"),
            expand_prompt_user_template=self._prompt(prompts_cfg, "expand_user_template"),
            generation_prompt_template=self._prompt(prompts_cfg, "generation_template"),
            site_url=os.getenv("OPENROUTER_SITE_URL") or openrouter_cfg.get("site_url") or None,
            site_name=os.getenv("OPENROUTER_SITE_NAME") or openrouter_cfg.get("site_name", "AmzGen"),
            timeout=timeout,
            proxy=os.getenv("OPENROUTER_PROXY") or openrouter_cfg.get("proxy") or None,
            extra=data.get("extra", {}),
        )

    def load_presets(self) -> List[ScenarioPreset]:
        """加载预设库，未配置时使用内置预设"""
        data = self.load_data()
        presets_path = data.get("presets_path")
        if not presets_path:
            return [p.copy() for p in DEFAULT_PRESETS]

        items = self._load_json(self._resolve_path(presets_path))
        if not isinstance(items, list):
            raise ConfigurationError(f"预设文件必须是数组: {presets_path}", field="presets_path")

        presets = []
        for index, item in enumerate(items):
            if not isinstance(item, dict) or not item.get("name") or not item.get("description"):
                raise ConfigurationError(f"预设 #{index + 1} 缺少 name 或 description", field="presets_path")
            presets.append(ScenarioPreset.from_dict(item))

        logger.info(f"加载 {len(presets)} 个预设: {presets_path}")
        return presets

    def get_reset_delay(self) -> float:
        """COMPLETED 状态的显示时长"""
        try:
            return float(self.load_data().get("reset_delay", 3.0))
        except (TypeError, ValueError):
            raise ConfigurationError("reset_delay 必须是数字", field="reset_delay")
