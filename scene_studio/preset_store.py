"""
场景预设库 - 用户预设与 AI 推荐预设
"""

import logging
from typing import Iterable, List, Optional

from .exceptions import PresetError
from .models import DEFAULT_QUALITY, ScenarioPreset, new_id, now_ms

logger = logging.getLogger(__name__)

DEFAULT_PRESETS: List[ScenarioPreset] = [
    ScenarioPreset(
        id="minimalist",
        name="Minimalist Studio",
        description=(
            "A clean, high-end studio setting with soft, diffused lighting and a neutral "
            "beige or white background. Minimal props, focus entirely on the product elegance."
        ),
        quality="High quality, 8k, commercial photography, soft lighting",
    ),
]


class PresetLibrary:
    """
    预设库

    用户预设支持增删改；AI 推荐预设单独存放，每次推荐整体替换，
    只用于展示和选择。
    """

    def __init__(self, presets: Optional[Iterable[ScenarioPreset]] = None, selected_ids: Optional[Iterable[str]] = None):
        source = DEFAULT_PRESETS if presets is None else presets
        self.presets: List[ScenarioPreset] = []
        self.recommendations: List[ScenarioPreset] = []
        for preset in source:
            if self.find(preset.id):
                raise PresetError(f"预设 ID 重复: {preset.id}", preset_id=preset.id)
            self.presets.append(preset.copy())

        if selected_ids is None:
            selected_ids = [self.presets[0].id] if self.presets else []
        self.selected_ids: List[str] = list(selected_ids)

    def all_presets(self) -> List[ScenarioPreset]:
        """用户预设 + 推荐预设"""
        return self.presets + self.recommendations

    def find(self, preset_id: str) -> Optional[ScenarioPreset]:
        for preset in self.all_presets():
            if preset.id == preset_id:
                return preset
        return None

    def _fresh_id(self) -> str:
        preset_id = new_id()
        while self.find(preset_id):
            preset_id = new_id()
        return preset_id

    def create(self, name: str, description: str, quality: str = DEFAULT_QUALITY, icon: Optional[str] = None) -> ScenarioPreset:
        """
        新建预设

        Raises:
            PresetError: 名称或描述为空
        """
        if not name or not name.strip() or not description or not description.strip():
            raise PresetError("预设名称和描述不能为空")

        preset = ScenarioPreset(
            id=self._fresh_id(),
            name=name,
            description=description,
            quality=quality or DEFAULT_QUALITY,
            icon=icon,
        )
        self.presets.append(preset)
        logger.info(f"➕ 新建预设: {name}")
        return preset

    def _library_index(self, preset_id: str) -> int:
        for index, preset in enumerate(self.presets):
            if preset.id == preset_id:
                return index
        if any(p.id == preset_id for p in self.recommendations):
            raise PresetError(f"推荐预设不能编辑或删除: {preset_id}", preset_id=preset_id)
        return -1

    def edit(self, preset_id: str, name: str, description: str, quality: str) -> ScenarioPreset:
        """
        覆盖预设的名称、描述和质量标签

        Raises:
            PresetError: 预设不存在或为推荐预设
        """
        index = self._library_index(preset_id)
        if index < 0:
            raise PresetError(f"预设不存在: {preset_id}", preset_id=preset_id)

        preset = self.presets[index]
        preset.name = name
        preset.description = description
        preset.quality = quality
        logger.info(f"✏️ 更新预设: {name}")
        return preset

    def delete(self, preset_id: str) -> bool:
        """
        删除预设，同时从选择中移除

        Returns:
            是否删除了预设
        """
        index = self._library_index(preset_id)
        self.selected_ids = [pid for pid in self.selected_ids if pid != preset_id]
        if index < 0:
            return False
        removed = self.presets.pop(index)
        logger.info(f"🗑️ 删除预设: {removed.name}")
        return True

    def toggle(self, preset_id: str) -> bool:
        """
        切换选择状态

        Returns:
            切换后是否为选中
        """
        if preset_id in self.selected_ids:
            self.selected_ids.remove(preset_id)
            return False
        self.selected_ids.append(preset_id)
        return True

    def select(self, preset_ids: Iterable[str]):
        """替换当前选择"""
        self.selected_ids = list(preset_ids)

    def replace_recommendations(self, descriptions: Iterable[str]) -> List[ScenarioPreset]:
        """用新的推荐描述整体替换推荐预设"""
        descriptions = list(descriptions)
        old_ids = {p.id for p in self.recommendations}
        library_ids = {p.id for p in self.presets}
        stamp = now_ms()
        # 推荐 ID 不能与预设库中的 ID 重复
        while any(f"rec-{stamp}-{index}" in library_ids for index in range(len(descriptions))):
            stamp += 1
        self.recommendations = [
            ScenarioPreset(
                id=f"rec-{stamp}-{index}",
                name=f"AI Suggestion {index + 1}",
                description=description,
                quality=DEFAULT_QUALITY,
                is_recommended=True,
            )
            for index, description in enumerate(descriptions)
        ]
        self.selected_ids = [pid for pid in self.selected_ids if pid not in old_ids]
        return list(self.recommendations)
