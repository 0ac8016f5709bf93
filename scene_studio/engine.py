"""
生成引擎 - 核心协调器

按选中的预设顺序执行：扩展 prompt -> 生成图片 -> 写入结果列表。
"""

import logging
from typing import Callable, Iterable, List, Optional

from .exceptions import GeneratorError, StateTransitionError
from .imaging import ImageSource, remove_white_background
from .models import (
    BatchResult,
    GeneratedImage,
    ImageGenerationOptions,
    LLMProvider,
    ProcessingStep,
    new_id,
    now_ms,
)
from .output_manager import ResultStore
from .preset_store import PresetLibrary
from .service_factory import LLMServiceFactory
from .state_manager import StateManager

logger = logging.getLogger(__name__)

BackgroundRemover = Callable[[ImageSource], str]

# 每个调用点固定使用的模型
EXPANSION_PROVIDER = LLMProvider.GEMINI_3_PRO_PREVIEW
IMAGE_PROVIDER = LLMProvider.NANO_BANANA_PRO
RECOMMEND_PROVIDER = LLMProvider.GEMINI_3_PRO_PREVIEW

MSG_PREPARING = "Preparing scenarios..."
MSG_REMOVING_BG = "Removing background for better integration..."
MSG_COMPLETED = "All scenarios generated successfully!"
MSG_GENERATE_FAILED = "Something went wrong. Please check your API key and try again."
MSG_ANALYZING = "AI analyzing image and brainstorming scenarios..."
MSG_RECOMMEND_FAILED = "Failed to generate recommendations."


class GenerationEngine:
    """生成引擎 - 核心协调器"""

    def __init__(
        self,
        factory: LLMServiceFactory,
        presets: Optional[PresetLibrary] = None,
        results: Optional[ResultStore] = None,
        state_manager: Optional[StateManager] = None,
        background_remover: BackgroundRemover = remove_white_background,
    ):
        """初始化生成引擎"""
        self.factory = factory
        self.presets = presets or PresetLibrary()
        self.results = results or ResultStore()
        self.state_manager = state_manager or StateManager()
        self.background_remover = background_remover

        # 原图保留，用于后续编辑
        self.original_image: Optional[str] = None
        self.processed_image: Optional[str] = None
        self.last_error: Optional[BaseException] = None

    @property
    def state(self):
        return self.state_manager.state

    def generate(
        self,
        selected_preset_ids: Optional[Iterable[str]],
        image: Optional[str],
        custom_context: str = "",
        remove_bg: bool = False,
        background_source: Optional[ImageSource] = None,
    ) -> BatchResult:
        """
        批量生成场景图

        Args:
            selected_preset_ids: 选中的预设 ID（按顺序处理）
            image: 产品图 data URL
            custom_context: 用户自定义上下文
            remove_bg: 是否先去除背景
            background_source: 去背景使用的原始文件，默认使用 image

        Returns:
            本次批量的结果
        """
        preset_ids = list(selected_preset_ids or [])
        current = self.state_manager.step

        if not image or not preset_ids:
            logger.info("未选择图片或预设，跳过生成")
            return BatchResult(images=[], requested=len(preset_ids), skipped=[], final_step=current)

        # 批量开始前一次性占用状态，之后只做转换
        try:
            self.state_manager.begin(
                ProcessingStep.EXPANDING_PROMPT,
                MSG_REMOVING_BG if remove_bg else MSG_PREPARING,
            )
        except StateTransitionError:
            current = self.state_manager.step
            logger.warning(f"⚠️ 当前状态 {current.value}，已有任务在进行，忽略本次生成请求")
            return BatchResult(images=[], requested=len(preset_ids), skipped=[], final_step=current)

        total = len(preset_ids)
        produced: List[GeneratedImage] = []
        skipped: List[str] = []
        self.original_image = image
        self.last_error = None

        logger.info(f"开始生成: {total} 个场景, 去背景={remove_bg}")

        try:
            image_to_process = image
            if remove_bg:
                image_to_process = self.background_remover(background_source or image)
            self.processed_image = image_to_process

            completed = 0
            for preset_id in preset_ids:
                preset = self.presets.find(preset_id)
                if preset is None:
                    logger.debug(f"预设不存在，跳过: {preset_id}")
                    skipped.append(preset_id)
                    continue

                completed += 1
                name = preset.name

                self.state_manager.transition(ProcessingStep.EXPANDING_PROMPT, f'[{completed}/{total}] Designing "{name}" scene...')
                expanded_prompt = self.factory.expand_prompt(preset.description, EXPANSION_PROVIDER, custom_context)
                logger.debug(f"扩展后的 prompt ({name}): {expanded_prompt}")

                self.state_manager.transition(ProcessingStep.GENERATING_IMAGE, f'[{completed}/{total}] Rendering "{name}"...')
                image_url = self.factory.generate_product_scene(
                    image_to_process,
                    expanded_prompt,
                    IMAGE_PROVIDER,
                    ImageGenerationOptions(quality=preset.quality),
                )

                record = GeneratedImage(
                    id=new_id(),
                    url=image_url,
                    prompt=expanded_prompt,
                    vibe=name,
                    timestamp=now_ms(),
                )
                self.results.add(record)
                produced.append(record)
                logger.info(f"✅ [{completed}/{total}] {name} 生成完成")

            self.state_manager.transition(ProcessingStep.COMPLETED, MSG_COMPLETED)
            self.state_manager.schedule_reset()
            return BatchResult(
                images=produced,
                requested=total,
                skipped=skipped,
                final_step=ProcessingStep.COMPLETED,
            )

        except Exception as e:
            self.last_error = e
            logger.exception(f"❌ 批量生成失败: {e}")
            self.state_manager.transition(ProcessingStep.ERROR, MSG_GENERATE_FAILED)
            return BatchResult(
                images=produced,
                requested=total,
                skipped=skipped,
                final_step=ProcessingStep.ERROR,
                error=str(e),
            )

    def recommend(self, image: Optional[str]) -> List[str]:
        """
        根据产品图推荐场景，结果替换推荐预设列表

        Returns:
            推荐的场景描述，未执行或失败时为空列表
        """
        if not image:
            return []
        try:
            self.state_manager.begin(ProcessingStep.ANALYZING_IMAGE, MSG_ANALYZING)
        except StateTransitionError:
            logger.warning("⚠️ 已有任务在进行，忽略推荐请求")
            return []

        self.last_error = None
        try:
            descriptions = self.factory.recommend_scenarios(image, RECOMMEND_PROVIDER)
            self.presets.replace_recommendations(descriptions)
        except Exception as e:
            self.last_error = e
            logger.exception(f"❌ 推荐场景失败: {e}")
            self.state_manager.transition(ProcessingStep.ERROR, MSG_RECOMMEND_FAILED)
            return []

        logger.info(f"💡 获得 {len(descriptions)} 个推荐场景")
        self.state_manager.transition(ProcessingStep.IDLE, "")
        return descriptions

    def edit(self, image_id: str, mask_base64: str, prompt: str) -> GeneratedImage:
        """
        对已生成的图片做局部重绘，结果加入列表最前面

        Raises:
            GeneratorError: 结果不存在或编辑失败
            StateTransitionError: 已有任务在进行
        """
        source = self.results.get(image_id)
        if source is None:
            raise GeneratorError(f"结果不存在: {image_id}")

        # 已有任务在进行时 begin 抛出 StateTransitionError
        self.state_manager.begin(ProcessingStep.GENERATING_IMAGE, f'Editing "{source.vibe}"...')
        self.last_error = None
        try:
            edited_url = self.factory.edit_image(source.url, mask_base64, prompt, IMAGE_PROVIDER)
        except Exception as e:
            self.last_error = e
            logger.error(f"❌ 编辑失败: {e}")
            self.state_manager.transition(ProcessingStep.ERROR, f"Failed to process edit request: {e}")
            raise

        record = GeneratedImage(
            id=new_id(),
            url=edited_url,
            prompt=f"[Edit] {prompt}",
            vibe=f"{source.vibe} (Edited)",
            timestamp=now_ms(),
        )
        self.results.add(record)
        self.state_manager.transition(ProcessingStep.IDLE, "")
        return record
