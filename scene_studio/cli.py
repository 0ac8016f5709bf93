"""
命令行接口
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from .config import ConfigManager, CredentialStore
from .engine import GenerationEngine
from .exceptions import GeneratorError
from .imaging import file_to_data_url
from .models import GeneratedImage, new_id, now_ms
from .output_manager import OutputManager, ResultStore
from .preset_store import PresetLibrary
from .service_factory import LLMServiceFactory
from .state_manager import StateManager


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None):
    """配置日志"""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stderr)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )

    # 降低第三方库的日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def create_engine(
    config_manager: ConfigManager,
    api_key: Optional[str] = None,
    output_dir: Optional[Path] = None,
) -> GenerationEngine:
    """创建生成引擎"""
    service_config = config_manager.load_service_config(api_key=api_key)
    factory = LLMServiceFactory(service_config)

    output_manager = OutputManager(base_dir=output_dir or Path("./outputs"))

    return GenerationEngine(
        factory=factory,
        presets=PresetLibrary(config_manager.load_presets()),
        results=ResultStore(output_manager),
        state_manager=StateManager(reset_delay=config_manager.get_reset_delay()),
    )


def _print_json(data: Any):
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _log_state(state):
    logging.getLogger(__name__).info(f"[{state.step.value}] {state.message}")


def cmd_generate(args, config_manager: ConfigManager) -> int:
    engine = create_engine(config_manager, api_key=args.api_key, output_dir=Path(args.output))
    engine.state_manager.add_listener(_log_state)

    image_path = Path(args.image)
    image = file_to_data_url(image_path)

    if args.recommend:
        engine.recommend(image)

    # 未指定 -p 时使用预设库的默认选择
    library = engine.presets
    if args.preset:
        library.select(args.preset)
    if args.recommend:
        library.select(library.selected_ids + [p.id for p in library.recommendations])

    result = engine.generate(
        library.selected_ids,
        image,
        custom_context=args.context or "",
        remove_bg=not args.no_remove_bg,
        background_source=image_path,
    )

    saved = [str(engine.results.download(img.id)) for img in result.images]

    output = result.to_dict()
    # data URL 太长，只输出保存路径
    for item, path in zip(output["images"], saved):
        item["url"] = path
    output["state"] = engine.state.to_dict()
    _print_json(output)
    return 0 if result.succeeded else 1


def cmd_recommend(args, config_manager: ConfigManager) -> int:
    engine = create_engine(config_manager, api_key=args.api_key)
    engine.state_manager.add_listener(_log_state)

    suggestions = engine.recommend(file_to_data_url(Path(args.image)))
    _print_json({
        "recommendations": [p.to_dict() for p in engine.presets.recommendations],
        "state": engine.state.to_dict(),
    })
    return 0 if suggestions else 1


def cmd_edit(args, config_manager: ConfigManager) -> int:
    engine = create_engine(config_manager, api_key=args.api_key, output_dir=Path(args.output))
    engine.state_manager.add_listener(_log_state)

    source = GeneratedImage(
        id=new_id(),
        url=file_to_data_url(Path(args.image)),
        prompt="",
        vibe=Path(args.image).stem,
        timestamp=now_ms(),
    )
    engine.results.add(source)

    edited = engine.edit(source.id, file_to_data_url(Path(args.mask)), args.prompt)
    path = engine.results.download(edited.id)
    _print_json({"id": edited.id, "vibe": edited.vibe, "prompt": edited.prompt, "path": str(path)})
    return 0


def cmd_presets(args, config_manager: ConfigManager) -> int:
    _print_json([p.to_dict() for p in config_manager.load_presets()])
    return 0


def cmd_key(args, config_manager: ConfigManager) -> int:
    store = config_manager.credential_store
    if args.action == "set":
        if not args.value:
            raise GeneratorError("请提供要保存的密钥")
        store.save(args.value)
    elif args.action == "clear":
        store.clear()

    key = store.load()
    masked = f"{key[:6]}...{key[-4:]}" if key and len(key) > 12 else ("***" if key else None)
    _print_json({"saved": bool(key), "key": masked, "path": str(store.path)})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scene-studio",
        description="产品场景图生成器 - 将产品图生成电商场景图",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  # 使用默认预设生成
  python -m scene_studio generate -i product.png -p minimalist

  # 先让 AI 推荐场景，再全部生成
  python -m scene_studio generate -i product.png --recommend

  # 局部重绘
  python -m scene_studio edit -i outputs/amz-gen-1.png --mask mask.png --prompt "add a plant"

  # 保存 API 密钥
  python -m scene_studio key set sk-or-xxxx
        """,
    )

    parser.add_argument("-c", "--config", help="配置文件路径 (默认: ./config.json)")
    parser.add_argument("--api-key", help="API密钥（覆盖本地保存的密钥和配置文件）")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别 (默认: INFO)",
    )
    parser.add_argument("--log-file", help="日志文件路径")

    subparsers = parser.add_subparsers(dest="command", required=True)

    gen = subparsers.add_parser("generate", help="批量生成场景图")
    gen.add_argument("-i", "--image", required=True, help="产品图路径")
    gen.add_argument("-p", "--preset", action="append", help="预设 ID，可重复指定（默认使用预设库的默认选择）")
    gen.add_argument("--recommend", action="store_true", help="先生成 AI 推荐场景并加入本次批量")
    gen.add_argument("--context", default="", help="额外上下文（如：有人物看向产品）")
    gen.add_argument("--no-remove-bg", action="store_true", help="不去除白色背景")
    gen.add_argument("-o", "--output", default="./outputs", help="输出目录 (默认: ./outputs)")
    gen.set_defaults(func=cmd_generate)

    rec = subparsers.add_parser("recommend", help="根据产品图推荐场景")
    rec.add_argument("-i", "--image", required=True, help="产品图路径")
    rec.set_defaults(func=cmd_recommend)

    edit = subparsers.add_parser("edit", help="局部重绘")
    edit.add_argument("-i", "--image", required=True, help="要编辑的图片")
    edit.add_argument("--mask", required=True, help="蒙版图片（白色区域为修改区域）")
    edit.add_argument("--prompt", required=True, help="编辑指令")
    edit.add_argument("-o", "--output", default="./outputs", help="输出目录 (默认: ./outputs)")
    edit.set_defaults(func=cmd_edit)

    presets = subparsers.add_parser("presets", help="列出预设")
    presets.set_defaults(func=cmd_presets)

    key = subparsers.add_parser("key", help="管理本地保存的 API 密钥")
    key.add_argument("action", choices=["set", "clear", "show"])
    key.add_argument("value", nargs="?", help="密钥（set 时使用）")
    key.set_defaults(func=cmd_key)

    return parser


def main(argv=None) -> int:
    """主入口"""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, log_file=Path(args.log_file) if args.log_file else None)
    logger = logging.getLogger(__name__)

    try:
        config_manager = ConfigManager(
            config_path=Path(args.config) if args.config else None,
            credential_store=CredentialStore(),
        )
        return args.func(args, config_manager)

    except GeneratorError as e:
        logger.error(f"生成错误: {e}")
        print(json.dumps({"error": str(e)}, ensure_ascii=False))
        return 1

    except Exception as e:
        logger.exception(f"未知错误: {e}")
        print(json.dumps({"error": str(e)}, ensure_ascii=False))
        return 1


if __name__ == "__main__":
    sys.exit(main())
