"""
命令行入口

    matrix-ci validate --pipeline config/pipeline.yaml
    matrix-ci matrix   --pipeline config/pipeline.yaml
    matrix-ci run      --pipeline config/pipeline.yaml --branch master --commit abc123

退出码：0 通过（或分支被过滤），1 失败，2 配置错误
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .config import PipelineLoader, RuntimeConfig, reload_config
from .interfaces import ConfigError
from .models import TriggerEvent
from .pipeline import MatrixExpander, PipelineExecutor

logger = logging.getLogger("matrix_ci")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def configure_logging(config: RuntimeConfig) -> None:
    """按运行期配置初始化日志"""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.logging.log_to_file:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_dir / "matrix-ci.log", encoding="utf-8"))

    logging.basicConfig(
        level=config.logging.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matrix-ci",
        description="Toolchain matrix pipeline runner.",
    )
    parser.add_argument(
        "--runtime",
        default="config/runtime.yaml",
        help="运行期配置（默认：config/runtime.yaml）",
    )
    parser.add_argument(
        "--pipeline",
        default="",
        help="流水线定义（默认取运行期配置中的 pipeline_path）",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("validate", help="校验流水线定义与矩阵")
    sub.add_parser("matrix", help="列出每个条目将执行的步骤")

    run = sub.add_parser("run", help="处理一次触发事件")
    run.add_argument("--branch", required=True, help="触发分支")
    run.add_argument("--commit", default=None, help="提交标识")
    run.add_argument("--event", default="push", help="事件类型（默认：push）")
    run.add_argument("--workspace", default="", help="可选：覆盖工作区目录")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    config = reload_config(args.runtime)
    if getattr(args, "workspace", ""):
        config.workspace_dir = Path(args.workspace).resolve()
    configure_logging(config)

    pipeline_path = Path(args.pipeline) if args.pipeline else config.pipeline_path

    try:
        definition = PipelineLoader.load(str(pipeline_path))
        if args.command == "validate":
            entries = MatrixExpander.from_definition(definition).expand()
            print(f"OK: {len(entries)} entries, {len(definition.packages)} packages")
            return EXIT_OK

        executor = PipelineExecutor(definition, config)
    except ConfigError as e:
        logger.error(f"配置错误: {e}")
        return EXIT_CONFIG

    if args.command == "matrix":
        for row in executor.plan():
            flag = " [allow_failure]" if row["allow_failure"] else ""
            print(f"{row['channel']}{flag}\t{row['package']}\t{row['step']}\t{' '.join(row['feature_args'])}")
        return EXIT_OK

    config.ensure_dirs()
    build = executor.trigger(TriggerEvent(branch=args.branch, commit=args.commit, event_type=args.event))
    if build is None:
        print(f"branch {args.branch!r} is not in the allow-list; nothing to run")
        return EXIT_OK

    for run in build.runs:
        print(f"{run.run_id}\t{run.entry.label}\t{run.verdict.value if run.verdict else '-'}")
    print(f"build {build.build_id}: {build.verdict.value if build.verdict else '-'}")
    return EXIT_OK if build.passed else EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
