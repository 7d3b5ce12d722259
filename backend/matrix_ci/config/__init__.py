"""
配置层 - 加载流水线定义与运行期配置

职责：
- 加载 config/pipeline.yaml（矩阵/分支/包/动作/通知）
- 加载 config/runtime.yaml（并发/超时/路径/日志）
- 提供类型安全的配置访问接口
"""

from .pipeline_loader import (
    ActionSpec,
    DatabaseSection,
    PipelineDefinition,
    PipelineLoader,
    load_pipeline,
    parse_definition,
)
from .runtime_config import RuntimeConfig, get_config, reload_config

__all__ = [
    "PipelineLoader",
    "PipelineDefinition",
    "ActionSpec",
    "DatabaseSection",
    "load_pipeline",
    "parse_definition",
    "RuntimeConfig",
    "get_config",
    "reload_config",
]
