"""
流水线模块 - 矩阵编排与执行

子模块：
- matrix: 矩阵展开
- environment: 按通道选择特性集
- sequencer: 短路式步骤编排
- classifier: 条目/汇总结论
- dispatcher: 成功后动作
- executor: 流水线执行器
- run_manager: 运行管理
- report: 构建报告
"""

from .classifier import OutcomeClassifier
from .dispatcher import PostPipelineDispatcher
from .environment import EnvironmentSelector
from .executor import PipelineExecutor
from .matrix import MatrixExpander
from .report import BuildReporter
from .run_manager import RunManager
from .sequencer import EntryContext, StepSequencer

__all__ = [
    "MatrixExpander",
    "EnvironmentSelector",
    "StepSequencer",
    "EntryContext",
    "OutcomeClassifier",
    "PostPipelineDispatcher",
    "PipelineExecutor",
    "RunManager",
    "BuildReporter",
]
