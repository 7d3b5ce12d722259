"""
数据模型层 - 定义系统核心数据结构

所有模块通过这些模型交互，实现解耦：
- ToolchainChannel / MatrixEntry: 工具链矩阵
- Package / StepSpec / FeatureSet: 包与步骤
- PipelineRun / StepResult / BuildResult: 运行与结果
- NotificationPolicy: 通知策略
"""

from .channel import ChannelKind, ToolchainChannel
from .notification import (
    DeliveryRule,
    LifecycleEvent,
    NotificationPolicy,
    NotificationRecord,
)
from .package import FeatureSet, Package, PackageFeatures, StepInvocation, StepKind, StepSpec
from .resources import DatabaseHandle, SecretRef
from .run import (
    BuildResult,
    MatrixEntry,
    PackageOutcome,
    PipelineRun,
    RunState,
    StepResult,
    StepStatus,
    TriggerEvent,
    Verdict,
)

__all__ = [
    "ChannelKind",
    "ToolchainChannel",
    "MatrixEntry",
    "FeatureSet",
    "PackageFeatures",
    "Package",
    "StepKind",
    "StepSpec",
    "StepInvocation",
    "SecretRef",
    "DatabaseHandle",
    "StepResult",
    "StepStatus",
    "PackageOutcome",
    "PipelineRun",
    "RunState",
    "BuildResult",
    "TriggerEvent",
    "Verdict",
    "DeliveryRule",
    "LifecycleEvent",
    "NotificationPolicy",
    "NotificationRecord",
]
