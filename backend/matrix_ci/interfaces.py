"""
模块接口契约 - 定义核心与外部协作方之间的抽象接口

设计原则：
1. 核心编排逻辑只依赖接口，不直接依赖子进程/HTTP/文件等具体实现
2. 每个接口定义清晰的输入输出类型
3. 便于单元测试和mock替换

使用方式：
    from matrix_ci.interfaces import IStepRunner

    class FakeRunner(IStepRunner):
        def run(self, invocation: StepInvocation) -> int:
            return 0
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from pydantic import SecretStr

    from .models import (
        BuildResult,
        DatabaseHandle,
        PipelineRun,
        SecretRef,
        StepInvocation,
    )


# ============================================================================
# 外部工具接口
# ============================================================================

class IStepRunner(ABC):
    """构建/测试工具接口 - 以子进程方式执行单个步骤"""

    @abstractmethod
    def run(self, invocation: StepInvocation) -> int:
        """
        执行一次工具调用

        Args:
            invocation: 子命令、工作目录、特性参数与环境变量

        Returns:
            进程退出码（0 表示成功）

        Raises:
            StepFailure: 工具无法启动或超时
        """
        ...


class ISecretStore(ABC):
    """密钥存储接口 - 解析不透明的加密引用"""

    @abstractmethod
    def resolve(self, ref: SecretRef) -> SecretStr:
        """
        解析密钥引用

        Raises:
            SecretResolutionError: 引用无法解析
        """
        ...


class IDatabaseProvisioner(ABC):
    """数据库供给接口 - 每个矩阵条目独立申请/释放"""

    @abstractmethod
    def provision(self, name: str) -> DatabaseHandle:
        """
        创建数据库实例

        Raises:
            ProvisionError: 创建失败
        """
        ...

    @abstractmethod
    def release(self, handle: DatabaseHandle) -> None:
        """释放数据库实例（失败只记录日志）"""
        ...


class INotifyTransport(ABC):
    """通知投递接口 - 向 webhook 端点发送事件"""

    @abstractmethod
    def deliver(self, url: str, payload: dict[str, Any]) -> None:
        """
        投递一次通知

        Raises:
            DeliveryError: 投递失败（不重试）
        """
        ...


class IStatusStore(ABC):
    """上一次运行状态的持久化接口（按分支）"""

    @abstractmethod
    def read(self, branch: str) -> str | None:
        """读取分支最近一次的最终状态，首次运行返回 None"""
        ...

    @abstractmethod
    def write(self, branch: str, status: str) -> None:
        """写入分支本次的最终状态"""
        ...


# ============================================================================
# 流水线与运行管理接口
# ============================================================================

class IRunManager(ABC):
    """运行管理器接口"""

    @abstractmethod
    def create_run(self, build_id: str, branch: str, entry: Any, **kwargs: Any) -> PipelineRun:
        """创建运行"""
        ...

    @abstractmethod
    def get_run(self, run_id: str) -> PipelineRun | None:
        """获取运行"""
        ...

    @abstractmethod
    def update_run(self, run: PipelineRun) -> None:
        """更新并持久化运行"""
        ...

    @abstractmethod
    def cancel_run(self, run_id: str) -> bool:
        """取消运行"""
        ...


class IBuildReporter(Protocol):
    """构建报告协议"""

    def write(self, build: BuildResult) -> Any:
        """写出构建报告"""
        ...


# ============================================================================
# 异常定义
# ============================================================================

class MatrixCIError(Exception):
    """基础异常"""
    pass


class ConfigError(MatrixCIError):
    """配置错误（矩阵/分支列表/通知策略格式不正确），在任何条目运行前致命"""
    pass


class StepFailure(MatrixCIError):
    """步骤失败（非零退出码），中止同一条目内的后续步骤"""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class EntryFailure(MatrixCIError):
    """条目失败，携带短路前已产生的包结果"""

    def __init__(self, message: str, outcomes: list[Any] | None = None):
        super().__init__(message)
        self.outcomes = outcomes or []


class SecretResolutionError(MatrixCIError):
    """密钥解析失败，仅对依赖该密钥的步骤致命"""
    pass


class ProvisionError(MatrixCIError):
    """数据库供给失败"""
    pass


class DeliveryError(MatrixCIError):
    """通知投递失败（只记录，不重试）"""
    pass
