"""
运行模型 - 矩阵条目、步骤结果与运行生命周期

一次触发事件对每个矩阵条目创建一个 PipelineRun，
全部条目的结果汇总为 BuildResult。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .channel import ToolchainChannel
from .notification import NotificationRecord


class MatrixEntry(BaseModel):
    """矩阵条目"""
    channel: ToolchainChannel
    allow_failure: bool = False
    index: int = Field(1, description="声明顺序（从1开始）")

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        suffix = " (allow_failure)" if self.allow_failure else ""
        return f"{self.channel.identifier}{suffix}"


class Verdict(str, Enum):
    """条目/流水线结论"""
    PASS = "PASS"
    FAIL = "FAIL"
    ALLOWED_FAIL = "ALLOWED_FAIL"


class StepStatus(str, Enum):
    """步骤状态"""
    PASSED = "passed"
    FAILED = "failed"      # 非零退出码
    ERRORED = "errored"    # 无法启动/超时/密钥解析失败
    SKIPPED = "skipped"    # 被短路


class StepResult(BaseModel):
    """单个步骤的结果"""
    package: str
    step_name: str
    exit_status: int | None = None
    status: StepStatus = StepStatus.SKIPPED
    allow_failure_context: bool = False
    error: str | None = None
    duration_sec: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.PASSED

    @property
    def failed(self) -> bool:
        return self.status in (StepStatus.FAILED, StepStatus.ERRORED)


class PackageOutcome(BaseModel):
    """单个包在一个条目内的结果"""
    package: str
    results: list[StepResult] = Field(default_factory=list)
    aborted: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.aborted and all(r.succeeded for r in self.results)


class RunState(str, Enum):
    """运行状态"""
    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class PipelineRun(BaseModel):
    """一个矩阵条目的一次运行"""
    run_id: str = Field(..., description="<build_id>.<entry index>")
    build_id: str
    branch: str
    commit: str | None = None
    entry: MatrixEntry

    state: RunState = RunState.CREATED
    packages: list[PackageOutcome] = Field(default_factory=list)
    actions: list[StepResult] = Field(default_factory=list, description="成功后动作")
    verdict: Verdict | None = None
    cancelled: bool = False
    errors: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def mark_running(self) -> None:
        """标记为运行中"""
        self.state = RunState.RUNNING
        self.started_at = datetime.now()

    def mark_finished(self, verdict: Verdict) -> None:
        """标记结论"""
        self.verdict = verdict
        self.state = RunState.CANCELLED if self.cancelled else RunState.FINISHED
        self.finished_at = datetime.now()

    def add_error(self, error: str) -> None:
        if error not in self.errors:
            self.errors.append(error)

    def iter_results(self) -> list[StepResult]:
        """按包声明顺序遍历全部步骤结果"""
        return [r for outcome in self.packages for r in outcome.results]


class TriggerEvent(BaseModel):
    """触发事件（push 等）"""
    branch: str
    commit: str | None = None
    event_type: str = "push"


class BuildResult(BaseModel):
    """一次触发事件的汇总结果"""
    build_id: str
    branch: str
    commit: str | None = None
    runs: list[PipelineRun] = Field(default_factory=list)
    verdict: Verdict | None = None
    notifications: list[NotificationRecord] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def passed(self) -> bool:
        return self.verdict == Verdict.PASS
