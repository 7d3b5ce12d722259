"""
步骤编排 - 在一个矩阵条目内按顺序执行各包的步骤

职责：
1. 严格按声明顺序执行包与步骤（同步阻塞，不并发）
2. 首个失败步骤中止该包剩余步骤以及条目内的后续包（短路与）
3. test 步骤按条目通道选择特性集
4. 仅为声明了密钥的步骤解析密钥
5. 不做任何重试

测试要点：
- test_short_circuit_within_package: [build(fail), doc, test] 仅执行 build
- test_short_circuit_across_packages: 失败终止后续包
- test_feature_args_per_channel: 特性参数按通道选择
- test_secret_failure_only_affects_dependent_step: 密钥失败隔离
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from ..interfaces import (
    EntryFailure,
    ISecretStore,
    IStepRunner,
    SecretResolutionError,
    StepFailure,
)
from ..models import (
    DatabaseHandle,
    MatrixEntry,
    Package,
    PackageOutcome,
    SecretRef,
    StepInvocation,
    StepKind,
    StepResult,
    StepSpec,
    StepStatus,
)
from ..tooling.secrets import resolve_secrets
from .environment import EnvironmentSelector

logger = logging.getLogger(__name__)


@dataclass
class EntryContext:
    """单个条目的执行上下文（显式传入每个步骤）"""
    entry: MatrixEntry
    workspace: Path
    env: dict[str, str] = field(default_factory=dict)
    database: DatabaseHandle | None = None
    cancel_event: threading.Event | None = None
    run_id: str = ""

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def step_env(self) -> dict[str, str]:
        env = dict(self.env)
        if self.database is not None:
            env.update(self.database.as_env())
        return env


class StepSequencer:
    """步骤编排器"""

    def __init__(
        self,
        runner: IStepRunner,
        selector: EnvironmentSelector | None = None,
        secret_store: ISecretStore | None = None,
        secrets: Mapping[str, SecretRef] | None = None,
    ):
        self.runner = runner
        self.selector = selector or EnvironmentSelector()
        self.secret_store = secret_store
        self.secrets = dict(secrets or {})

    def run_entry(self, context: EntryContext, packages: list[Package]) -> list[PackageOutcome]:
        """
        执行条目内的全部包

        Returns:
            按声明顺序的包结果（全部成功时）

        Raises:
            EntryFailure: 任一步骤失败或条目被取消，携带已产生的全部包结果
        """
        outcomes: list[PackageOutcome] = []
        failure: StepFailure | None = None

        for package in packages:
            outcome = PackageOutcome(package=package.name)
            outcomes.append(outcome)

            if failure is not None:
                outcome.aborted = True
                outcome.results = [self._skipped(package.name, s.name, context) for s in package.steps]
                continue

            try:
                self._run_package(package, outcome, context)
            except StepFailure as e:
                logger.warning(f"[{context.run_id}] 包 {package.name} 中止: {e}")
                outcome.aborted = True
                failure = e

        if failure is not None:
            raise EntryFailure(str(failure), outcomes)
        return outcomes

    def _run_package(self, package: Package, outcome: PackageOutcome, context: EntryContext) -> None:
        steps = package.steps
        for i, step in enumerate(steps):
            if context.cancelled:
                outcome.results.extend(self._skipped(package.name, s.name, context) for s in steps[i:])
                raise StepFailure(f"条目已取消（{package.name}.{step.name} 之前）")

            result = self.run_step(package, step, context)
            outcome.results.append(result)

            if result.failed:
                outcome.results.extend(self._skipped(package.name, s.name, context) for s in steps[i + 1:])
                raise StepFailure(
                    f"{package.name}.{step.name} 失败 (exit={result.exit_status}, {result.error or ''})",
                    result,
                )

    def run_step(self, package: Package, step: StepSpec, context: EntryContext) -> StepResult:
        """执行单个包步骤"""
        feature_args: list[str] = []
        if step.kind == StepKind.TEST:
            feature_args = self.selector.select(context.entry, package).to_args()

        return self.invoke(
            package=package.name,
            step_name=step.name,
            subcommand=step.kind.value,
            working_dir=package.working_dir(context.workspace),
            feature_args=feature_args,
            secret_names=step.secrets,
            context=context,
        )

    def invoke(
        self,
        *,
        package: str,
        step_name: str,
        subcommand: str,
        working_dir: Path,
        feature_args: list[str],
        secret_names: list[str],
        context: EntryContext,
    ) -> StepResult:
        """调用外部工具并将结果映射为 StepResult（不抛出）"""
        result = StepResult(
            package=package,
            step_name=step_name,
            allow_failure_context=context.entry.allow_failure,
        )
        started = time.monotonic()

        env = context.step_env()
        try:
            if secret_names:
                if self.secret_store is None:
                    raise SecretResolutionError(f"未配置密钥存储，无法解析 {secret_names}")
                env.update(resolve_secrets(self.secret_store, self.secrets, secret_names))

            invocation = StepInvocation(
                subcommand=subcommand,
                working_dir=working_dir,
                feature_args=feature_args,
                env=env,
            )
            logger.info(f"[{context.run_id}] {package}.{step_name} 开始 {feature_args or ''}")
            exit_status = self.runner.run(invocation)
        except (SecretResolutionError, StepFailure) as e:
            result.status = StepStatus.ERRORED
            result.error = str(e)
            logger.error(f"[{context.run_id}] {package}.{step_name} 无法执行: {e}")
        else:
            result.exit_status = exit_status
            result.status = StepStatus.PASSED if exit_status == 0 else StepStatus.FAILED
            logger.info(f"[{context.run_id}] {package}.{step_name} 结束 exit={exit_status}")

        result.duration_sec = round(time.monotonic() - started, 3)
        return result

    @staticmethod
    def _skipped(package: str, step_name: str, context: EntryContext) -> StepResult:
        return StepResult(
            package=package,
            step_name=step_name,
            status=StepStatus.SKIPPED,
            allow_failure_context=context.entry.allow_failure,
        )
