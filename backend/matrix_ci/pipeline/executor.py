"""
流水线执行器 - 编排一次触发事件下的全部矩阵条目

职责：
1. 分支白名单过滤（不在白名单中则不创建任何运行）
2. 每个条目独立执行：数据库供给 → 步骤编排 → 结论分类 → 成功后动作
3. 条目之间互不影响（单个条目异常只计为该条目失败）
4. 汇总结论、发送通知、生成报告

测试要点：
- test_branch_filter: 非白名单分支不产生运行
- test_one_run_per_entry: 白名单分支每个条目恰好一个运行
- test_allow_failure_does_not_flip_aggregate: allow_failure 条目不影响汇总
- test_database_released_on_failure: 所有退出路径释放数据库
"""

from __future__ import annotations

import logging
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import AbstractContextManager, nullcontext
from datetime import datetime
from typing import Any

from ..config import PipelineDefinition, RuntimeConfig, get_config
from ..interfaces import (
    ConfigError,
    EntryFailure,
    IBuildReporter,
    IDatabaseProvisioner,
    INotifyTransport,
    ISecretStore,
    IStatusStore,
    IStepRunner,
    ProvisionError,
)
from ..models import (
    BuildResult,
    DatabaseHandle,
    LifecycleEvent,
    PackageOutcome,
    PipelineRun,
    StepKind,
    StepResult,
    StepStatus,
    TriggerEvent,
)
from ..notify import JsonStatusStore, Notifier, WebhookTransport
from ..tooling import BuildTool, CommandDatabaseProvisioner, EnvSecretStore, database_scope
from .classifier import OutcomeClassifier
from .dispatcher import PostPipelineDispatcher
from .environment import EnvironmentSelector
from .matrix import MatrixExpander
from .report import BuildReporter
from .run_manager import RunManager
from .sequencer import EntryContext, StepSequencer

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]")
_DB_NAME_PLACEHOLDERS = ("{channel}", "{index}")


class PipelineExecutor:
    """流水线执行器"""

    def __init__(
        self,
        definition: PipelineDefinition,
        config: RuntimeConfig | None = None,
        *,
        runner: IStepRunner | None = None,
        secret_store: ISecretStore | None = None,
        provisioner: IDatabaseProvisioner | None = None,
        transport: INotifyTransport | None = None,
        status_store: IStatusStore | None = None,
        run_manager: RunManager | None = None,
        reporter: IBuildReporter | None = None,
    ):
        self.definition = definition
        self.config = config or get_config()

        # 矩阵在任何条目运行前展开，配置错误在此抛出 ConfigError
        expander = MatrixExpander.from_definition(definition)
        self.entries = expander.expand()
        self.publishing_channel = expander.publishing()
        self._check_database_isolation()

        self.runner = runner or BuildTool(
            definition.tool.command,
            feature_separator=definition.tool.feature_separator,
            timeout=self.config.timeouts.step_sec,
        )
        self.selector = EnvironmentSelector()
        self.sequencer = StepSequencer(
            self.runner,
            selector=self.selector,
            secret_store=secret_store or EnvSecretStore(self.config.secrets.env_prefix),
            secrets=definition.secret_refs(),
        )
        self.classifier = OutcomeClassifier()
        self.dispatcher = PostPipelineDispatcher(
            self.publishing_channel,
            definition.after_success,
            definition,
            self.sequencer,
        )
        self.provisioner = provisioner or self._default_provisioner()
        self.notifier = Notifier(
            definition.notification_policy(),
            definition.webhook_urls(),
            transport or WebhookTransport(timeout=self.config.timeouts.webhook_sec),
            status_store or JsonStatusStore(self.config.state_file),
            publishing_channel=self.publishing_channel.identifier,
        )
        self.run_manager = run_manager or RunManager(self.config)
        self.reporter = reporter or BuildReporter(self.config)

    def _check_database_isolation(self) -> None:
        """并行执行条目时，每个条目的数据库名必须不同"""
        db = self.definition.database
        if db is None or self.config.concurrency.max_workers <= 1:
            return
        if not any(p in db.name for p in _DB_NAME_PLACEHOLDERS):
            raise ConfigError(
                f"concurrency.max_workers={self.config.concurrency.max_workers} 时 "
                f"database.name 必须包含 {{channel}} 或 {{index}}: {db.name!r}"
            )

    def _default_provisioner(self) -> IDatabaseProvisioner | None:
        db = self.definition.database
        if db is None:
            return None
        return CommandDatabaseProvisioner(
            url_template=db.url,
            provision_cmd=db.provision,
            release_cmd=db.release,
            url_env=db.url_env,
            timeout=self.config.timeouts.provision_sec,
        )

    def trigger(self, event: TriggerEvent) -> BuildResult | None:
        """处理一次触发事件；非白名单分支返回 None"""
        if not self.definition.branch_allowed(event.branch):
            logger.info(f"分支 {event.branch!r} 不在白名单中，忽略 {event.event_type}")
            return None

        build = BuildResult(
            build_id=uuid.uuid4().hex[:12],
            branch=event.branch,
            commit=event.commit,
        )
        build.runs = [
            self.run_manager.create_run(build.build_id, event.branch, entry, commit=event.commit)
            for entry in self.entries
        ]
        logger.info(f"[{build.build_id}] 构建开始: {event.branch} ({len(build.runs)} 个条目)")

        baseline = self.notifier.read_baseline(event.branch)
        self.notifier.notify(LifecycleEvent.START, build, baseline)

        workers = max(1, self.config.concurrency.max_workers)
        if workers > 1 and len(build.runs) > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="matrix-entry") as pool:
                list(pool.map(self._drive_entry, build.runs))
        else:
            for run in build.runs:
                self._drive_entry(run)

        build.verdict = self.classifier.aggregate(build.runs)
        build.finished_at = datetime.now()
        logger.info(f"[{build.build_id}] 构建结束: {build.verdict.value}")

        self.notifier.finish(build, baseline)
        self.reporter.write(build)

        for run in build.runs:
            self.run_manager.discard_run(run.run_id)
        return build

    def cancel(self, run_id: str) -> bool:
        """取消单个条目"""
        return self.run_manager.cancel_run(run_id)

    def _drive_entry(self, run: PipelineRun) -> PipelineRun:
        """独立执行一个条目"""
        run.mark_running()
        self.run_manager.update_run(run)
        logger.info(f"[{run.run_id}] 条目开始: {run.entry.label}")

        context = EntryContext(
            entry=run.entry,
            workspace=self.config.workspace_dir,
            env=self.selector.build_environment(run.entry, self.definition.env.global_),
            cancel_event=self.run_manager.cancel_event(run.run_id),
            run_id=run.run_id,
        )

        try:
            with self._database(run) as handle:
                context.database = handle
                try:
                    run.packages = self.sequencer.run_entry(context, self.definition.packages)
                except EntryFailure as e:
                    run.packages = e.outcomes
                    logger.warning(f"[{run.run_id}] 条目失败: {e}")

                run.cancelled = run.cancelled or context.cancelled
                run.mark_finished(self.classifier.classify(run))
                self.dispatcher.dispatch(run, context)

        except ProvisionError as e:
            logger.error(f"[{run.run_id}] 数据库供给失败: {e}")
            run.packages.append(
                PackageOutcome(
                    package="database",
                    aborted=True,
                    results=[
                        StepResult(
                            package="database",
                            step_name="provision-database",
                            status=StepStatus.ERRORED,
                            error=str(e),
                            allow_failure_context=run.entry.allow_failure,
                        )
                    ],
                )
            )
        except Exception as e:
            logger.exception(f"[{run.run_id}] 条目执行异常")
            run.add_error(str(e))
        finally:
            if run.verdict is None:
                run.mark_finished(self.classifier.classify(run))
            self.run_manager.update_run(run)
            logger.info(f"[{run.run_id}] 条目结论: {run.verdict.value if run.verdict else None}")

        return run

    def _database(self, run: PipelineRun) -> AbstractContextManager[DatabaseHandle | None]:
        """条目级数据库作用域（未配置时为空）"""
        db = self.definition.database
        if db is None or self.provisioner is None:
            return nullcontext(None)
        name = db.name.format(
            channel=_UNSAFE_NAME_CHARS.sub("_", run.entry.channel.identifier),
            index=run.entry.index,
            build_id=run.build_id,
        )
        return database_scope(self.provisioner, name)

    def plan(self) -> list[dict[str, Any]]:
        """不执行任何步骤，列出每个条目将要调用的命令"""
        rows: list[dict[str, Any]] = []
        for entry in self.entries:
            for package in self.definition.packages:
                for step in package.steps:
                    feature_args: list[str] = []
                    if step.kind == StepKind.TEST:
                        feature_args = self.selector.select(entry, package).to_args()
                    rows.append({
                        "channel": entry.channel.identifier,
                        "allow_failure": entry.allow_failure,
                        "package": package.name,
                        "step": step.name,
                        "feature_args": feature_args,
                    })
            if entry.channel.identifier == self.publishing_channel.identifier:
                for action in self.definition.after_success:
                    rows.append({
                        "channel": entry.channel.identifier,
                        "allow_failure": entry.allow_failure,
                        "package": action.package,
                        "step": f"after_success:{action.name}",
                        "feature_args": [],
                    })
        return rows
