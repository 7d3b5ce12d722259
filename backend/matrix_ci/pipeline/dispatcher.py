"""
成功后动作分发 - 仅在发布通道且该条目自身 PASS 时执行

职责：
1. 判定：channel == 发布通道 且 run.verdict == PASS（与汇总结论无关）
2. 依次执行 after_success 动作（如 doc-upload），复用步骤编排的调用逻辑
3. 动作失败只记录，不改变任何结论

测试要点：
- test_fires_on_publishing_pass: 发布通道 PASS 触发
- test_not_fired_for_other_channel: 其他通道即使 PASS 也不触发
- test_not_fired_when_publishing_fails: 发布通道失败不触发
"""

from __future__ import annotations

import logging

from ..config import ActionSpec, PipelineDefinition
from ..models import PipelineRun, StepResult, ToolchainChannel, Verdict
from .sequencer import EntryContext, StepSequencer

logger = logging.getLogger(__name__)


class PostPipelineDispatcher:
    """成功后动作分发器"""

    def __init__(
        self,
        publishing_channel: ToolchainChannel,
        actions: list[ActionSpec],
        definition: PipelineDefinition,
        sequencer: StepSequencer,
    ):
        self.publishing_channel = publishing_channel
        self.actions = list(actions)
        self.definition = definition
        self.sequencer = sequencer

    def should_fire(self, run: PipelineRun) -> bool:
        return (
            run.entry.channel.identifier == self.publishing_channel.identifier
            and run.verdict == Verdict.PASS
        )

    def dispatch(self, run: PipelineRun, context: EntryContext) -> list[StepResult]:
        """执行成功后动作，返回动作结果"""
        if not self.should_fire(run):
            logger.debug(f"[{run.run_id}] 跳过成功后动作 ({run.entry.label}, {run.verdict})")
            return []

        results: list[StepResult] = []
        for action in self.actions:
            package = self.definition.get_package(action.package)
            if package is None:
                logger.error(f"[{run.run_id}] 动作 {action.name} 的包不存在: {action.package}")
                continue

            result = self.sequencer.invoke(
                package=package.name,
                step_name=action.name,
                subcommand=action.subcommand,
                working_dir=package.working_dir(context.workspace),
                feature_args=[],
                secret_names=action.secrets,
                context=context,
            )
            if result.failed:
                logger.error(f"[{run.run_id}] 成功后动作失败: {action.name}: {result.error or result.exit_status}")
            results.append(result)

        run.actions.extend(results)
        return results
