"""
结论分类 - 步骤结果 + allow_failure 标记 → Verdict

条目：全部步骤成功 → PASS；否则 allow_failure → ALLOWED_FAIL；否则 FAIL。
汇总：任一条目 FAIL → FAIL；ALLOWED_FAIL 不影响汇总。
"""

from __future__ import annotations

from collections.abc import Iterable

from ..models import PipelineRun, Verdict


class OutcomeClassifier:
    """结论分类器"""

    def entry_succeeded(self, run: PipelineRun) -> bool:
        """按包声明顺序检查全部步骤"""
        if run.cancelled or run.errors:
            return False
        if any(outcome.aborted for outcome in run.packages):
            return False
        return all(result.succeeded for result in run.iter_results())

    def classify(self, run: PipelineRun) -> Verdict:
        if self.entry_succeeded(run):
            return Verdict.PASS
        if run.entry.allow_failure:
            return Verdict.ALLOWED_FAIL
        return Verdict.FAIL

    def aggregate(self, runs: Iterable[PipelineRun]) -> Verdict:
        """跨条目汇总"""
        for run in runs:
            verdict = run.verdict if run.verdict is not None else self.classify(run)
            if verdict == Verdict.FAIL:
                return Verdict.FAIL
        return Verdict.PASS
