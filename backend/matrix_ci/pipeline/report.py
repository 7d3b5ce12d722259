"""
构建报告 - 生成 report.json

职责：
1. 汇总触发事件、各条目结论、步骤与动作结果
2. 记录通知判定与时间戳

测试要点：
- test_report_structure: 报告结构
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..config import RuntimeConfig, get_config
from ..models import BuildResult, PipelineRun

REPORT_SCHEMA_VERSION = "1.0"


class BuildReporter:
    """构建报告生成器"""

    def __init__(self, config: RuntimeConfig | None = None):
        self.config = config or get_config()

    def build_report(self, build: BuildResult) -> dict[str, Any]:
        return {
            "schema_version": REPORT_SCHEMA_VERSION,
            "build_id": build.build_id,
            "branch": build.branch,
            "commit": build.commit,
            "verdict": build.verdict.value if build.verdict else None,

            "entries": [self._entry(run) for run in build.runs],

            "notifications": [n.model_dump(mode="json") for n in build.notifications],

            "timestamps": {
                "created_at": build.created_at.isoformat() if build.created_at else None,
                "finished_at": build.finished_at.isoformat() if build.finished_at else None,
            },
        }

    @staticmethod
    def _entry(run: PipelineRun) -> dict[str, Any]:
        return {
            "run_id": run.run_id,
            "channel": run.entry.channel.identifier,
            "allow_failure": run.entry.allow_failure,
            "verdict": run.verdict.value if run.verdict else None,
            "cancelled": run.cancelled,
            "errors": run.errors,
            "packages": [
                {
                    "package": outcome.package,
                    "aborted": outcome.aborted,
                    "steps": [r.model_dump(mode="json") for r in outcome.results],
                }
                for outcome in run.packages
            ],
            "actions": [r.model_dump(mode="json") for r in run.actions],
            "started_at": run.started_at.isoformat() if run.started_at else None,
            "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        }

    def write(self, build: BuildResult) -> Path:
        """写出 report.json"""
        build_dir = self.config.get_build_dir(build.build_id)
        build_dir.mkdir(parents=True, exist_ok=True)

        report_path = build_dir / "report.json"
        with open(report_path, "w", encoding="utf-8") as f:
            json.dump(self.build_report(build), f, ensure_ascii=False, indent=2)

        return report_path
