"""
运行管理器 - 运行创建/查询/更新/取消

职责：
1. 为每个 (触发事件, 矩阵条目) 创建运行并分配ID
2. 运行状态持久化
3. 取消单个运行（不影响其他条目）
4. 结论确定后从内存移除

测试要点：
- test_create_run: 创建运行
- test_get_run: 获取运行（含磁盘回读）
- test_cancel_run: 取消运行
- test_discard_run: 移除运行
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

from ..config import RuntimeConfig, get_config
from ..interfaces import IRunManager
from ..models import MatrixEntry, PipelineRun, RunState, Verdict

logger = logging.getLogger(__name__)


class RunManager(IRunManager):
    """运行管理器实现"""

    def __init__(self, config: RuntimeConfig | None = None, persist: bool = True):
        self.config = config or get_config()
        self.persist = persist
        self._runs: dict[str, PipelineRun] = {}  # 内存缓存（进行中的运行）
        self._cancel_events: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def create_run(
        self,
        build_id: str,
        branch: str,
        entry: MatrixEntry,
        commit: str | None = None,
    ) -> PipelineRun:
        """创建运行"""
        run = PipelineRun(
            run_id=f"{build_id}.{entry.index}",
            build_id=build_id,
            branch=branch,
            commit=commit,
            entry=entry,
        )

        with self._lock:
            self._runs[run.run_id] = run
            self._cancel_events[run.run_id] = threading.Event()

        self._persist_run(run)
        return run

    def get_run(self, run_id: str) -> PipelineRun | None:
        """获取运行"""
        with self._lock:
            if run_id in self._runs:
                return self._runs[run_id]

        # 尝试从磁盘加载
        return self._load_run(run_id)

    def update_run(self, run: PipelineRun) -> None:
        """更新运行状态"""
        with self._lock:
            if run.run_id in self._runs:
                self._runs[run.run_id] = run
        self._persist_run(run)

    def cancel_run(self, run_id: str) -> bool:
        """取消运行（只对进行中的运行生效）"""
        with self._lock:
            run = self._runs.get(run_id)
            event = self._cancel_events.get(run_id)
        if run is None or event is None:
            return False

        if run.state in (RunState.CREATED, RunState.RUNNING):
            event.set()
            run.cancelled = True
            logger.info(f"[{run_id}] 已请求取消")
            return True

        return False

    def cancel_event(self, run_id: str) -> threading.Event:
        """运行的取消信号"""
        with self._lock:
            return self._cancel_events.setdefault(run_id, threading.Event())

    def discard_run(self, run_id: str) -> None:
        """结论与通知完成后移除运行"""
        with self._lock:
            self._runs.pop(run_id, None)
            self._cancel_events.pop(run_id, None)

    def list_runs(
        self,
        build_id: str | None = None,
        verdict: Verdict | None = None,
        limit: int = 100,
    ) -> list[PipelineRun]:
        """列出进行中的运行"""
        with self._lock:
            runs = list(self._runs.values())

        if build_id:
            runs = [r for r in runs if r.build_id == build_id]
        if verdict:
            runs = [r for r in runs if r.verdict == verdict]

        runs.sort(key=lambda r: (r.created_at, r.entry.index))
        return runs[:limit]

    def _persist_run(self, run: PipelineRun) -> None:
        """持久化运行"""
        if not self.persist:
            return
        run_dir = self.config.get_run_dir(run.build_id, run.run_id)
        run_dir.mkdir(parents=True, exist_ok=True)

        run_file = run_dir / "run.json"
        with open(run_file, "w", encoding="utf-8") as f:
            json.dump(run.model_dump(mode="json"), f, ensure_ascii=False, indent=2, default=str)

    def _load_run(self, run_id: str) -> PipelineRun | None:
        """从磁盘加载运行"""
        build_id = run_id.rsplit(".", 1)[0]
        run_file = self.config.get_run_dir(build_id, run_id) / "run.json"

        if not run_file.exists():
            return None

        try:
            with open(run_file, "r", encoding="utf-8") as f:
                data: dict[str, Any] = json.load(f)
            return PipelineRun(**data)
        except (OSError, ValueError) as e:
            logger.warning(f"运行记录读取失败: {run_file}: {e}")
            return None
