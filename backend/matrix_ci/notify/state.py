"""
通知状态持久化 - 记录每个分支最近一次的最终状态

change 规则的基线：同一分支上一次构建的汇总状态。
生命周期：分类前读取一次，投递后写入一次；首次运行视为变化。
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..interfaces import IStatusStore

logger = logging.getLogger(__name__)


class JsonStatusStore(IStatusStore):
    """JSON 文件存储（进程内加锁，原子替换写入）"""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def read(self, branch: str) -> str | None:
        with self._lock:
            data = self._load()
        entry = data.get("branches", {}).get(branch)
        return entry.get("status") if isinstance(entry, dict) else None

    def write(self, branch: str, status: str) -> None:
        with self._lock:
            data = self._load()
            data.setdefault("branches", {})[branch] = {
                "status": status,
                "updated_at": datetime.now().isoformat(),
            }
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"通知状态文件损坏，按首次运行处理: {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}


class MemoryStatusStore(IStatusStore):
    """内存存储（嵌入式调用/测试）"""

    def __init__(self, initial: dict[str, str] | None = None):
        self._statuses = dict(initial or {})
        self._lock = threading.Lock()

    def read(self, branch: str) -> str | None:
        with self._lock:
            return self._statuses.get(branch)

    def write(self, branch: str, status: str) -> None:
        with self._lock:
            self._statuses[branch] = status
