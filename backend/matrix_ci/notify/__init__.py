"""
通知模块 - 生命周期事件投递

子模块：
- notifier: 投递策略判定与负载
- state: 分支最终状态持久化
- webhook: HTTP 投递
"""

from .notifier import Notifier, event_for_verdict, should_dispatch
from .state import JsonStatusStore, MemoryStatusStore
from .webhook import WebhookTransport

__all__ = [
    "Notifier",
    "event_for_verdict",
    "should_dispatch",
    "JsonStatusStore",
    "MemoryStatusStore",
    "WebhookTransport",
]
