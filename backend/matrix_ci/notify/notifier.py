"""
通知器 - 按三事件策略向 webhook 端点发送生命周期事件

职责：
1. always → 无条件投递；never → 不投递
2. change → 仅当本次状态与同一分支上一次最终状态不同时投递（首次视为变化）
3. 基线在分类前读取一次，投递后写入一次（无论是否投递/投递是否成功）
4. 投递失败只记录日志，不重试，不影响结论

测试要点：
- test_dispatch_table: start/never、failure/always、success/change
- test_first_run_counts_as_change: 首次运行视为变化
- test_delivery_failure_logged: 投递失败不抛出
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..interfaces import DeliveryError, INotifyTransport, IStatusStore
from ..models import (
    BuildResult,
    DeliveryRule,
    LifecycleEvent,
    NotificationPolicy,
    NotificationRecord,
    Verdict,
)

logger = logging.getLogger(__name__)

STATUS_PASSED = "passed"
STATUS_FAILED = "failed"
STATUS_STARTED = "started"

_EVENT_STATUS = {
    LifecycleEvent.START: STATUS_STARTED,
    LifecycleEvent.SUCCESS: STATUS_PASSED,
    LifecycleEvent.FAILURE: STATUS_FAILED,
}


def event_for_verdict(verdict: Verdict | None) -> LifecycleEvent:
    return LifecycleEvent.SUCCESS if verdict == Verdict.PASS else LifecycleEvent.FAILURE


def should_dispatch(event: LifecycleEvent, rule: DeliveryRule, baseline: str | None) -> bool:
    """投递判定（start 不携带最终状态，change 对 start 等同于投递）"""
    if rule == DeliveryRule.NEVER:
        return False
    if rule == DeliveryRule.ALWAYS:
        return True
    return baseline is None or _EVENT_STATUS[event] != baseline


class Notifier:
    """生命周期通知器"""

    def __init__(
        self,
        policy: NotificationPolicy,
        urls: list[str],
        transport: INotifyTransport,
        store: IStatusStore,
        publishing_channel: str | None = None,
    ):
        self.policy = policy
        self.urls = list(urls)
        self.transport = transport
        self.store = store
        self.publishing_channel = publishing_channel

    def read_baseline(self, branch: str) -> str | None:
        """读取基线（分类前调用一次）"""
        baseline = self.store.read(branch)
        logger.debug(f"分支 {branch} 的通知基线: {baseline}")
        return baseline

    def notify(self, event: LifecycleEvent, build: BuildResult, baseline: str | None) -> NotificationRecord:
        """按策略判定并投递单个事件"""
        rule = self.policy.rule_for(event)
        record = NotificationRecord(event=event, rule=rule)

        if not should_dispatch(event, rule, baseline):
            record.reason = "never" if rule == DeliveryRule.NEVER else "unchanged"
            logger.info(f"[{build.build_id}] 不投递 {event.value} ({record.reason})")
            build.notifications.append(record)
            return record

        if not self.urls:
            record.reason = "no endpoints"
            build.notifications.append(record)
            return record

        record.dispatched = True
        payload = self.build_payload(event, build)
        for url in self.urls:
            try:
                self.transport.deliver(url, payload)
                record.delivered.append(url)
            except DeliveryError as e:
                logger.error(f"[{build.build_id}] 通知投递失败 {event.value}: {e}")
                record.failed.append(url)

        build.notifications.append(record)
        return record

    def finish(self, build: BuildResult, baseline: str | None) -> NotificationRecord:
        """发送最终事件并写入新的基线"""
        event = event_for_verdict(build.verdict)
        try:
            return self.notify(event, build, baseline)
        finally:
            self.store.write(build.branch, _EVENT_STATUS[event])

    def build_payload(self, event: LifecycleEvent, build: BuildResult) -> dict[str, Any]:
        """负载：运行标识、分支、通道、最终结论"""
        return {
            "build_id": build.build_id,
            "run_ids": [run.run_id for run in build.runs],
            "branch": build.branch,
            "commit": build.commit,
            "event": event.value,
            "status": _EVENT_STATUS[event],
            "verdict": build.verdict.value if build.verdict else None,
            "channel": self.publishing_channel,
            "entries": [
                {
                    "run_id": run.run_id,
                    "channel": run.entry.channel.identifier,
                    "allow_failure": run.entry.allow_failure,
                    "verdict": run.verdict.value if run.verdict else None,
                }
                for run in build.runs
            ],
            "timestamp": datetime.now().isoformat(),
        }
