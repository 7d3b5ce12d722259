"""
通知模型 - 事件、投递规则与投递记录
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class LifecycleEvent(str, Enum):
    """流水线生命周期事件"""
    START = "start"
    SUCCESS = "success"
    FAILURE = "failure"


class DeliveryRule(str, Enum):
    """单个事件的投递规则"""
    ALWAYS = "always"
    NEVER = "never"
    CHANGE = "change"


class NotificationPolicy(BaseModel):
    """三事件投递策略（默认与常见CI一致）"""
    on_start: DeliveryRule = DeliveryRule.NEVER
    on_success: DeliveryRule = DeliveryRule.CHANGE
    on_failure: DeliveryRule = DeliveryRule.ALWAYS

    model_config = {"extra": "forbid"}

    def rule_for(self, event: LifecycleEvent) -> DeliveryRule:
        return {
            LifecycleEvent.START: self.on_start,
            LifecycleEvent.SUCCESS: self.on_success,
            LifecycleEvent.FAILURE: self.on_failure,
        }[event]


class NotificationRecord(BaseModel):
    """一次通知判定/投递记录"""
    event: LifecycleEvent
    rule: DeliveryRule
    dispatched: bool = False
    delivered: list[str] = Field(default_factory=list, description="投递成功的URL")
    failed: list[str] = Field(default_factory=list, description="投递失败的URL")
    reason: str = ""
    at: datetime = Field(default_factory=datetime.now)
