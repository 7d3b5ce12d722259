"""
工具链通道模型 - stable / beta / pinned-nightly(date) / nightly

通道标识符与类型一一对应，取代按前缀匹配字符串的写法。
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum

from pydantic import BaseModel

from ..interfaces import ConfigError

_PINNED_RE = re.compile(r"^nightly-(\d{4}-\d{2}-\d{2})$")


class ChannelKind(str, Enum):
    """通道类型"""
    STABLE = "stable"
    BETA = "beta"
    PINNED_NIGHTLY = "pinned-nightly"
    NIGHTLY = "nightly"


class ToolchainChannel(BaseModel):
    """工具链通道"""
    kind: ChannelKind
    pinned_date: date | None = None

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, identifier: str) -> ToolchainChannel:
        """从标识符解析通道（如 nightly-2016-01-23）"""
        text = str(identifier).strip()
        if text in (ChannelKind.STABLE.value, ChannelKind.BETA.value, ChannelKind.NIGHTLY.value):
            return cls(kind=ChannelKind(text))

        match = _PINNED_RE.match(text)
        if not match:
            raise ConfigError(f"未知的工具链通道: {identifier!r}")
        try:
            pinned = date.fromisoformat(match.group(1))
        except ValueError as e:
            raise ConfigError(f"通道日期无效: {identifier!r}") from e
        return cls(kind=ChannelKind.PINNED_NIGHTLY, pinned_date=pinned)

    @property
    def identifier(self) -> str:
        if self.kind == ChannelKind.PINNED_NIGHTLY and self.pinned_date is not None:
            return f"nightly-{self.pinned_date.isoformat()}"
        return self.kind.value

    @property
    def is_nightly_family(self) -> bool:
        return self.kind in (ChannelKind.NIGHTLY, ChannelKind.PINNED_NIGHTLY)

    def __str__(self) -> str:
        return self.identifier
