"""
矩阵展开 - 声明的工具链通道 → MatrixEntry 列表

职责：
1. 解析通道标识符，每个通道恰好出现一次（保持声明顺序）
2. 按 allow_failures 模式（fnmatch）标记 allow_failure
3. 校验：空列表、重复通道、多于一个固定日期 nightly、无效的发布通道

测试要点：
- test_expand_marks_allow_failure: allow_failure 标记
- test_expand_empty: 空列表报错
- test_expand_duplicate: 重复通道报错
"""

from __future__ import annotations

import logging
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING

from ..interfaces import ConfigError
from ..models import ChannelKind, MatrixEntry, ToolchainChannel

if TYPE_CHECKING:
    from ..config import PipelineDefinition

logger = logging.getLogger(__name__)


class MatrixExpander:
    """矩阵展开器"""

    def __init__(
        self,
        channels: list[str],
        allow_failures: list[str] | None = None,
        publishing_channel: str = "stable",
    ):
        self.channels = list(channels)
        self.allow_failures = list(allow_failures or [])
        self.publishing_channel = publishing_channel

    @classmethod
    def from_definition(cls, definition: PipelineDefinition) -> MatrixExpander:
        return cls(
            channels=definition.toolchain.channels,
            allow_failures=definition.matrix.allow_failures,
            publishing_channel=definition.toolchain.publishing_channel,
        )

    def expand(self) -> list[MatrixEntry]:
        """展开矩阵"""
        if not self.channels:
            raise ConfigError("工具链通道列表为空")

        parsed = [ToolchainChannel.parse(c) for c in self.channels]

        seen: set[str] = set()
        for channel in parsed:
            if channel.identifier in seen:
                raise ConfigError(f"重复的工具链通道: {channel.identifier}")
            seen.add(channel.identifier)

        pinned = [c for c in parsed if c.kind == ChannelKind.PINNED_NIGHTLY]
        if len(pinned) > 1:
            raise ConfigError(f"最多允许一个固定日期的 nightly: {[c.identifier for c in pinned]}")

        for pattern in self.allow_failures:
            if not any(fnmatchcase(c.identifier, pattern) for c in parsed):
                raise ConfigError(f"allow_failures 模式未匹配任何通道: {pattern!r}")

        self.publishing()  # 校验发布通道

        entries = [
            MatrixEntry(channel=channel, allow_failure=self.is_allowed_failure(channel), index=i)
            for i, channel in enumerate(parsed, start=1)
        ]
        logger.debug(f"矩阵: {[e.label for e in entries]}")
        return entries

    def is_allowed_failure(self, channel: ToolchainChannel) -> bool:
        return any(fnmatchcase(channel.identifier, p) for p in self.allow_failures)

    def publishing(self) -> ToolchainChannel:
        """发布通道（必须在矩阵中声明）"""
        channel = ToolchainChannel.parse(self.publishing_channel)
        declared = {ToolchainChannel.parse(c).identifier for c in self.channels}
        if channel.identifier not in declared:
            raise ConfigError(f"发布通道未在矩阵中声明: {channel.identifier}")
        return channel
