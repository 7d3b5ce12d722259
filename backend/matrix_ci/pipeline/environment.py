"""
环境选择 - 按条目通道为包选择特性集

nightly 系（nightly / pinned-nightly）→ 扩展集，其余 → 基础集。
纯函数，无隐藏状态。
"""

from __future__ import annotations

from ..models import FeatureSet, MatrixEntry, Package


class EnvironmentSelector:
    """环境选择器"""

    def select(self, entry: MatrixEntry, package: Package) -> FeatureSet:
        """选择 test 步骤使用的特性集"""
        if entry.channel.is_nightly_family:
            return package.features.extended
        return package.features.base

    @staticmethod
    def build_environment(entry: MatrixEntry, base_env: dict[str, str] | None = None) -> dict[str, str]:
        """条目级环境变量"""
        env = dict(base_env or {})
        env["MATRIX_CI_CHANNEL"] = entry.channel.identifier
        env["MATRIX_CI_ALLOW_FAILURE"] = "true" if entry.allow_failure else "false"
        return env
