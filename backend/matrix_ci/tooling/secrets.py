"""
密钥存储 - 将不透明引用解析为 SecretStr

EnvSecretStore 从进程环境读取（CI 平台通常已将解密值注入环境），
MappingSecretStore 按引用查表，供嵌入式调用与测试使用。
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from pydantic import SecretStr

from ..interfaces import ISecretStore, SecretResolutionError
from ..models import SecretRef

logger = logging.getLogger(__name__)


class EnvSecretStore(ISecretStore):
    """按 <prefix><name> 读取环境变量"""

    def __init__(self, prefix: str = "MATRIXCI_SECRET_", environ: Mapping[str, str] | None = None):
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def resolve(self, ref: SecretRef) -> SecretStr:
        key = f"{self.prefix}{ref.name}"
        value = self._environ.get(key)
        if not value:
            raise SecretResolutionError(f"密钥 {ref.name} 无法解析（缺少环境变量 {key}）")
        return SecretStr(value)


class MappingSecretStore(ISecretStore):
    """按不透明引用查表"""

    def __init__(self, values: Mapping[str, str]):
        self._values = dict(values)

    def resolve(self, ref: SecretRef) -> SecretStr:
        if ref.ref not in self._values:
            raise SecretResolutionError(f"密钥 {ref.name} 无法解析")
        return SecretStr(self._values[ref.ref])


def resolve_secrets(
    store: ISecretStore,
    refs: Mapping[str, SecretRef],
    names: list[str],
) -> dict[str, str]:
    """解析步骤所需的密钥，返回仅用于子进程环境的明文映射"""
    env: dict[str, str] = {}
    for name in names:
        ref = refs.get(name)
        if ref is None:
            raise SecretResolutionError(f"未声明的密钥: {name}")
        env[ref.name] = store.resolve(ref).get_secret_value()
        logger.debug(f"已解析密钥 {ref.name}")
    return env
