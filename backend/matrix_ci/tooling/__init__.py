"""
外部协作方适配 - 构建工具/密钥存储/数据库供给

子模块：
- build_tool: 子进程调用构建/测试工具
- secrets: 密钥引用解析
- database: 条目级数据库供给
"""

from .build_tool import BuildTool
from .database import CommandDatabaseProvisioner, database_scope
from .secrets import EnvSecretStore, MappingSecretStore, resolve_secrets

__all__ = [
    "BuildTool",
    "CommandDatabaseProvisioner",
    "database_scope",
    "EnvSecretStore",
    "MappingSecretStore",
    "resolve_secrets",
]
