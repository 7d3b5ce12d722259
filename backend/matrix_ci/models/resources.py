"""
外部资源模型 - 密钥引用与数据库句柄

密钥在核心数据模型中只以不透明引用出现，明文仅在子进程环境中存在。
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SecretRef(BaseModel):
    """密钥引用（加密值或外部存储的键）"""
    name: str = Field(..., description="注入子进程环境时的变量名")
    ref: str = Field(..., repr=False, description="不透明引用")

    model_config = {"frozen": True, "extra": "forbid"}


class DatabaseHandle(BaseModel):
    """每个矩阵条目独立持有的数据库句柄"""
    name: str
    url: str
    url_env: str = "DATABASE_URL"

    def as_env(self) -> dict[str, str]:
        return {self.url_env: self.url}
