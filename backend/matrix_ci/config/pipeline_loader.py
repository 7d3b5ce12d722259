"""
流水线定义加载器 - 读取 config/pipeline.yaml

职责：
- 解析YAML并提供类型安全访问
- 校验分支白名单、通知策略、包/动作引用等（失败统一抛 ConfigError）
- 缓存加载结果（避免重复解析）

使用方式：
    definition = PipelineLoader.load("config/pipeline.yaml")
    packages = definition.packages
    policy = definition.notification_policy()
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..interfaces import ConfigError
from ..models import DeliveryRule, NotificationPolicy, Package, SecretRef

DEFAULT_PIPELINE_PATH = "config/pipeline.yaml"


class ToolchainSection(BaseModel):
    """工具链通道声明"""
    channels: list[str] = Field(default_factory=list)
    publishing_channel: str = "stable"

    model_config = {"extra": "forbid"}


class MatrixSection(BaseModel):
    """矩阵配置"""
    allow_failures: list[str] = Field(default_factory=list, description="fnmatch 模式")

    model_config = {"extra": "forbid"}


class BranchesSection(BaseModel):
    """触发分支白名单"""
    only: list[str]

    model_config = {"extra": "forbid"}

    @field_validator("only")
    @classmethod
    def _non_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("branches.only 不能为空")
        if any(not str(b).strip() for b in v):
            raise ValueError("branches.only 含空分支名")
        if len(set(v)) != len(v):
            raise ValueError("branches.only 含重复分支名")
        return v


class EnvSection(BaseModel):
    """全局环境变量与加密密钥"""
    global_: dict[str, str] = Field(default_factory=dict, alias="global")
    secure: list[SecretRef] = Field(default_factory=list)

    model_config = {"extra": "forbid", "populate_by_name": True}

    @field_validator("global_", mode="before")
    @classmethod
    def _from_pairs(cls, v: Any) -> Any:
        # 兼容 ["KEY=VALUE", ...] 写法
        if isinstance(v, list):
            pairs = {}
            for item in v:
                key, sep, value = str(item).partition("=")
                if not sep or not key:
                    raise ValueError(f"环境变量格式应为 KEY=VALUE: {item!r}")
                pairs[key] = value
            return pairs
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v

    @field_validator("secure")
    @classmethod
    def _unique_names(cls, v: list[SecretRef]) -> list[SecretRef]:
        names = [s.name for s in v]
        if len(set(names)) != len(names):
            raise ValueError("env.secure 含重复密钥名")
        return v


class ToolSection(BaseModel):
    """外部构建/测试工具"""
    command: list[str] = Field(default_factory=lambda: ["cargo"])
    feature_separator: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @field_validator("command", mode="before")
    @classmethod
    def _split(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.split()
        return v


class DatabaseSection(BaseModel):
    """条目级数据库供给（name 可含 {channel}/{index} 占位符）"""
    name: str
    url: str
    url_env: str = "DATABASE_URL"
    provision: list[str] = Field(default_factory=list)
    release: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class ActionSpec(BaseModel):
    """成功后动作（如 doc-upload）"""
    name: str
    package: str
    subcommand: str
    secrets: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class WebhookSection(BaseModel):
    """webhook 端点与三事件策略"""
    urls: list[str] = Field(default_factory=list)
    on_start: DeliveryRule = DeliveryRule.NEVER
    on_success: DeliveryRule = DeliveryRule.CHANGE
    on_failure: DeliveryRule = DeliveryRule.ALWAYS

    model_config = {"extra": "forbid"}

    @field_validator("urls", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("urls")
    @classmethod
    def _http_only(cls, v: list[str]) -> list[str]:
        for url in v:
            if not (url.startswith("http://") or url.startswith("https://")):
                raise ValueError(f"webhook 地址必须为 http(s): {url!r}")
        return v


class NotificationsSection(BaseModel):
    """通知配置"""
    webhooks: WebhookSection | None = None

    model_config = {"extra": "forbid"}


class PipelineDefinition(BaseModel):
    """流水线定义（pipeline.yaml 的结构化表示）"""
    schema_version: str = "1.0"

    toolchain: ToolchainSection
    matrix: MatrixSection = Field(default_factory=MatrixSection)
    branches: BranchesSection
    env: EnvSection = Field(default_factory=EnvSection)
    tool: ToolSection = Field(default_factory=ToolSection)
    database: DatabaseSection | None = None
    packages: list[Package]
    after_success: list[ActionSpec] = Field(default_factory=list)
    notifications: NotificationsSection = Field(default_factory=NotificationsSection)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _check_references(self) -> PipelineDefinition:
        if not self.packages:
            raise ValueError("packages 不能为空")

        names = [p.name for p in self.packages]
        if len(set(names)) != len(names):
            raise ValueError("packages 含重复包名")

        declared = {s.name for s in self.env.secure}
        for package in self.packages:
            for step in package.steps:
                missing = set(step.secrets) - declared
                if missing:
                    raise ValueError(f"{package.name}.{step.name} 引用了未声明的密钥: {sorted(missing)}")

        for action in self.after_success:
            if action.package not in names:
                raise ValueError(f"动作 {action.name} 引用了未知的包: {action.package}")
            missing = set(action.secrets) - declared
            if missing:
                raise ValueError(f"动作 {action.name} 引用了未声明的密钥: {sorted(missing)}")
        return self

    # === 便捷访问方法 ===

    def get_package(self, name: str) -> Package | None:
        for package in self.packages:
            if package.name == name:
                return package
        return None

    def secret_refs(self) -> dict[str, SecretRef]:
        """名称 → 密钥引用"""
        return {s.name: s for s in self.env.secure}

    def notification_policy(self) -> NotificationPolicy:
        """获取通知策略（未配置 webhook 时使用默认策略）"""
        hooks = self.notifications.webhooks
        if hooks is None:
            return NotificationPolicy()
        return NotificationPolicy(
            on_start=hooks.on_start,
            on_success=hooks.on_success,
            on_failure=hooks.on_failure,
        )

    def webhook_urls(self) -> list[str]:
        hooks = self.notifications.webhooks
        return list(hooks.urls) if hooks else []

    def branch_allowed(self, branch: str) -> bool:
        return branch in self.branches.only


def parse_definition(data: Any) -> PipelineDefinition:
    """从已解析的字典构建定义，所有校验错误转为 ConfigError"""
    if not isinstance(data, dict):
        raise ConfigError("流水线定义必须是映射")
    try:
        return PipelineDefinition(**data)
    except ValidationError as e:
        raise ConfigError(f"流水线定义无效: {e}") from e


class PipelineLoader:
    """流水线定义加载器（缓存）"""

    @classmethod
    @lru_cache(maxsize=4)
    def load(cls, pipeline_path: str | Path = DEFAULT_PIPELINE_PATH) -> PipelineDefinition:
        """加载并缓存定义"""
        path = Path(pipeline_path)
        if not path.exists():
            raise ConfigError(f"流水线定义不存在: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML解析失败: {path}: {e}") from e

        return parse_definition(data)

    @classmethod
    def reload(cls, pipeline_path: str | Path = DEFAULT_PIPELINE_PATH) -> PipelineDefinition:
        """强制重新加载（清除缓存）"""
        cls.load.cache_clear()
        return cls.load(pipeline_path)


# 便捷函数
def load_pipeline(pipeline_path: str | Path = DEFAULT_PIPELINE_PATH) -> PipelineDefinition:
    """加载流水线定义"""
    return PipelineLoader.load(pipeline_path)
