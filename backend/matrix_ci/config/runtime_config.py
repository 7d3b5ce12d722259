"""
运行期配置 - 读取 config/runtime.yaml

职责：
- 加载并发/超时/路径等运行参数
- 提供环境变量覆盖机制（MATRIXCI_ 前缀，__ 分隔嵌套）
- 类型安全的配置访问
"""

from __future__ import annotations

from contextvars import ContextVar
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

DEFAULT_RUNTIME_PATH = Path("config/runtime.yaml")

# from_yaml 加载期间的 YAML 取值（按字段名，子配置为普通字典）
_yaml_values: ContextVar[dict[str, Any] | None] = ContextVar("runtime_yaml_values", default=None)


class _RuntimeYamlSource(PydanticBaseSettingsSource):
    """runtime.yaml 配置源，优先级低于环境变量"""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        values = _yaml_values.get() or {}
        return values.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return dict(_yaml_values.get() or {})


class ConcurrencyConfig(BaseModel):
    """并发配置（矩阵条目之间）"""

    max_workers: int = 1


class TimeoutConfig(BaseModel):
    """超时配置（None 表示交给外部调度器）"""

    step_sec: int | None = None
    provision_sec: int | None = 120
    webhook_sec: int = 30


class SecretsConfig(BaseModel):
    """密钥存储配置"""

    env_prefix: str = "MATRIXCI_SECRET_"


class LoggingConfig(BaseModel):
    """日志配置"""

    log_level: str = "INFO"
    log_to_file: bool = False


class RuntimeConfig(BaseSettings):
    """运行期配置（支持环境变量覆盖）"""

    # 基础路径
    workspace_dir: Path = Path(".")
    storage_dir: Path = Path(".matrix-ci")
    pipeline_path: Path = Path("config/pipeline.yaml")

    # 各子配置
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "MATRIXCI_",
        "env_nested_delimiter": "__",
        "arbitrary_types_allowed": True,
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # 优先级：构造参数 > 环境变量 > runtime.yaml > 默认值
        return (
            init_settings,
            env_settings,
            _RuntimeYamlSource(settings_cls),
            dotenv_settings,
            file_secret_settings,
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> RuntimeConfig:
        """从YAML文件加载配置"""
        path = Path(yaml_path)
        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        runtime_opts = data.get("runtime_options", {})

        values: dict[str, Any] = {
            **cls._extract(runtime_opts, "paths"),
            "concurrency": cls._extract(runtime_opts, "concurrency"),
            "timeouts": cls._extract(runtime_opts, "timeouts"),
            "secrets": cls._extract(runtime_opts, "secrets"),
            "logging": cls._extract(runtime_opts, "logging"),
        }

        token = _yaml_values.set(values)
        try:
            config = cls()
        finally:
            _yaml_values.reset(token)

        config._resolve_paths(base_dir=path.parent)
        return config

    @staticmethod
    def _extract(data: dict[str, Any], key: str) -> dict[str, Any]:
        """提取并展平配置"""
        section = data.get(key, {}) or {}
        result = {}
        for k, v in section.items():
            if isinstance(v, dict) and "default" in v:
                result[k] = v["default"]
            elif not isinstance(v, dict):
                result[k] = v
        return result

    def _resolve_paths(self, base_dir: Path) -> None:
        """解析相对路径配置为绝对路径（基于配置文件所在目录）"""
        for attr in ("workspace_dir", "storage_dir", "pipeline_path"):
            value = Path(getattr(self, attr))
            if not value.is_absolute():
                setattr(self, attr, (base_dir / value).resolve())

    def get_build_dir(self, build_id: str) -> Path:
        """获取构建工作目录"""
        return self.storage_dir / "runs" / build_id

    def get_run_dir(self, build_id: str, run_id: str) -> Path:
        """获取条目运行目录"""
        return self.get_build_dir(build_id) / run_id

    @property
    def state_file(self) -> Path:
        """通知状态持久化文件"""
        return self.storage_dir / "notify_state.json"

    @property
    def log_dir(self) -> Path:
        return self.storage_dir / "logs"

    def ensure_dirs(self) -> None:
        """确保必要目录存在"""
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        (self.storage_dir / "runs").mkdir(exist_ok=True)


# 全局配置实例
_config: RuntimeConfig | None = None


def get_config() -> RuntimeConfig:
    """获取全局配置（惰性加载）"""
    global _config
    if _config is None:
        _config = RuntimeConfig.from_yaml(DEFAULT_RUNTIME_PATH)
    return _config


def reload_config(yaml_path: str | Path | None = None) -> RuntimeConfig:
    """重新加载配置"""
    global _config
    path = yaml_path or DEFAULT_RUNTIME_PATH
    _config = RuntimeConfig.from_yaml(path)
    return _config
