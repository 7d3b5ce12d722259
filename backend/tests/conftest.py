"""
pytest 配置与公共 fixtures

使用方式：
    def test_something(definition, fake_runner, make_executor):
        executor = make_executor(definition, runner=fake_runner)
"""

from __future__ import annotations

import copy
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from matrix_ci.config import PipelineDefinition, RuntimeConfig, parse_definition
from matrix_ci.interfaces import (
    DeliveryError,
    IDatabaseProvisioner,
    INotifyTransport,
    IStepRunner,
    ProvisionError,
)
from matrix_ci.models import DatabaseHandle, StepInvocation
from matrix_ci.notify import MemoryStatusStore
from matrix_ci.pipeline import PipelineExecutor, RunManager
from matrix_ci.tooling import MappingSecretStore

REPO_ROOT = Path(__file__).resolve().parents[2]


# ============================================================================
# 测试替身
# ============================================================================

class FakeRunner(IStepRunner):
    """记录调用并按 (通道, 包目录, 子命令) 返回退出码，"*" 匹配任意通道"""

    def __init__(self, exit_codes: dict[tuple[str, str, str], int] | None = None):
        self.exit_codes = dict(exit_codes or {})
        self.invocations: list[StepInvocation] = []

    def run(self, invocation: StepInvocation) -> int:
        self.invocations.append(invocation)
        channel = invocation.env.get("MATRIX_CI_CHANNEL", "")
        package = Path(invocation.working_dir).name
        key = (channel, package, invocation.subcommand)
        wildcard = ("*", package, invocation.subcommand)
        return self.exit_codes.get(key, self.exit_codes.get(wildcard, 0))

    def calls(self, channel: str | None = None) -> list[tuple[str, str]]:
        """(包, 子命令) 调用序列"""
        return [
            (Path(inv.working_dir).name, inv.subcommand)
            for inv in self.invocations
            if channel is None or inv.env.get("MATRIX_CI_CHANNEL") == channel
        ]

    def feature_args(self, channel: str, package: str) -> list[str]:
        for inv in self.invocations:
            if (
                inv.env.get("MATRIX_CI_CHANNEL") == channel
                and Path(inv.working_dir).name == package
                and inv.subcommand == "test"
            ):
                return inv.feature_args
        raise AssertionError(f"{channel}/{package} 未执行 test")


class FakeTransport(INotifyTransport):
    """记录投递，可模拟失败"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.deliveries: list[tuple[str, dict[str, Any]]] = []

    def deliver(self, url: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise DeliveryError(f"模拟投递失败: {url}")
        self.deliveries.append((url, payload))

    @property
    def events(self) -> list[str]:
        return [payload["event"] for _, payload in self.deliveries]


class FakeProvisioner(IDatabaseProvisioner):
    """记录数据库申请与释放"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.provisioned: list[str] = []
        self.released: list[str] = []

    def provision(self, name: str) -> DatabaseHandle:
        if self.fail:
            raise ProvisionError(f"模拟供给失败: {name}")
        self.provisioned.append(name)
        return DatabaseHandle(name=name, url=f"postgres://localhost/{name}")

    def release(self, handle: DatabaseHandle) -> None:
        self.released.append(handle.name)


# ============================================================================
# 配置 Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """临时目录"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def runtime_config(temp_dir: Path) -> RuntimeConfig:
    """运行期配置（工作区与存储都在临时目录）"""
    workspace = temp_dir / "workspace"
    for name in ("diesel", "diesel_codegen", "diesel_tests"):
        (workspace / name).mkdir(parents=True)
    return RuntimeConfig(workspace_dir=workspace, storage_dir=temp_dir / "storage")


_DEFINITION: dict[str, Any] = {
    "schema_version": "1.0",
    "toolchain": {
        "channels": ["stable", "beta", "nightly-2016-01-23", "nightly"],
        "publishing_channel": "stable",
    },
    "matrix": {"allow_failures": ["nightly"]},
    "branches": {"only": ["master", "ಠ_ಠ"]},
    "env": {
        "global": {"DATABASE_URL": "postgres://postgres@localhost/"},
        "secure": [{"name": "GH_TOKEN", "ref": "opaque-gh-token"}],
    },
    "tool": {"command": ["travis-cargo"], "feature_separator": ["--"]},
    "packages": [
        {
            "name": "diesel",
            "steps": ["build", "doc", "test"],
            "features": {
                "base": {"flags": ["chrono"]},
                "extended": {"flags": ["unstable", "chrono"]},
            },
        },
        {
            "name": "diesel_codegen",
            "steps": ["test"],
            "features": {"extended": {"flags": ["nightly"], "no_default_features": True}},
        },
        {
            "name": "diesel_tests",
            "steps": ["test"],
            "features": {"extended": {"flags": ["unstable"], "no_default_features": True}},
        },
    ],
    "after_success": [
        {"name": "doc-upload", "package": "diesel", "subcommand": "doc-upload", "secrets": ["GH_TOKEN"]},
    ],
    "notifications": {
        "webhooks": {
            "urls": ["https://hooks.example.com/ci"],
            "on_success": "change",
            "on_failure": "always",
            "on_start": "never",
        }
    },
}


@pytest.fixture
def definition_data() -> dict[str, Any]:
    """流水线定义原始数据（可在测试中修改）"""
    return copy.deepcopy(_DEFINITION)


@pytest.fixture
def definition(definition_data: dict[str, Any]) -> PipelineDefinition:
    """流水线定义"""
    return parse_definition(definition_data)


# ============================================================================
# 执行器 Fixtures
# ============================================================================

@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def secret_store() -> MappingSecretStore:
    return MappingSecretStore({"opaque-gh-token": "ghp_test"})


@pytest.fixture
def make_executor(
    runtime_config: RuntimeConfig,
    fake_transport: FakeTransport,
    secret_store: MappingSecretStore,
) -> Callable[..., PipelineExecutor]:
    """构建使用测试替身的执行器"""

    def _make(definition: PipelineDefinition, **kwargs: Any) -> PipelineExecutor:
        kwargs.setdefault("runner", FakeRunner())
        kwargs.setdefault("transport", fake_transport)
        kwargs.setdefault("secret_store", secret_store)
        kwargs.setdefault("status_store", MemoryStatusStore())
        kwargs.setdefault("run_manager", RunManager(runtime_config))
        return PipelineExecutor(definition, runtime_config, **kwargs)

    return _make
