"""
外部工具封装单元测试（子进程均以 mock 替换）
"""

import subprocess
from pathlib import Path
from unittest import mock

import pytest

from matrix_ci.interfaces import ProvisionError, SecretResolutionError, StepFailure
from matrix_ci.models import DatabaseHandle, SecretRef, StepInvocation
from matrix_ci.tooling import (
    BuildTool,
    CommandDatabaseProvisioner,
    EnvSecretStore,
    MappingSecretStore,
    database_scope,
    resolve_secrets,
)


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestBuildTool:
    """构建工具测试"""

    def _invocation(self, workdir: Path, feature_args: list[str] | None = None) -> StepInvocation:
        return StepInvocation(
            subcommand="test",
            working_dir=workdir,
            feature_args=feature_args or [],
            env={"DATABASE_URL": "postgres://localhost/x"},
        )

    def test_build_command(self, temp_dir: Path):
        """测试命令拼装（有特性参数时插入分隔符）"""
        tool = BuildTool(["travis-cargo"], feature_separator=["--"])
        cmd = tool.build_command(self._invocation(temp_dir, ["--no-default-features", "--features", "unstable"]))
        assert cmd == ["travis-cargo", "test", "--", "--no-default-features", "--features", "unstable"]

    def test_build_command_without_features(self, temp_dir: Path):
        """测试无特性参数时不插入分隔符"""
        tool = BuildTool(["travis-cargo"], feature_separator=["--"])
        assert tool.build_command(self._invocation(temp_dir)) == ["travis-cargo", "test"]

    def test_empty_command(self):
        """测试空命令"""
        with pytest.raises(ValueError):
            BuildTool([])

    def test_run_success(self, temp_dir: Path):
        """测试正常执行返回0，并在包目录中携带环境变量执行"""
        with mock.patch("matrix_ci.tooling.build_tool.subprocess.run", return_value=_completed(0)) as run:
            code = BuildTool(["cargo"], timeout=60).run(self._invocation(temp_dir))

        assert code == 0
        _, kwargs = run.call_args
        assert kwargs["cwd"] == str(temp_dir)
        assert kwargs["timeout"] == 60
        assert kwargs["env"]["DATABASE_URL"] == "postgres://localhost/x"

    def test_run_nonzero(self, temp_dir: Path):
        """测试返回非零退出码"""
        with mock.patch(
            "matrix_ci.tooling.build_tool.subprocess.run",
            return_value=_completed(101, stderr="test failed"),
        ):
            assert BuildTool(["cargo"]).run(self._invocation(temp_dir)) == 101

    def test_run_missing_executable(self, temp_dir: Path):
        """测试可执行文件不存在"""
        with mock.patch("matrix_ci.tooling.build_tool.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(StepFailure, match="cargo"):
                BuildTool(["cargo"]).run(self._invocation(temp_dir))

    def test_run_not_executable(self, temp_dir: Path):
        """测试无执行权限时转为步骤失败"""
        with mock.patch(
            "matrix_ci.tooling.build_tool.subprocess.run",
            side_effect=PermissionError(13, "Permission denied"),
        ):
            with pytest.raises(StepFailure, match="无法启动"):
                BuildTool(["cargo"]).run(self._invocation(temp_dir))

    def test_run_timeout(self, temp_dir: Path):
        """测试超时处理"""
        with mock.patch(
            "matrix_ci.tooling.build_tool.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="cargo", timeout=5),
        ):
            with pytest.raises(StepFailure, match="超时"):
                BuildTool(["cargo"], timeout=5).run(self._invocation(temp_dir))

    def test_run_missing_workdir(self, temp_dir: Path):
        """测试包目录不存在"""
        with mock.patch("matrix_ci.tooling.build_tool.subprocess.run") as run:
            with pytest.raises(StepFailure, match="工作目录"):
                BuildTool(["cargo"]).run(self._invocation(temp_dir / "missing"))
        run.assert_not_called()


class TestSecretStores:
    """密钥存储测试"""

    REF = SecretRef(name="GH_TOKEN", ref="opaque")

    def test_env_store(self):
        """测试按前缀读取环境变量"""
        store = EnvSecretStore("CI_SECRET_", environ={"CI_SECRET_GH_TOKEN": "ghp_1"})
        assert store.resolve(self.REF).get_secret_value() == "ghp_1"

    def test_env_store_missing(self):
        """测试环境变量缺失"""
        with pytest.raises(SecretResolutionError, match="GH_TOKEN"):
            EnvSecretStore("CI_SECRET_", environ={}).resolve(self.REF)

    def test_mapping_store(self):
        """测试按不透明引用查表"""
        assert MappingSecretStore({"opaque": "v"}).resolve(self.REF).get_secret_value() == "v"

    def test_secret_not_in_repr(self):
        """测试解析结果不会在 repr 中泄露"""
        secret = MappingSecretStore({"opaque": "ghp_hidden"}).resolve(self.REF)
        assert "ghp_hidden" not in repr(secret)

    def test_resolve_secrets(self):
        """测试解析为子进程环境"""
        env = resolve_secrets(MappingSecretStore({"opaque": "v"}), {"GH_TOKEN": self.REF}, ["GH_TOKEN"])
        assert env == {"GH_TOKEN": "v"}

    def test_resolve_undeclared(self):
        """测试未声明的密钥名"""
        with pytest.raises(SecretResolutionError):
            resolve_secrets(MappingSecretStore({}), {}, ["GH_TOKEN"])


class TestDatabaseProvisioner:
    """数据库供给测试"""

    def _provisioner(self) -> CommandDatabaseProvisioner:
        return CommandDatabaseProvisioner(
            url_template="postgres://postgres@localhost/{name}",
            provision_cmd=["psql", "-c", "create database {name};", "-U", "postgres"],
            release_cmd=["psql", "-c", "drop database {name};", "-U", "postgres"],
        )

    def test_provision(self):
        """测试供给命令与句柄"""
        with mock.patch("matrix_ci.tooling.database.subprocess.run", return_value=_completed(0)) as run:
            handle = self._provisioner().provision("diesel_stable")

        assert run.call_args[0][0] == ["psql", "-c", "create database diesel_stable;", "-U", "postgres"]
        assert handle.url == "postgres://postgres@localhost/diesel_stable"
        assert handle.as_env() == {"DATABASE_URL": "postgres://postgres@localhost/diesel_stable"}

    def test_provision_without_command(self):
        """测试未配置供给命令时只生成句柄"""
        provisioner = CommandDatabaseProvisioner(url_template="sqlite:///{name}.db")
        with mock.patch("matrix_ci.tooling.database.subprocess.run") as run:
            handle = provisioner.provision("x")
        run.assert_not_called()
        assert handle.url == "sqlite:///x.db"

    def test_provision_failure(self):
        """测试供给命令失败"""
        error = subprocess.CalledProcessError(1, ["psql"], stderr="already exists")
        with mock.patch("matrix_ci.tooling.database.subprocess.run", side_effect=error):
            with pytest.raises(ProvisionError, match="already exists"):
                self._provisioner().provision("diesel_stable")

    def test_provision_missing_executable(self):
        """测试供给命令不存在"""
        with mock.patch("matrix_ci.tooling.database.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(ProvisionError, match="psql"):
                self._provisioner().provision("diesel_stable")

    def test_provision_not_executable(self):
        """测试供给命令无执行权限"""
        with mock.patch(
            "matrix_ci.tooling.database.subprocess.run",
            side_effect=PermissionError(13, "Permission denied"),
        ):
            with pytest.raises(ProvisionError, match="无法启动"):
                self._provisioner().provision("diesel_stable")

    def test_release_failure_logged(self, caplog: pytest.LogCaptureFixture):
        """测试释放失败只记录日志"""
        error = subprocess.CalledProcessError(1, ["psql"])
        handle = DatabaseHandle(name="diesel_stable", url="postgres://x")
        with mock.patch("matrix_ci.tooling.database.subprocess.run", side_effect=error):
            self._provisioner().release(handle)
        assert "diesel_stable" in caplog.text

    def test_scope_releases_on_error(self):
        """测试作用域内异常时仍释放"""
        provisioner = mock.Mock()
        provisioner.provision.return_value = DatabaseHandle(name="db", url="postgres://x")

        with pytest.raises(RuntimeError):
            with database_scope(provisioner, "db") as handle:
                assert handle.name == "db"
                raise RuntimeError("step crashed")

        provisioner.release.assert_called_once_with(provisioner.provision.return_value)
