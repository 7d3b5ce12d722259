"""
运行管理器与构建报告单元测试
"""

from matrix_ci.config import RuntimeConfig
from matrix_ci.models import (
    BuildResult,
    MatrixEntry,
    PackageOutcome,
    RunState,
    StepResult,
    StepStatus,
    ToolchainChannel,
    Verdict,
)
from matrix_ci.pipeline import BuildReporter, RunManager


def _entry(channel: str = "stable", index: int = 1) -> MatrixEntry:
    return MatrixEntry(channel=ToolchainChannel.parse(channel), index=index)


class TestRunManager:
    """运行管理器测试"""

    def test_create_run(self, runtime_config: RuntimeConfig):
        """测试创建运行"""
        manager = RunManager(runtime_config)
        run = manager.create_run("b1", "master", _entry(index=3), commit="abc")

        assert run.run_id == "b1.3"
        assert run.state == RunState.CREATED
        assert (runtime_config.get_run_dir("b1", "b1.3") / "run.json").exists()

    def test_get_run(self, runtime_config: RuntimeConfig):
        """测试获取运行"""
        manager = RunManager(runtime_config)
        run = manager.create_run("b1", "master", _entry())
        assert manager.get_run(run.run_id) is run
        assert manager.get_run("missing.1") is None

    def test_get_run_from_disk(self, runtime_config: RuntimeConfig):
        """测试移除后从磁盘回读"""
        manager = RunManager(runtime_config)
        run = manager.create_run("b1", "master", _entry("nightly-2016-01-23"))
        run.mark_finished(Verdict.FAIL)
        manager.update_run(run)
        manager.discard_run(run.run_id)

        loaded = RunManager(runtime_config).get_run(run.run_id)
        assert loaded is not None
        assert loaded.verdict == Verdict.FAIL
        assert loaded.entry.channel.identifier == "nightly-2016-01-23"

    def test_cancel_run(self, runtime_config: RuntimeConfig):
        """测试取消运行"""
        manager = RunManager(runtime_config)
        run = manager.create_run("b1", "master", _entry())
        run.mark_running()

        assert manager.cancel_run(run.run_id)
        assert run.cancelled
        assert manager.cancel_event(run.run_id).is_set()

    def test_cancel_finished_run(self, runtime_config: RuntimeConfig):
        """测试已结束的运行不能取消"""
        manager = RunManager(runtime_config)
        run = manager.create_run("b1", "master", _entry())
        run.mark_finished(Verdict.PASS)
        assert not manager.cancel_run(run.run_id)
        assert not run.cancelled

    def test_cancel_is_per_run(self, runtime_config: RuntimeConfig):
        """测试取消只影响目标运行"""
        manager = RunManager(runtime_config)
        first = manager.create_run("b1", "master", _entry("stable", 1))
        second = manager.create_run("b1", "master", _entry("beta", 2))
        manager.cancel_run(first.run_id)
        assert not manager.cancel_event(second.run_id).is_set()

    def test_discard_run(self, runtime_config: RuntimeConfig):
        """测试移除运行"""
        manager = RunManager(runtime_config, persist=False)
        run = manager.create_run("b1", "master", _entry())
        manager.discard_run(run.run_id)
        assert manager.list_runs() == []
        assert manager.get_run(run.run_id) is None

    def test_list_runs(self, runtime_config: RuntimeConfig):
        """测试按构建筛选"""
        manager = RunManager(runtime_config, persist=False)
        manager.create_run("b1", "master", _entry("stable", 1))
        manager.create_run("b1", "master", _entry("beta", 2))
        manager.create_run("b2", "master", _entry("stable", 1))
        assert [r.run_id for r in manager.list_runs(build_id="b1")] == ["b1.1", "b1.2"]


class TestBuildReporter:
    """构建报告测试"""

    def test_report_structure(self, runtime_config: RuntimeConfig):
        """测试报告结构"""
        manager = RunManager(runtime_config, persist=False)
        run = manager.create_run("b1", "master", _entry())
        run.packages = [
            PackageOutcome(
                package="diesel",
                results=[StepResult(package="diesel", step_name="build", status=StepStatus.PASSED, exit_status=0)],
            )
        ]
        run.mark_finished(Verdict.PASS)
        build = BuildResult(build_id="b1", branch="master", runs=[run], verdict=Verdict.PASS)

        report = BuildReporter(runtime_config).build_report(build)
        assert report["schema_version"] == "1.0"
        assert report["verdict"] == "PASS"
        entry = report["entries"][0]
        assert entry["channel"] == "stable"
        assert entry["packages"][0]["steps"][0]["exit_status"] == 0
        assert report["timestamps"]["finished_at"] is None

    def test_write(self, runtime_config: RuntimeConfig):
        """测试写出 report.json"""
        build = BuildResult(build_id="b9", branch="master", verdict=Verdict.FAIL)
        path = BuildReporter(runtime_config).write(build)
        assert path == runtime_config.get_build_dir("b9") / "report.json"
        assert path.exists()
