"""
构建工具 - 以子进程调用外部构建/测试工具

职责：
- 拼装 [工具命令, 子命令, 分隔符, 特性参数] 并在包目录执行
- 合并条目环境变量（含数据库地址与已解析的密钥）
- 处理可执行文件缺失、启动失败与可选超时

测试要点：
- test_run_success: 正常执行返回0
- test_run_nonzero: 返回非零退出码
- test_run_missing_executable: 可执行文件不存在
- test_run_not_executable: 无执行权限等启动失败
- test_run_timeout: 超时处理
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from ..interfaces import IStepRunner, StepFailure
from ..models import StepInvocation

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 2000


class BuildTool(IStepRunner):
    """外部构建工具封装（如 travis-cargo / cargo）"""

    def __init__(
        self,
        command: list[str],
        feature_separator: list[str] | None = None,
        timeout: int | None = None,
    ):
        if not command:
            raise ValueError("工具命令不能为空")
        self.command = list(command)
        self.feature_separator = list(feature_separator or [])
        self.timeout = timeout

    def build_command(self, invocation: StepInvocation) -> list[str]:
        """拼装命令行"""
        cmd = [*self.command, invocation.subcommand]
        if invocation.feature_args:
            cmd.extend(self.feature_separator)
            cmd.extend(invocation.feature_args)
        return cmd

    def run(self, invocation: StepInvocation) -> int:
        """执行一次调用并返回退出码"""
        workdir = Path(invocation.working_dir)
        if not workdir.is_dir():
            raise StepFailure(f"工作目录不存在: {workdir}")

        cmd = self.build_command(invocation)
        env = {**os.environ, **invocation.env}
        logger.info(f"执行: {' '.join(cmd)} (cwd={workdir})")

        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
                cwd=str(workdir),
                env=env,
            )
        except FileNotFoundError as e:
            raise StepFailure(f"工具可执行文件不存在: {cmd[0]}") from e
        except OSError as e:
            raise StepFailure(f"工具无法启动: {cmd[0]}: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise StepFailure(f"步骤超时({self.timeout}s): {' '.join(cmd)}") from e

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "")[-_OUTPUT_TAIL:]
            logger.warning(f"退出码 {completed.returncode}: {' '.join(cmd)}\n{detail}")
        elif completed.stdout:
            logger.debug(completed.stdout[-_OUTPUT_TAIL:])

        return completed.returncode
