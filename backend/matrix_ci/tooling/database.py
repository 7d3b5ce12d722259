"""
数据库供给 - 每个矩阵条目申请一次，所有退出路径上释放

职责：
1. 执行 provision 命令（如 psql -c 'create database {name};'）
2. 以显式句柄的形式把数据库地址交给步骤环境
3. 条目结束时执行 release 命令，失败只记录日志

同一条目内的全部测试步骤共享该数据库（不保证包之间的隔离）。
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterator
from contextlib import contextmanager

from ..interfaces import IDatabaseProvisioner, ProvisionError
from ..models import DatabaseHandle

logger = logging.getLogger(__name__)


class CommandDatabaseProvisioner(IDatabaseProvisioner):
    """通过外部命令创建/删除数据库"""

    def __init__(
        self,
        url_template: str,
        provision_cmd: list[str] | None = None,
        release_cmd: list[str] | None = None,
        url_env: str = "DATABASE_URL",
        timeout: int | None = None,
    ):
        self.url_template = url_template
        self.provision_cmd = list(provision_cmd or [])
        self.release_cmd = list(release_cmd or [])
        self.url_env = url_env
        self.timeout = timeout

    def provision(self, name: str) -> DatabaseHandle:
        if self.provision_cmd:
            cmd = [part.format(name=name) for part in self.provision_cmd]
            try:
                subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                    check=True,
                )
            except FileNotFoundError as e:
                raise ProvisionError(f"供给命令不存在: {cmd[0]}") from e
            except OSError as e:
                raise ProvisionError(f"供给命令无法启动: {cmd[0]}: {e}") from e
            except subprocess.TimeoutExpired as e:
                raise ProvisionError(f"数据库供给超时: {name}") from e
            except subprocess.CalledProcessError as e:
                detail = e.stderr or e.stdout or ""
                raise ProvisionError(f"数据库供给失败: {name}: {detail}") from e

        logger.info(f"数据库已就绪: {name}")
        return DatabaseHandle(
            name=name,
            url=self.url_template.format(name=name),
            url_env=self.url_env,
        )

    def release(self, handle: DatabaseHandle) -> None:
        if not self.release_cmd:
            return
        cmd = [part.format(name=handle.name) for part in self.release_cmd]
        try:
            subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
            logger.info(f"数据库已释放: {handle.name}")
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"数据库释放失败: {handle.name}: {e}")


@contextmanager
def database_scope(provisioner: IDatabaseProvisioner, name: str) -> Iterator[DatabaseHandle]:
    """申请数据库句柄，退出时必定释放"""
    handle = provisioner.provision(name)
    try:
        yield handle
    finally:
        provisioner.release(handle)
