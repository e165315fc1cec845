"""Shell 命令执行工具 — 统一子进程调用

VCS、configure、clean_cmd、prove 全部经由 CommandExecutor 执行，
测试时注入假执行器即可，无需 patch subprocess。
命令不设超时：卡死的子进程由外层运维包装处理。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from smoker.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        input: str | None = None,  # noqa: A002
        shell: bool = False,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


# =========================================================================
# 默认实现: 本地执行器
# =========================================================================

class LocalExecutor:
    """本地命令执行器（默认实现）

    shell=True 时字符串命令交给 /bin/sh，支持 `&&`、重定向等写法；
    否则字符串按 shlex 拆分。找不到可执行文件时返回 127。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        input: str | None = None,  # noqa: A002
        shell: bool = False,
    ) -> CommandResult:
        if shell:
            args: str | list[str] = cmd if isinstance(cmd, str) else shlex.join(cmd)
        else:
            args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        try:
            r = subprocess.run(
                args, capture_output=True, text=True, input=input,
                encoding="utf-8", errors="replace",
                cwd=cwd, env=env, check=False, shell=shell,  # noqa: S602
            )
        except FileNotFoundError as e:
            return CommandResult(returncode=127, stdout="", stderr=str(e))
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )


# =========================================================================
# 全局默认执行器
# =========================================================================

_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


# =========================================================================
# 便捷函数
# =========================================================================

def run_cmd(
    cmd: str | list[str], *, cwd: str = ".",
    env: dict[str, str] | None = None,
    label: str = "cmd",
    input: str | None = None,  # noqa: A002
    shell: bool = False,
    executor: CommandExecutor | None = None,
) -> CommandResult:
    """执行命令，失败抛 ExecutionError

    Args:
        cmd: 命令字符串或参数列表
        cwd: 工作目录
        env: 环境变量（不传则继承当前进程）
        label: 日志标签
        input: 写入子进程 stdin 的文本
        shell: 是否经由 shell 执行
        executor: 执行器（不传则使用全局默认）
    """
    shown = cmd if isinstance(cmd, str) else shlex.join(cmd)
    logger.info("  %s: %s (cwd=%s)", label, shown, cwd)
    r = (executor or get_executor()).execute(
        cmd, cwd=cwd, env=env, input=input, shell=shell,
    )
    if not r.success:
        logger.debug("  %s stdout:\n%s", label, r.stdout)
        raise ExecutionError(f"{label}失败 (rc={r.returncode}): {r.stderr[:500]}")
    return r
