"""执行上下文 — 显式携带工作目录与环境变量

检出、构建、测试都从上下文取 cwd / env 传给子进程，
不修改进程级 os.environ 和当前目录。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class ExecutionContext:
    """一次冒烟运行的执行上下文

    env 是完整的环境变量副本，EnvironmentStack 在其上压栈/出栈。
    """

    cwd: Path = field(default_factory=Path.cwd)
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_process(cls) -> ExecutionContext:
        """以当前进程的目录和环境为基线创建上下文"""
        return cls(cwd=Path.cwd(), env=dict(os.environ))

    def environ(self, **extra: str) -> dict[str, str]:
        """返回传给子进程的环境变量（可追加临时变量，不影响上下文本身）"""
        env = dict(self.env)
        env.update(extra)
        return env

    def prepend_path(self, var: str, paths: list[str]) -> dict[str, str]:
        """返回把 paths 前置到路径类变量 var 后的环境副本"""
        current = self.env.get(var, "")
        parts = list(paths) + ([current] if current else [])
        return self.environ(**{var: os.pathsep.join(parts)})
