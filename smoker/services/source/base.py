"""代码仓来源公共接口

每种 VCS 实现一个子类，只依赖自己的 RepositorySpec 和工作目录，
不回引编排器。能力集: clone / checkout / clean / update / revision_after / committer,
轮询入口 next() 由基类统一实现。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from smoker.core.context import ExecutionContext
from smoker.core.exceptions import ExecutionError, SourceError
from smoker.core.models import Checkout, NextRevision, RepositorySpec
from smoker.utils.shell import CommandExecutor, CommandResult, run_cmd

logger = logging.getLogger(__name__)


class RepositorySource(ABC):
    """代码仓来源抽象基类"""

    type_name: str = ""  # create_source 按此标签登记
    command: str = ""

    def __init__(
        self,
        spec: RepositorySpec,
        *,
        context: ExecutionContext | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.spec = spec
        self.context = context or ExecutionContext.from_process()
        self.state = Checkout()
        self._executor = executor

    # ------------------------------------------------------------------
    # 工作目录状态
    # ------------------------------------------------------------------

    @property
    def directory(self) -> Path | None:
        return self.state.directory

    @directory.setter
    def directory(self, value: Path | None) -> None:
        self.state.directory = value

    @property
    def cloned(self) -> bool:
        return self.state.cloned

    @cloned.setter
    def cloned(self, value: bool) -> None:
        self.state.cloned = value

    def reset(self) -> None:
        """工作目录被删除后恢复到未 clone 状态"""
        self.state = Checkout()

    # ------------------------------------------------------------------
    # VCS 能力
    # ------------------------------------------------------------------

    @abstractmethod
    def clone(self) -> None:
        """把远端仓库检出到 self.directory（目录已存在且为空）"""

    @abstractmethod
    def checkout(self, revision: Any = None) -> None:
        """切换到指定版本，None 表示最新版本"""

    @abstractmethod
    def clean(self) -> None:
        """清理构建产物，恢复到可再次检出的状态"""

    @abstractmethod
    def revision_after(self, revision: Any) -> Any:
        """返回 revision 之后的下一个版本，没有则返回 None"""

    @abstractmethod
    def committer(self, revision: Any = None) -> str:
        """返回该版本的作者（None 表示远端最新版本）"""

    def update(self) -> None:
        """同步远端信息（默认无需同步）"""

    def next(self, current: Any) -> NextRevision | None:
        """轮询: 查找 current 之后的新版本，找不到时同步远端后再试一次"""
        revision = self.revision_after(current)
        if revision is None:
            self.update()
            revision = self.revision_after(current)
            if revision is None:
                return None
        return NextRevision(revision=revision, committer=self.committer(revision))

    # ------------------------------------------------------------------
    # 命令执行
    # ------------------------------------------------------------------

    def _workdir(self) -> Path:
        if self.directory is None:
            raise SourceError(f"{self.spec.uri} 尚未分配工作目录")
        return self.directory

    def run(self, *args: str, cwd: Path | None = None) -> CommandResult:
        """在工作目录中执行 VCS 命令，失败统一转换为 SourceError"""
        workdir = cwd if cwd is not None else self._workdir()
        try:
            return run_cmd(
                [self.command, *args], cwd=str(workdir),
                env=self.context.environ(), label=f"{self.command} {args[0]}",
                executor=self._executor,
            )
        except ExecutionError as e:
            raise SourceError(f"{self.spec.uri}: {e}") from e

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.spec.uri} dir={self.directory}>"
