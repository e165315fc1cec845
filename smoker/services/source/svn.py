"""Subversion 代码仓来源"""

from __future__ import annotations

import logging
import re
from typing import Any

from smoker.core.exceptions import SourceError
from smoker.core.models import REPO_SVN
from smoker.services.source.base import RepositorySource

logger = logging.getLogger(__name__)

# svn log -q 输出: r1234 | author | 2024-01-01 12:00:00 +0800 (...)
_LOG_LINE_RE = re.compile(r"^r(\d+)\s+\|\s+([^|]*?)\s+\|", re.MULTILINE)


class SubversionSource(RepositorySource):
    """Subversion 仓库来源

    revision 为整数，下一个版本即 current + 1（不超过远端 HEAD）。
    远端 HEAD 每次实时查询，update() 无需做任何事。
    """

    type_name = REPO_SVN
    command = "svn"

    def clone(self) -> None:
        workdir = self._workdir()
        self.run("checkout", "-q", self.spec.uri, str(workdir), cwd=workdir.parent)
        logger.info("SVN 已检出: %s -> %s", self.spec.uri, workdir)

    def checkout(self, revision: Any = None) -> None:
        target = "HEAD" if revision is None else str(self._number(revision))
        self.run("update", "-q", "-r", target)

    def clean(self) -> None:
        self.run("revert", "-R", "-q", ".")
        self.run("cleanup", "--remove-unversioned")

    def head(self) -> int:
        """远端 HEAD 版本号"""
        out = self.run(
            "info", "--show-item", "revision", self.spec.uri,
            cwd=self.directory or self.context.cwd,
        ).stdout.strip()
        try:
            return int(out)
        except ValueError as e:
            raise SourceError(f"无法解析 HEAD 版本号: {out!r}") from e

    def revision_after(self, revision: Any) -> Any:
        head = self.head()
        if revision is None:
            return head
        candidate = self._number(revision) + 1
        return candidate if candidate <= head else None

    def committer(self, revision: Any = None) -> str:
        target = "HEAD" if revision is None else str(self._number(revision))
        out = self.run(
            "log", "-q", "-r", target, self.spec.uri,
            cwd=self.directory or self.context.cwd,
        ).stdout
        m = _LOG_LINE_RE.search(out)
        # 该版本未改动本路径时 svn log 为空
        return m.group(2) if m else ""

    @staticmethod
    def _number(revision: Any) -> int:
        try:
            return int(str(revision).lstrip("r"))
        except ValueError as e:
            raise SourceError(f"非法的 SVN 版本号: {revision!r}") from e
