"""Git 代码仓来源"""

from __future__ import annotations

import logging
import re
from typing import Any

from smoker.core.exceptions import SourceError
from smoker.core.models import REPO_GIT, RepositorySpec
from smoker.services.source.base import RepositorySource

logger = logging.getLogger(__name__)

_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9_./@^~\-]+$")


class GitSource(RepositorySource):
    """Git 仓库来源

    revision 为 commit hash。"下一个版本"以远端跟踪分支为准，
    update() 只 fetch，不改动本地分支。
    """

    type_name = REPO_GIT
    command = "git"

    def __init__(
        self, spec: RepositorySpec, *, remote: str = "origin", **kwargs: Any,
    ) -> None:
        super().__init__(spec, **kwargs)
        self.remote = remote
        self._default_branch = ""

    def clone(self) -> None:
        workdir = self._workdir()
        self.run("clone", "-q", "-o", self.remote, self.spec.uri, str(workdir),
                 cwd=workdir.parent)
        self._default_branch = self.run(
            "rev-parse", "--abbrev-ref", "HEAD",
        ).stdout.strip()
        logger.info("Git 已 clone: %s -> %s (branch=%s)",
                    self.spec.uri, workdir, self._default_branch)

    def checkout(self, revision: Any = None) -> None:
        if revision is None:
            self.run("checkout", "-q", "--detach", self.remote)
            return
        self.run("checkout", "-q", self._ref(revision))

    def clean(self) -> None:
        self.run("clean", "-fdq")
        if self._default_branch:
            self.run("checkout", "-q", self._default_branch)

    def update(self) -> None:
        self.run("fetch", "-q", self.remote)

    def revision_after(self, revision: Any) -> Any:
        """返回远端上 revision 之后最早的一个提交

        历史中存在菱形合并时:

               H
            B1   B2
               R

        `git log B1..H` 总包含 B2，`git log B2..H` 又总包含 B1，
        单纯按可达性查找会在 B1/B2 之间来回跳。
        因此只考虑提交时间不早于 revision 的提交，代价是侧分支上
        更早的提交可能被跳过。
        """
        if revision is None:
            return self.run("rev-parse", self.remote).stdout.strip() or None

        ref = self._ref(revision)
        out = self.run("log", "-n1", "--format=%ct%n%ci", ref).stdout.splitlines()
        if len(out) != 2:
            raise SourceError(f"无法读取提交时间: {revision}")
        since_ts, since_date = int(out[0]), out[1]

        log = self.run(
            "log", "--reverse", f"--since={since_date}", "--format=%H %ct",
            f"{ref}..{self.remote}",
        ).stdout
        for line in log.splitlines():
            sha, _, ts = line.partition(" ")
            if sha and ts and int(ts) >= since_ts:
                return sha
        return None

    def committer(self, revision: Any = None) -> str:
        ref = self._ref(revision) if revision is not None else self.remote
        return self.run("log", "-n1", "--format=%an <%ae>", ref).stdout.strip()

    @staticmethod
    def _ref(revision: Any) -> str:
        ref = str(revision)
        if not _SAFE_REF_RE.match(ref) or ref.startswith("-"):
            raise SourceError(f"revision 包含非法字符: {ref}")
        return ref
