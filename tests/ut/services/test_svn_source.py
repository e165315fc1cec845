"""SubversionSource 测试（注入假执行器）"""

from __future__ import annotations

from pathlib import Path

import pytest

from smoker.core.context import ExecutionContext
from smoker.core.exceptions import ConfigError, SourceError
from smoker.core.models import RepositorySpec
from smoker.services.source import SubversionSource, create_source
from smoker.utils.shell import CommandResult


class FakeSvn:
    """按子命令返回预设输出的执行器"""

    def __init__(self, head: int = 10, log: str = "", fail: str = "") -> None:
        self.head = head
        self.log = log
        self.fail = fail
        self.calls: list[list[str]] = []

    def execute(self, cmd, *, cwd=".", env=None, input=None, shell=False):
        self.calls.append(list(cmd))
        sub = cmd[1]
        if sub == self.fail:
            return CommandResult(1, "", "svn: E170000: URL doesn't exist")
        if sub == "info":
            return CommandResult(0, f"{self.head}\n", "")
        if sub == "log":
            return CommandResult(0, self.log, "")
        return CommandResult(0, "", "")


URI = "svn+ssh://svn.example.com/svn/jifty"


@pytest.fixture()
def make_source(tmp_path: Path):
    def _make(fake: FakeSvn) -> SubversionSource:
        src = create_source(
            RepositorySpec("SVN", URI),
            context=ExecutionContext(cwd=tmp_path, env={}),
            executor=fake, remote="origin",
        )
        assert isinstance(src, SubversionSource)
        src.directory = tmp_path / "work"
        return src
    return _make


class TestRevisionAfter:
    def test_next_number(self, make_source) -> None:
        src = make_source(FakeSvn(head=12))
        assert src.revision_after(10) == 11
        assert src.revision_after("r11") == 12

    def test_at_head(self, make_source) -> None:
        assert make_source(FakeSvn(head=12)).revision_after(12) is None

    def test_none_means_head(self, make_source) -> None:
        assert make_source(FakeSvn(head=7)).revision_after(None) == 7

    def test_bad_revision(self, make_source) -> None:
        with pytest.raises(SourceError, match="非法的 SVN 版本号"):
            make_source(FakeSvn()).revision_after("abc")

    def test_unparsable_head(self, make_source) -> None:
        fake = FakeSvn()
        fake.head = "garbage"  # type: ignore[assignment]
        with pytest.raises(SourceError, match="HEAD"):
            make_source(fake).revision_after(1)


class TestCommands:
    def test_checkout_uses_update(self, make_source) -> None:
        fake = FakeSvn()
        src = make_source(fake)
        src.checkout(5)
        src.checkout(None)
        assert fake.calls == [
            ["svn", "update", "-q", "-r", "5"],
            ["svn", "update", "-q", "-r", "HEAD"],
        ]

    def test_clone(self, make_source, tmp_path: Path) -> None:
        fake = FakeSvn()
        make_source(fake).clone()
        assert fake.calls == [["svn", "checkout", "-q", URI, str(tmp_path / "work")]]

    def test_committer(self, make_source) -> None:
        log = (
            "------------------------------------------------------------------------\n"
            "r11 | sartak | 2008-03-01 12:00:00 -0500 (Sat, 01 Mar 2008)\n"
            "------------------------------------------------------------------------\n"
        )
        fake = FakeSvn(log=log)
        assert make_source(fake).committer(11) == "sartak"
        assert fake.calls[0] == ["svn", "log", "-q", "-r", "11", URI]

    def test_committer_empty_log(self, make_source) -> None:
        assert make_source(FakeSvn(log="")).committer(11) == ""

    def test_failure_becomes_source_error(self, make_source) -> None:
        with pytest.raises(SourceError, match=URI):
            make_source(FakeSvn(fail="update")).checkout(3)

    def test_next_returns_committer(self, make_source) -> None:
        log = "r4 | bob | 2024-01-01 00:00:00 +0000 (Mon, 01 Jan 2024)\n"
        found = make_source(FakeSvn(head=4, log=log)).next(3)
        assert found is not None
        assert (found.revision, found.committer) == (4, "bob")


class TestCreateSource:
    @pytest.mark.parametrize("kind,cls", [
        ("svn", SubversionSource),
        ("Subversion", SubversionSource),
    ])
    def test_type_tags(self, kind, cls) -> None:
        src = create_source(RepositorySpec(kind, URI), context=ExecutionContext(env={}))
        assert type(src) is cls
        assert src.type_name == "svn"

    def test_unknown_type(self) -> None:
        with pytest.raises(ConfigError, match="不支持的代码仓类型"):
            create_source(RepositorySpec("cvs", URI))
