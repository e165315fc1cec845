"""共享 fixture — 内存代码仓来源 + 项目清单生成

FakeSource 以列表模拟版本历史，clone 时在工作目录生成一个最小的 Perl 项目骨架，
resolver 中的 create_source 被替换为按 uri 取配置的工厂，无需真实 VCS。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import yaml

from smoker.core.config import SmokerConfig, reset_config
from smoker.core.context import ExecutionContext
from smoker.core.exceptions import SourceError
from smoker.services.source.base import RepositorySource


class FakeSource(RepositorySource):
    """按列表给出版本历史的内存来源"""

    type_name = "fake"

    def __init__(
        self,
        spec,
        *,
        revisions: list[Any] | None = None,
        pending: list[Any] | None = None,
        fail_clone: bool = False,
        fail_checkout: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(spec, **kwargs)
        self.revisions = list(revisions or [])
        self.pending = list(pending or [])
        self.fail_clone = fail_clone
        self.fail_checkout = fail_checkout
        self.calls: list[tuple[Any, ...]] = []

    def clone(self) -> None:
        self.calls.append(("clone",))
        if self.fail_clone:
            raise SourceError(f"clone 失败: {self.spec.uri}")
        tdir = self._workdir() / "t"
        tdir.mkdir(parents=True)
        (tdir / "basic.t").write_text("print qq{1..1\\nok 1\\n};\n")

    def checkout(self, revision: Any = None) -> None:
        self.calls.append(("checkout", revision))
        if self.fail_checkout:
            raise SourceError(f"checkout 失败: {self.spec.uri}@{revision}")

    def clean(self) -> None:
        self.calls.append(("clean",))

    def update(self) -> None:
        self.calls.append(("update",))
        self.revisions.extend(self.pending)
        self.pending.clear()

    def revision_after(self, revision: Any) -> Any:
        self.calls.append(("revision_after", revision))
        if revision is None:
            return self.revisions[-1] if self.revisions else None
        idx = self.revisions.index(revision)
        return self.revisions[idx + 1] if idx + 1 < len(self.revisions) else None

    def committer(self, revision: Any = None) -> str:
        return "alice <alice@example.com>"

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]


@dataclass
class FakeSourceRegistry:
    """按 uri 配置 / 检查 FakeSource"""

    options: dict[str, dict[str, Any]] = field(default_factory=dict)
    created: dict[str, FakeSource] = field(default_factory=dict)


@pytest.fixture()
def fake_sources(monkeypatch) -> FakeSourceRegistry:
    registry = FakeSourceRegistry()

    def factory(spec, **kwargs: Any) -> FakeSource:
        kwargs.pop("remote", None)
        src = FakeSource(spec, **registry.options.get(spec.uri, {}), **kwargs)
        registry.created[spec.uri] = src
        return src

    monkeypatch.setattr("smoker.services.resolver.create_source", factory)
    return registry


@pytest.fixture()
def write_projects(tmp_path: Path):
    """写项目清单 YAML，返回文件路径"""

    def _write(data: dict[str, Any], name: str = "projects.yml") -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def context(tmp_path: Path) -> ExecutionContext:
    """只带 PATH 的干净执行上下文"""
    return ExecutionContext(cwd=tmp_path, env={"PATH": os.environ.get("PATH", "")})


@pytest.fixture()
def settings(tmp_path: Path) -> SmokerConfig:
    return SmokerConfig(
        sleep=0,
        workspace_dir=str(tmp_path / "ws"),
        report_dir=str(tmp_path / "reports"),
    )


@pytest.fixture(autouse=True)
def _reset_global_config():
    yield
    reset_config()
