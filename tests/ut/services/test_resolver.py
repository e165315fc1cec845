"""依赖解析与检出测试"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from smoker.core.exceptions import BuildError, DependencyError, ExecutionError, SourceError
from smoker.services.config_store import ConfigStore
from smoker.services.env_stack import EnvironmentStack
from smoker.services.resolver import DependencyResolver
from smoker.utils.shell import CommandResult, LocalExecutor


class RecordingExecutor:
    """记录 shell 命令及当时的环境，按命令返回预设退出码"""

    def __init__(self, failures: dict[str, int] | None = None) -> None:
        self.failures = failures or {}
        self.calls: list[dict] = []

    def execute(self, cmd, *, cwd=".", env=None, input=None, shell=False):
        self.calls.append({"cmd": cmd, "cwd": cwd, "env": dict(env or {}), "input": input})
        rc = self.failures.get(cmd, 0)
        return CommandResult(rc, "", "boom" if rc else "")

    def commands(self) -> list[str]:
        return [c["cmd"] for c in self.calls]


def repo(name: str, **extra) -> dict:
    return {"repository": {"type": "git", "uri": f"git://example.com/{name}.git"}, **extra}


def uri(name: str) -> str:
    return f"git://example.com/{name}.git"


@pytest.fixture()
def make_resolver(write_projects, context, settings, fake_sources):
    def _make(data: dict, executor=None) -> DependencyResolver:
        store = ConfigStore(write_projects(data))
        store.load()
        return DependencyResolver(
            store.projects,
            context=context,
            env_stack=EnvironmentStack(context.env),
            config_file=store.config_file,
            executor=executor or RecordingExecutor(),
            workspace_dir=settings.workspace_dir,
        )
    return _make


CHAIN = {
    "A": repo("a", configure_cmd="configure-a", dependencies=["B"]),
    "B": repo("b", configure_cmd="configure-b", dependencies=["C"], env={"B_MODE": "test"}),
    "C": repo("c", configure_cmd="configure-c", dependency_only=True),
}


class TestCheckout:
    def test_libs_order(self, make_resolver) -> None:
        resolver = make_resolver(CHAIN)
        projects = resolver.projects
        libs = resolver.checkout_project(projects["A"], "a1")
        dirs = [resolver.project_dir(projects[n]) for n in ("A", "B", "C")]
        assert libs == [str(d / "blib" / "lib") for d in dirs]

    def test_diamond_libs_deduplicated(self, make_resolver) -> None:
        data = {
            "A": repo("a", dependencies=["B", "C"]),
            "B": repo("b", dependencies=["C"]),
            "C": repo("c"),
        }
        resolver = make_resolver(data)
        libs = resolver.checkout_project(resolver.projects["A"], "a1")
        assert len(libs) == 3
        assert len(set(libs)) == 3

    def test_extra_libs(self, make_resolver) -> None:
        resolver = make_resolver({"A": repo("a", libs=["lib", "inc"])})
        project = resolver.projects["A"]
        libs = resolver.checkout_project(project, "a1")
        root = resolver.project_dir(project)
        assert libs == [str(root / "blib" / "lib"), str(root / "lib"), str(root / "inc")]

    def test_dependencies_checked_out_at_latest(self, make_resolver, fake_sources) -> None:
        resolver = make_resolver(CHAIN)
        resolver.checkout_project(resolver.projects["A"], "a1")
        assert fake_sources.created[uri("a")].called("checkout") == [("checkout", "a1")]
        assert fake_sources.created[uri("a")].called("update") == []
        dep = fake_sources.created[uri("c")]
        assert dep.called("update") == [("update",)]
        assert dep.called("checkout") == [("checkout", None)]

    def test_configure_order_and_env(self, make_resolver, context) -> None:
        executor = RecordingExecutor()
        resolver = make_resolver(CHAIN, executor)
        projects = resolver.projects
        resolver.checkout_project(projects["A"], "a1")

        assert executor.commands() == ["configure-c", "configure-b", "configure-a"]
        env_a = executor.calls[-1]["env"]
        for name in ("A", "B", "C"):
            assert env_a[f"CHIMPS_{name}_ROOT"] == str(resolver.project_dir(projects[name]))
        assert env_a["B_MODE"] == "test"
        assert env_a["PERL5LIB"].split(os.pathsep)[0] == str(
            resolver.project_dir(projects["A"]) / "blib" / "lib"
        )
        assert executor.calls[-1]["cwd"] == str(resolver.project_dir(projects["A"]))
        # 库路径只传给子进程，不写入上下文
        assert "PERL5LIB" not in context.env

    def test_clone_once(self, make_resolver, fake_sources) -> None:
        resolver = make_resolver(CHAIN)
        project = resolver.projects["A"]
        resolver.checkout_project(project, "a1")
        resolver.env_stack.pop_all()
        resolver.checkout_project(project, "a2")
        for name in ("a", "b", "c"):
            assert len(fake_sources.created[uri(name)].called("clone")) == 1


class TestFailures:
    def test_dependency_failure_stops_configure(self, make_resolver, fake_sources) -> None:
        fake_sources.options[uri("c")] = {"fail_checkout": True}
        executor = RecordingExecutor()
        resolver = make_resolver(CHAIN, executor)
        with pytest.raises(DependencyError) as exc_info:
            resolver.checkout_project(resolver.projects["A"], "a1")
        assert exc_info.value.dependency == "B"
        assert executor.calls == []

    def test_dependency_configure_failure(self, make_resolver) -> None:
        executor = RecordingExecutor({"configure-c": 2})
        resolver = make_resolver(CHAIN, executor)
        with pytest.raises(DependencyError, match="configure"):
            resolver.checkout_project(resolver.projects["A"], "a1")
        assert executor.commands() == ["configure-c"]

    def test_own_configure_failure(self, make_resolver) -> None:
        resolver = make_resolver({"A": repo("a", configure_cmd="exit 3")}, LocalExecutor())
        with pytest.raises(BuildError, match="3"):
            resolver.checkout_project(resolver.projects["A"], "a1")

    def test_cycle(self, make_resolver) -> None:
        data = {
            "A": repo("a", dependencies=["B"]),
            "B": repo("b", dependencies=["A"]),
        }
        resolver = make_resolver(data)
        with pytest.raises(DependencyError, match="依赖成环"):
            resolver.checkout_project(resolver.projects["A"], "a1")

    def test_missing_root_dir(self, make_resolver) -> None:
        resolver = make_resolver({"A": repo("a", root_dir="trunk")})
        with pytest.raises(SourceError, match="root_dir"):
            resolver.checkout_project(resolver.projects["A"], "a1")

    def test_clone_failure_removes_tmpdir(self, make_resolver, fake_sources, settings) -> None:
        fake_sources.options[uri("a")] = {"fail_clone": True}
        resolver = make_resolver({"A": repo("a")})
        with pytest.raises(SourceError):
            resolver.ensure_cloned(resolver.projects["A"])
        assert list(Path(settings.workspace_dir).iterdir()) == []
        assert resolver.source(resolver.projects["A"]).directory is None


class TestCleaner:
    @pytest.fixture()
    def cleaner(self, tmp_path: Path) -> tuple[str, Path]:
        out = tmp_path / "state.out"
        script = tmp_path / "cleaner.sh"
        script.write_text(
            "#!/bin/sh\n"
            f'if [ "$5" = "--clean" ]; then cat > "{out}"; else echo "state-$2"; fi\n'
        )
        return f"sh {script}", out

    def test_state_passed_back(self, make_resolver, fake_sources, cleaner) -> None:
        cmd, out = cleaner
        resolver = make_resolver({"A": repo("a", clean_cmd=cmd)}, LocalExecutor())
        project = resolver.projects["A"]
        resolver.checkout_project(project, "a1")
        resolver.clean_project(project)
        assert out.read_text() == "state-A\n"
        assert fake_sources.created[uri("a")].called("clean") == [("clean",)]

    def test_no_post_hook_without_state(self, make_resolver, cleaner) -> None:
        cmd, out = cleaner
        resolver = make_resolver(
            {"A": repo("a", clean_cmd=cmd, configure_cmd="false")}, LocalExecutor(),
        )
        project = resolver.projects["A"]
        with pytest.raises(BuildError):
            resolver.checkout_project(project, "a1")
        resolver.clean_project(project)
        assert not out.exists()

    def test_pre_hook_failure(self, make_resolver) -> None:
        resolver = make_resolver({"A": repo("a", clean_cmd="false")}, LocalExecutor())
        with pytest.raises(ExecutionError, match="清理器失败"):
            resolver.checkout_project(resolver.projects["A"], "a1")

    def test_clean_recurses_into_dependencies(self, make_resolver, fake_sources) -> None:
        resolver = make_resolver(CHAIN)
        resolver.checkout_project(resolver.projects["A"], "a1")
        resolver.clean_project(resolver.projects["A"])
        for name in ("a", "b", "c"):
            assert len(fake_sources.created[uri(name)].called("clean")) == 1


class TestRemoveCheckouts:
    def test_removes_all(self, make_resolver, settings) -> None:
        resolver = make_resolver(CHAIN)
        resolver.checkout_project(resolver.projects["A"], "a1")
        assert len(list(Path(settings.workspace_dir).iterdir())) == 3
        assert resolver.remove_checkouts() == 3
        assert list(Path(settings.workspace_dir).iterdir()) == []
        assert resolver.remove_checkouts() == 0
