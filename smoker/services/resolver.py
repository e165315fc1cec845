"""依赖感知的检出协调器

职责:
- 为每个项目惰性创建代码仓来源并 clone（每个来源最多 clone 一次）
- 递归检出项目及其依赖，汇总库路径
- 压入项目环境变量，执行 configure / clean_cmd
- 删除临时工作目录
"""

from __future__ import annotations

import logging
import shlex
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from smoker.core.context import ExecutionContext
from smoker.core.exceptions import (
    BuildError,
    DependencyError,
    ExecutionError,
    SmokerError,
    SourceError,
)
from smoker.core.models import ProjectConfig
from smoker.services.env_stack import EnvironmentStack
from smoker.services.source import RepositorySource, create_source
from smoker.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)

BLIB_DIR = "blib/lib"


class DependencyResolver:
    """项目检出与依赖解析"""

    def __init__(
        self,
        projects: Mapping[str, ProjectConfig],
        *,
        context: ExecutionContext,
        env_stack: EnvironmentStack,
        config_file: str | Path = "",
        executor: CommandExecutor | None = None,
        workspace_dir: str = "",
        workspace_prefix: str = "chimps-",
        lib_env_var: str = "PERL5LIB",
        git_remote: str = "origin",
    ) -> None:
        self.projects = projects
        self.context = context
        self.env_stack = env_stack
        self.config_file = str(config_file)
        self.executor = executor or get_executor()
        self.workspace_dir = workspace_dir
        self.workspace_prefix = workspace_prefix
        self.lib_env_var = lib_env_var
        self.git_remote = git_remote
        self._sources: dict[str, RepositorySource] = {}
        # clean_cmd 预处理阶段输出的状态文本，测试后回灌给 --clean
        self._cleaner_state: dict[str, str] = {}

    # =====================================================================
    # 来源与工作目录
    # =====================================================================

    def source(self, project: ProjectConfig) -> RepositorySource:
        """获取项目的代码仓来源（首次调用时创建）"""
        src = self._sources.get(project.name)
        if src is None:
            src = create_source(
                project.repository, context=self.context,
                executor=self.executor, remote=self.git_remote,
            )
            self._sources[project.name] = src
        return src

    def ensure_cloned(self, project: ProjectConfig) -> RepositorySource:
        """确保项目已 clone 到临时工作目录（幂等）"""
        src = self.source(project)
        if src.cloned:
            return src

        if self.workspace_dir:
            Path(self.workspace_dir).mkdir(parents=True, exist_ok=True)
        tmpdir = Path(tempfile.mkdtemp(
            prefix=self.workspace_prefix, dir=self.workspace_dir or None,
        ))
        src.directory = tmpdir
        logger.info("clone %s -> %s", project.name, tmpdir)
        try:
            src.clone()
        except SmokerError:
            _remove_tmpdir(tmpdir)
            src.reset()
            raise
        src.cloned = True
        return src

    def project_dir(self, project: ProjectConfig) -> Path:
        """项目在工作目录中的根（checkout 目录 + root_dir）"""
        src = self.source(project)
        if src.directory is None:
            raise SourceError(f"{project.name} 尚未检出")
        return src.directory / project.root_dir

    # =====================================================================
    # 检出
    # =====================================================================

    def checkout_project(
        self,
        project: ProjectConfig,
        revision: Any = None,
        *,
        _chain: tuple[str, ...] = (),
    ) -> list[str]:
        """检出项目及其全部依赖并执行 configure

        revision 为 None 时检出最新版本（依赖总是如此）。
        返回去重后的库路径列表（自身在前，依赖按声明顺序在后）。

        Raises:
            SourceError: 检出失败或 root_dir 不存在
            BuildError: configure 命令返回非零
            DependencyError: 任一传递依赖失败，或依赖成环
        """
        if project.name in _chain:
            cycle = " -> ".join((*_chain, project.name))
            raise DependencyError(f"依赖成环: {cycle}", dependency=project.name)
        chain = (*_chain, project.name)

        src = self.ensure_cloned(project)
        if revision is None:
            src.update()
        src.checkout(revision)

        project_dir = self.project_dir(project)
        libs = [str(project_dir / BLIB_DIR)]
        libs.extend(str(project_dir / lib) for lib in project.libs)

        self.env_stack.push({
            **project.env,
            project.root_env_var: str(project_dir),
        })

        dep_libs: list[str] = []
        for dep_name in project.dependencies:
            logger.info("处理依赖 %s (被 %s 依赖)", dep_name, project.name)
            dep = self.projects.get(dep_name)
            if dep is None:
                raise DependencyError(f"依赖的项目未定义: {dep_name}", dependency=dep_name)
            try:
                dep_libs.extend(self.checkout_project(dep, _chain=chain))
            except SmokerError as e:
                logger.error("依赖 %s 失败，放弃 %s: %s", dep_name, project.name, e)
                raise DependencyError(
                    f"{project.name} 的依赖 {dep_name} 失败: {e}", dependency=dep_name,
                ) from e

        merged = list(dict.fromkeys(libs + dep_libs))

        if not project_dir.is_dir():
            raise SourceError(
                f"项目目录不存在 {project_dir}，请检查 root_dir 配置"
            )

        env = self.context.prepend_path(self.lib_env_var, merged)
        if project.configure_cmd:
            self._configure(project, project_dir, env)
        if project.clean_cmd:
            self._run_cleaner(project, project_dir, env)
        return merged

    def _configure(
        self, project: ProjectConfig, project_dir: Path, env: dict[str, str],
    ) -> None:
        cmd = project.configure_cmd or ""
        logger.info("configure %s: %s (cwd=%s)", project.name, cmd, project_dir)
        r = self.executor.execute(cmd, cwd=str(project_dir), env=env, shell=True)
        if not r.success:
            logger.error("configure 失败 %s (rc=%s):\n%s",
                         project.name, r.returncode, r.stderr[-2000:])
            raise BuildError(
                f"{project.name}: configure 返回 {r.returncode}: {cmd}"
            )

    def _cleaner_cmd(self, project: ProjectConfig, *extra: str) -> str:
        args = ["--project", project.name, "--config", self.config_file, *extra]
        return " ".join([project.clean_cmd or "", *(shlex.quote(a) for a in args)])

    def _run_cleaner(
        self, project: ProjectConfig, project_dir: Path, env: dict[str, str],
    ) -> None:
        """测试前调用 clean_cmd，保存其 stdout 供测试后回灌"""
        cmd = self._cleaner_cmd(project)
        logger.info("运行项目清理器 %s", cmd)
        r = self.executor.execute(cmd, cwd=str(project_dir), env=env, shell=True)
        if not r.success:
            raise ExecutionError(f"清理器失败 (rc={r.returncode}): {cmd}")
        self._cleaner_state[project.name] = r.stdout

    # =====================================================================
    # 清理
    # =====================================================================

    def clean_project(
        self, project: ProjectConfig, *, _seen: set[str] | None = None,
    ) -> None:
        """测试后清理: clean_cmd --clean（回灌状态）、VCS clean、递归清理依赖"""
        seen = _seen if _seen is not None else set()
        if project.name in seen:
            return
        seen.add(project.name)

        src = self.source(project)
        # 预处理阶段没跑过清理器（如 configure 失败）时不做 --clean
        if project.clean_cmd and src.cloned and project.name in self._cleaner_state:
            cmd = self._cleaner_cmd(project, "--clean")
            cwd = self.project_dir(project)
            r = self.executor.execute(
                cmd, cwd=str(cwd if cwd.is_dir() else src.directory),
                env=self.context.environ(), shell=True,
                input=self._cleaner_state.pop(project.name, ""),
            )
            if not r.success:
                raise ExecutionError(f"清理器失败 (rc={r.returncode}): {cmd}")
        if src.cloned:
            src.clean()

        for dep_name in project.dependencies:
            dep = self.projects.get(dep_name)
            if dep is not None:
                self.clean_project(dep, _seen=seen)

    def remove_checkouts(self) -> int:
        """删除所有临时工作目录，返回删除的数量"""
        count = 0
        for src in self._sources.values():
            if src.directory is None:
                continue
            _remove_tmpdir(src.directory)
            src.reset()
            count += 1
        return count


def _remove_tmpdir(path: Path) -> None:
    logger.info("删除临时目录 %s", path)
    shutil.rmtree(path, ignore_errors=True)
