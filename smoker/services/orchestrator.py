"""冒烟编排器 — 逐项目驱动状态机

    IDLE → CLONING → POLLING → {NO_CHANGE | CHECKING_OUT}
         → {BUILD_FAILED | TESTING} → CLEANING → REPORTING → DONE

项目严格串行处理：检出与构建共享同一份执行上下文（环境变量栈）。
单个项目的任何异常只记录日志，不影响其他项目和后续迭代。
revision 在每次尝试后立即回写，崩溃最多丢失一次迭代的进度。
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from smoker.core.config import SmokerConfig, get_config
from smoker.core.context import ExecutionContext
from smoker.core.exceptions import (
    BuildError,
    ConfigError,
    DependencyError,
    ExecutionError,
    ReportError,
    SmokerError,
    SourceError,
    TestHarnessError,
)
from smoker.core.models import (
    DependencyFailurePolicy,
    ProjectConfig,
    SmokeResult,
    SmokeState,
)
from smoker.services.config_store import ConfigStore
from smoker.services.env_stack import EnvironmentStack
from smoker.services.harness import ProveHarness, TestHarness, system_metadata
from smoker.services.reporter import ReportSender
from smoker.services.resolver import DependencyResolver
from smoker.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

# 检出阶段视为"构建失败"的异常
_BUILD_FAILURES = (SourceError, BuildError, ExecutionError)


class SmokeOrchestrator:
    """轮询 → 检出 → 构建 → 测试 → 上报

    用作上下文管理器时，退出（包括 Ctrl-C）会删除所有临时工作目录。
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        settings: SmokerConfig | None = None,
        harness: TestHarness | None = None,
        sender: ReportSender | None = None,
        context: ExecutionContext | None = None,
        executor: CommandExecutor | None = None,
        sleep_func: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        if not store.projects:
            store.load()
        self.settings = settings or get_config()
        self.context = context or ExecutionContext.from_process()
        self.env_stack = EnvironmentStack(self.context.env)
        self.resolver = DependencyResolver(
            store.projects,
            context=self.context,
            env_stack=self.env_stack,
            config_file=store.config_file,
            executor=executor,
            workspace_dir=self.settings.workspace_dir,
            workspace_prefix=self.settings.workspace_prefix,
            lib_env_var=self.settings.lib_env_var,
            git_remote=self.settings.git_remote,
        )
        self.harness = harness or ProveHarness(
            executor, output_dir=self.settings.report_dir,
        )
        if sender is None and self.settings.server:
            sender = ReportSender(self.settings.server)
        self.sender = sender
        self._sleep = sleep_func
        self.last_results: dict[str, SmokeResult] = {}

    def __enter__(self) -> SmokeOrchestrator:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.remove_checkouts()

    # =====================================================================
    # 循环驱动
    # =====================================================================

    def smoke(
        self,
        iterations: int | None = None,
        projects: Iterable[str] | None = None,
    ) -> int:
        """冒烟 iterations 轮（None 表示无限），返回实际执行的轮数

        projects 为 None 时冒烟全部项目。

        Raises:
            ConfigError: iterations 非正数，或请求了不存在的项目
        """
        names = self._select(projects)
        if iterations is not None and iterations <= 0:
            raise ConfigError(f"冒烟次数必须为正数: {iterations}")

        done = 0
        while iterations is None or done < iterations:
            self.smoke_projects(names)
            done += 1
            more = iterations is None or done < iterations
            if more and self.settings.sleep:
                self._sleep(self.settings.sleep)
        return done

    def _select(self, projects: Iterable[str] | None) -> list[str]:
        if projects is None:
            return self.store.names()
        names = list(projects)
        for name in names:
            if name not in self.store.projects:
                raise ConfigError(f"no such project: {name!r}")
        return names

    def smoke_projects(self, names: Iterable[str]) -> list[SmokeResult]:
        """依次冒烟各项目，单个项目失败不影响其余项目"""
        results = []
        for name in names:
            result = SmokeResult(project=name)
            try:
                self.smoke_once(name, result)
            except Exception as e:  # noqa: BLE001
                logger.exception("无法冒烟项目 %s (%s 阶段): %s", name, result.state.value, e,
                                 extra={"project": name})
                result.message = str(e)
            logger.debug("冒烟结果: %s", result.to_dict(), extra={"project": name})
            self.last_results[name] = result
            results.append(result)
        return results

    # =====================================================================
    # 单项目状态机
    # =====================================================================

    def smoke_once(self, name: str, result: SmokeResult | None = None) -> SmokeResult:
        """对一个项目跑一次完整状态机

        result 由调用方传入时就地更新，异常中断后仍能看到到达的状态。
        """
        project = self.store.get(name)
        if result is None:
            result = SmokeResult(project=name)

        if project.dependency_only:
            return self._transition(result, SmokeState.DONE, "仅作为依赖，不单独冒烟")

        self._transition(result, SmokeState.CLONING)
        source = self.resolver.ensure_cloned(project)

        self._transition(result, SmokeState.POLLING)
        found = source.next(project.revision)
        if found is None:
            return self._transition(result, SmokeState.NO_CHANGE)
        result.revision = found.revision
        result.committer = found.committer
        logger.info("%s 发现新版本 %s (%s)", name, found.revision, found.committer,
                    extra={"project": name})

        with self.env_stack.scope():
            self._transition(result, SmokeState.CHECKING_OUT)
            try:
                libs = self.resolver.checkout_project(project, found.revision)
            except DependencyError as e:
                advance = self.settings.policy == DependencyFailurePolicy.ADVANCE
                return self._build_failed(project, result, e, advance=advance)
            except _BUILD_FAILURES as e:
                return self._build_failed(project, result, e, advance=True)

            self._transition(result, SmokeState.TESTING)
            try:
                result.archive = self._run_tests(project, result, libs)
            except TestHarnessError as e:
                return self._build_failed(project, result, e, advance=True)

            self._transition(result, SmokeState.CLEANING)
            self._clean(project)

        self._transition(result, SmokeState.REPORTING)
        self._report(result)

        self._transition(result, SmokeState.DONE)
        logger.info("完成 %s revision %s 的冒烟", name, result.revision,
                    extra={"project": name})
        self._persist(result)
        return result

    def _run_tests(
        self, project: ProjectConfig, result: SmokeResult, libs: list[str],
    ) -> Path:
        logger.info("运行 %s 的测试", project.name, extra={"project": project.name})
        metadata: dict[str, Any] = {
            "project": project.name,
            "revision": result.revision,
            "committer": result.committer,
            **system_metadata(),
        }
        return self.harness.run(
            self.resolver.project_dir(project),
            test_glob=project.effective_test_glob,
            libs=libs,
            jobs=project.jobs or self.settings.jobs,
            metadata=metadata,
            env=self.context.environ(),
        )

    def _build_failed(
        self,
        project: ProjectConfig,
        result: SmokeResult,
        error: SmokerError,
        *,
        advance: bool,
    ) -> SmokeResult:
        """构建失败: 跳过测试和上报，按策略推进 revision，避免反复重试同一坏版本"""
        self._transition(result, SmokeState.BUILD_FAILED, str(error))
        logger.warning("跳过 %s revision %s 的报告: 构建失败 (%s)",
                       project.name, result.revision, error,
                       extra={"project": project.name})
        self._clean(project)
        if advance:
            self._persist(result)
        else:
            logger.info("依赖失败，%s 保持 revision %s，下次轮询重试",
                        project.name, project.revision)
        return result

    def _clean(self, project: ProjectConfig) -> None:
        try:
            self.resolver.clean_project(project)
        except SmokerError as e:
            logger.warning("清理 %s 失败: %s", project.name, e,
                           extra={"project": project.name})

    def _report(self, result: SmokeResult) -> None:
        """上报报告；失败只记录日志，不阻止 revision 回写"""
        if result.archive is None:
            return
        try:
            if self.sender is None:
                logger.info("未指定服务端，不上传报告")
                return
            try:
                ok, message = self.sender.send(result.archive)
            except ReportError as e:
                ok, message = False, str(e)
            result.reported = ok
            if not ok:
                result.message = message
                logger.error("服务端返回错误: %s", message,
                             extra={"project": result.project})
        finally:
            if not self.settings.keep_reports:
                result.archive.unlink(missing_ok=True)

    def _persist(self, result: SmokeResult) -> None:
        result.persisted = self.store.update_revision(result.project, result.revision)

    @staticmethod
    def _transition(
        result: SmokeResult, state: SmokeState, message: str = "",
    ) -> SmokeResult:
        logger.debug("%s: %s -> %s", result.project, result.state.value, state.value)
        result.state = state
        if message:
            result.message = message
        return result

    # =====================================================================
    # 清理
    # =====================================================================

    def remove_checkouts(self) -> int:
        """删除所有临时工作目录"""
        self.env_stack.pop_all()
        return self.resolver.remove_checkouts()
