"""冒烟命令：smoke, projects"""

from __future__ import annotations

import click

from smoker.core.config import init_config
from smoker.core.exceptions import ConfigError, ValidationError
from smoker.services.config_store import ConfigStore
from smoker.services.orchestrator import SmokeOrchestrator


def register(main: click.Group) -> None:
    """注册冒烟相关命令"""
    main.add_command(smoke)
    main.add_command(list_projects)


def _parse_iterations(value: str) -> int | None:
    if value == "inf":
        return None
    try:
        return int(value)
    except ValueError:
        raise click.BadParameter(f"必须是正整数或 inf: {value}") from None


@click.command()
@click.option("--config", "-c", "config_file", required=True,
              type=click.Path(exists=True, dir_okay=False), help="项目清单 YAML 文件")
@click.option("--server", "-s", default=None, help="冒烟报告服务端 URL（不指定则只跑测试不上传）")
@click.option("--iterations", "-n", default="inf", show_default=True, help="冒烟轮数，inf 为无限")
@click.option("--sleep", type=int, default=None, help="两轮之间的间隔秒数（默认 60）")
@click.option("--jobs", "-j", type=int, default=None, help="测试并行度")
@click.option("--project", "-p", "projects", multiple=True, help="只冒烟指定项目（可多次指定）")
@click.option("--settings", default="", help="运行配置 YAML 文件")
def smoke(
    config_file: str, server: str | None, iterations: str, sleep: int | None,
    jobs: int | None, projects: tuple[str, ...], settings: str,
) -> None:
    """轮询代码仓，发现新版本即检出、构建、测试并上报"""
    count = _parse_iterations(iterations)
    try:
        cfg = init_config(settings, server=server, sleep=sleep, jobs=jobs)
        store = ConfigStore(config_file)
        store.load()
        with SmokeOrchestrator(store, settings=cfg) as orchestrator:
            done = orchestrator.smoke(
                iterations=count,
                projects=list(projects) or None,
            )
    except (ConfigError, ValidationError) as e:
        raise click.ClickException(str(e)) from e
    except KeyboardInterrupt:
        click.echo("收到中断信号，已清理临时目录", err=True)
        raise SystemExit(1) from None
    click.echo(f"完成 {done} 轮冒烟")


@click.command(name="projects")
@click.option("--config", "-c", "config_file", required=True,
              type=click.Path(exists=True, dir_okay=False), help="项目清单 YAML 文件")
def list_projects(config_file: str) -> None:
    """列出清单中的项目及其当前 revision"""
    store = ConfigStore(config_file)
    try:
        projects = store.load()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    for p in projects.values():
        deps = ",".join(p.dependencies) or "-"
        flag = " (dependency only)" if p.dependency_only else ""
        click.echo(
            f"  {p.name:20s} [{p.repository.type:4s}] rev={p.revision!s:12s} "
            f"deps=[{deps}]{flag}"
        )
