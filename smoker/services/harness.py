"""测试执行器 — 调用 prove 生成 TAP 归档

归档为 TAP::Harness::Archive 格式的 tar.gz，冒烟元信息
（project / revision / committer / osname / osvers / archname）
写入归档内 meta.yml 的 extra_properties。
测试本身失败不算执行器错误；prove 无法运行、没有产出归档或归档无法处理时才抛 TestHarnessError。
"""

from __future__ import annotations

import glob
import io
import logging
import os
import platform
import tarfile
import tempfile
from pathlib import Path
from typing import Any, Protocol

import yaml

from smoker.core.exceptions import TestHarnessError
from smoker.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)

META_FILE = "meta.yml"


def system_metadata() -> dict[str, str]:
    """报告中的主机信息"""
    return {
        "osname": platform.system().lower(),
        "osvers": platform.release(),
        "archname": platform.machine(),
    }


def expand_test_glob(workdir: Path, test_glob: str) -> list[str]:
    """按空格分隔的 glob 列表在 workdir 下展开测试文件（保持声明顺序）

    相对模式返回相对 workdir 的路径；绝对模式照常展开，落在 workdir 内的结果同样转为相对路径。
    """
    found: list[str] = []
    for pattern in test_glob.split():
        for match in sorted(glob.glob(pattern, root_dir=workdir)):
            path = Path(match) if os.path.isabs(match) else workdir / match
            if not path.is_file():
                continue
            try:
                rel = path.relative_to(workdir).as_posix()
            except ValueError:
                rel = path.as_posix()
            if rel not in found:
                found.append(rel)
    return found


class TestHarness(Protocol):
    """测试执行器协议: 在工作目录运行测试，返回报告归档路径"""

    def run(
        self,
        workdir: Path,
        *,
        test_glob: str,
        libs: list[str],
        jobs: int,
        metadata: dict[str, Any],
        env: dict[str, str] | None = None,
    ) -> Path:
        ...


class ProveHarness:
    """基于 prove -a 的默认测试执行器"""

    __test__ = False

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        *,
        prove: str = "prove",
        output_dir: str = "",
    ) -> None:
        self.executor = executor or get_executor()
        self.prove = prove
        self.output_dir = output_dir

    def run(
        self,
        workdir: Path,
        *,
        test_glob: str,
        libs: list[str],
        jobs: int,
        metadata: dict[str, Any],
        env: dict[str, str] | None = None,
    ) -> Path:
        tests = expand_test_glob(workdir, test_glob)
        if not tests:
            raise TestHarnessError(f"没有匹配 {test_glob!r} 的测试文件: {workdir}")

        if self.output_dir:
            Path(self.output_dir).mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            prefix="chimps-report-", suffix=".tar.gz", dir=self.output_dir or None,
        )
        os.close(fd)
        archive = Path(tmp)

        args = [self.prove, "-j", str(max(1, jobs))]
        for lib in libs:
            args.extend(["-I", lib])
        args.extend(["-a", str(archive), *tests])

        logger.info("运行测试 %s: %d 个文件 (jobs=%d)", workdir, len(tests), jobs)
        r = self.executor.execute(args, cwd=str(workdir), env=env)
        if r.returncode == 127:
            archive.unlink(missing_ok=True)
            raise TestHarnessError(f"无法运行 {self.prove}: {r.stderr.strip()}")
        if not r.success:
            logger.warning("prove 返回 %d（测试失败会记录在报告中）", r.returncode)
        if not archive.exists() or archive.stat().st_size == 0:
            archive.unlink(missing_ok=True)
            raise TestHarnessError(f"prove 没有生成报告归档: {r.stderr[-500:]}")

        try:
            add_archive_metadata(archive, metadata)
        except TestHarnessError:
            archive.unlink(missing_ok=True)
            raise
        return archive


def add_archive_metadata(archive: Path, metadata: dict[str, Any]) -> None:
    """把 metadata 合并进归档中 meta.yml 的 extra_properties"""
    try:
        with tarfile.open(archive, "r:gz") as tf:
            members = [
                (m, tf.extractfile(m).read() if m.isfile() else None)  # type: ignore[union-attr]
                for m in tf.getmembers()
            ]
    except (OSError, tarfile.TarError) as e:
        raise TestHarnessError(f"无法读取报告归档 {archive}: {e}") from e

    meta_member = None
    meta: dict[str, Any] = {}
    for member, data in members:
        if Path(member.name).name == META_FILE and data is not None:
            meta_member = member
            try:
                meta = yaml.safe_load(data) or {}
            except yaml.YAMLError as e:
                raise TestHarnessError(f"报告归档中的 {META_FILE} 无法解析: {e}") from e
            if not isinstance(meta, dict):
                raise TestHarnessError(f"报告归档中的 {META_FILE} 不是映射: {archive}")
            break

    extra = dict(meta.get("extra_properties") or {})
    extra.update(metadata)
    meta["extra_properties"] = extra
    meta_bytes = yaml.safe_dump(meta, default_flow_style=False, sort_keys=False).encode("utf-8")

    if meta_member is None:
        meta_member = tarfile.TarInfo(META_FILE)
        members.append((meta_member, meta_bytes))
    meta_member.size = len(meta_bytes)

    tmp = archive.with_suffix(".tmp")
    with tarfile.open(tmp, "w:gz") as out:
        for member, data in members:
            if member is meta_member:
                out.addfile(member, io.BytesIO(meta_bytes))
            elif data is not None:
                out.addfile(member, io.BytesIO(data))
            else:
                out.addfile(member)
    os.replace(tmp, archive)
