"""核心数据模型

项目配置、代码仓定义、轮询结果与冒烟结果集中定义。
其他模块统一从此处导入，避免 source ↔ orchestrator 的循环依赖。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

DEFAULT_TEST_GLOB = "t/*.t t/*/t/*.t"

# 配置文件中的代码仓类型标签（大小写不敏感）
REPO_GIT = "git"
REPO_SVN = "svn"

_REPO_TYPE_ALIASES = {
    "git": REPO_GIT,
    "svn": REPO_SVN,
    "subversion": REPO_SVN,
}


def normalize_repo_type(value: str) -> str:
    """把 Git / SVN / Subversion 等写法归一为内部类型标签，未知类型返回空串"""
    return _REPO_TYPE_ALIASES.get(str(value).strip().lower(), "")


# =========================================================================
# 项目配置
# =========================================================================


@dataclass
class RepositorySpec:
    """代码仓定义 — 传给 RepositorySource 的唯一配置切片"""

    type: str
    uri: str


@dataclass
class ProjectConfig:
    """单个被冒烟项目的配置

    revision 为最近一次处理过的版本（svn 为整数，git 为 commit hash）。
    """

    name: str
    repository: RepositorySpec
    revision: Any = None
    root_dir: str = "."
    configure_cmd: str | None = None
    clean_cmd: str | None = None
    test_glob: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    dependency_only: bool = False
    libs: list[str] = field(default_factory=list)
    jobs: int | None = None

    @property
    def effective_test_glob(self) -> str:
        return self.test_glob or DEFAULT_TEST_GLOB

    @property
    def root_env_var(self) -> str:
        """指向检出根目录的合成环境变量名"""
        return f"CHIMPS_{self.name.upper()}_ROOT"

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> ProjectConfig:
        repo = data.get("repository") or {}
        return cls(
            name=name,
            repository=RepositorySpec(
                type=str(repo.get("type", "")), uri=str(repo.get("uri", "")),
            ),
            revision=data.get("revision"),
            root_dir=str(data.get("root_dir") or "."),
            configure_cmd=data.get("configure_cmd"),
            clean_cmd=data.get("clean_cmd"),
            test_glob=data.get("test_glob"),
            env={str(k): "" if v is None else str(v)
                 for k, v in _mapping(name, data, "env").items()},
            dependencies=_str_list(name, data, "dependencies"),
            dependency_only=bool(data.get("dependency_only", False)),
            libs=_str_list(name, data, "libs"),
            jobs=int(data["jobs"]) if data.get("jobs") else None,
        )


def _str_list(name: str, data: dict[str, Any], key: str) -> list[str]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"{name}: {key} 必须是列表 (实际类型: {type(value).__name__})")
    return [str(v) for v in value]


def _mapping(name: str, data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{name}: {key} 必须是映射 (实际类型: {type(value).__name__})")
    return value


# =========================================================================
# 轮询与检出
# =========================================================================


@dataclass
class NextRevision:
    """一次轮询发现的新版本"""

    revision: Any
    committer: str = ""


@dataclass
class Checkout:
    """一个代码仓的本地工作目录状态（与 RepositorySource 一一对应）"""

    directory: Path | None = None
    cloned: bool = False


# =========================================================================
# 冒烟状态机与结果
# =========================================================================


class SmokeState(str, Enum):
    """单个项目在一次迭代中的状态"""

    IDLE = "idle"
    CLONING = "cloning"
    POLLING = "polling"
    NO_CHANGE = "no_change"
    CHECKING_OUT = "checking_out"
    BUILD_FAILED = "build_failed"
    TESTING = "testing"
    CLEANING = "cleaning"
    REPORTING = "reporting"
    DONE = "done"


class DependencyFailurePolicy(str, Enum):
    """依赖失败时，被依赖项目自身 revision 是否推进"""

    ADVANCE = "advance"
    RETRY = "retry"


@dataclass
class SmokeResult:
    """单个项目单次冒烟的结果"""

    project: str
    state: SmokeState = SmokeState.IDLE
    revision: Any = None
    committer: str = ""
    archive: Path | None = None
    persisted: bool = False
    reported: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "state": self.state.value,
            "revision": self.revision,
            "committer": self.committer,
            "archive": str(self.archive) if self.archive else "",
            "persisted": self.persisted,
            "reported": self.reported,
            "message": self.message,
        }
