"""统一异常体系

所有业务异常继承 SmokerError。
编排循环据此区分"本次构建失败"（推进 revision）与需要向上抛出的致命错误。
"""

from __future__ import annotations


class SmokerError(Exception):
    """冒烟框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(SmokerError):
    """配置文件缺失、格式错误，或请求了不存在的项目"""

    code = "CONFIG_ERROR"


class ValidationError(SmokerError, ValueError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"


class ExecutionError(SmokerError):
    """外部命令返回非零"""

    code = "EXECUTION_ERROR"


class SourceError(SmokerError):
    """clone / checkout / VCS 查询失败"""

    code = "SOURCE_ERROR"


class BuildError(SmokerError):
    """configure 命令失败"""

    code = "BUILD_ERROR"


class DependencyError(SmokerError):
    """传递依赖检出或构建失败，整条依赖链作废"""

    code = "DEPENDENCY_ERROR"

    def __init__(self, message: str, dependency: str = "") -> None:
        super().__init__(message)
        self.dependency = dependency


class TestHarnessError(SmokerError):
    """测试执行器无法运行"""

    __test__ = False
    code = "TEST_HARNESS_ERROR"


class ReportError(SmokerError):
    """报告上传失败"""

    code = "REPORT_ERROR"
