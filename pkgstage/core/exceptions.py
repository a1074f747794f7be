"""统一异常体系

所有业务异常继承 PkgStageError，按错误来源分为四类：
配置错误（执行任何阶段前致命）、拉取错误、命令错误、文件系统错误。
CLI 层据此输出友好提示并以非零状态退出。
"""

from __future__ import annotations


class PkgStageError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(PkgStageError):
    """配置或包描述缺失/无法解析"""

    code = "CONFIG_ERROR"


class DependencyError(ConfigError):
    """依赖引用未知包或形成环"""

    code = "DEPENDENCY_ERROR"


class ValidationError(PkgStageError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"


class RetrievalError(PkgStageError):
    """源码拉取失败（所有镜像均已尝试）"""

    code = "RETRIEVAL_ERROR"


class ExecutionError(PkgStageError):
    """外部命令返回非零"""

    code = "EXECUTION_ERROR"


class HookError(PkgStageError):
    """钩子显式报告失败"""

    code = "HOOK_ERROR"


class FilesystemError(PkgStageError):
    """文件系统错误，消息中带出问题路径"""

    code = "FILESYSTEM_ERROR"

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(f"{message}: {path}" if path else message)
        self.path = path


class StageFailedError(PkgStageError):
    """某个包的某个阶段失败，未写入完成标记"""

    code = "STAGE_FAILED"

    def __init__(self, package: str, stage: str, reason: str) -> None:
        super().__init__(f"{package}: 阶段 {stage} 失败: {reason}")
        self.package = package
        self.stage = stage
        self.reason = reason
