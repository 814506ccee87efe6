"""消息格式化工具模块。

提供统一的错误消息、成功消息格式化功能。
"""

from pathlib import Path
from typing import Any

from humanize import naturalsize


class MessageFormatter:
    """统一的消息格式化器"""

    @staticmethod
    def file_not_found(file_path: str | Path) -> str:
        """文件不存在错误消息"""
        return f"文件不存在: {file_path}"

    @staticmethod
    def path_not_file(path: str | Path) -> str:
        """路径不是普通文件错误消息"""
        return f"路径不是文件: {path}"

    @staticmethod
    def permission_error(path: str | Path, operation: str = "访问") -> str:
        """权限错误消息"""
        return f"权限错误，无法{operation}: {path}"

    @staticmethod
    def outside_root(path: str | Path, root: str | Path) -> str:
        """路径越界错误消息"""
        return f"路径不在允许的根目录内: {path} (根目录: {root})"

    @staticmethod
    def payload_too_large(label: str, limit_bytes: int) -> str:
        """输入超过大小上限的错误消息"""
        return f"输入超过大小上限 {naturalsize(limit_bytes)}: {label}"

    @staticmethod
    def operation_failed(
        operation: str, target: str | Path, error: Exception | None = None
    ) -> str:
        """操作失败消息"""
        msg = f"{operation}失败: {target}"
        if error:
            msg += f" - {error}"
        return msg

    @staticmethod
    def validation_error(field: str, value: Any, reason: str | None = None) -> str:
        """参数验证错误消息"""
        msg = f"参数验证失败 - {field}: {value}"
        if reason:
            msg += f" ({reason})"
        return msg

    @staticmethod
    def format_error(operation: str, path: str | Path, error: Exception) -> str:
        """格式化通用错误消息"""
        return f"{operation}失败 [{path}]: {error}"

    @staticmethod
    def size_change(name: str, before: int, after: int) -> str:
        """压缩前后大小变化的单行描述"""
        saved = max(0, before - after)
        percent = (saved / before * 100) if before > 0 else 0.0
        return (
            f"{name}: {naturalsize(before)} → {naturalsize(after)} "
            f"(saved {naturalsize(saved)} / {percent:.2f}%)"
        )
