"""工具模块包。

提供纯工具函数，不包含业务逻辑。
"""

from .file_helpers import (
    find_image_files,
    is_supported_image,
    replace_with_backup,
    write_output,
)
from .logging_helpers import configure_logging, get_logger
from .message_formatter import MessageFormatter
from .naming_helpers import FileNamingStrategy, PathResolver


__all__ = [
    "FileNamingStrategy",
    "MessageFormatter",
    "PathResolver",
    "configure_logging",
    "find_image_files",
    "get_logger",
    "is_supported_image",
    "replace_with_backup",
    "write_output",
]
