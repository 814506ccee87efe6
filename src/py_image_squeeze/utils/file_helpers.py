"""文件工具模块。

目录扫描、输出写入与覆盖原文件的备份替换。
"""

from collections.abc import Iterator
from pathlib import Path

from ..models.constants import ImageFormats, ProcessingDefaults
from .logging_helpers import get_logger
from .message_formatter import MessageFormatter


logger = get_logger()


def is_supported_image(path: Path) -> bool:
    """按扩展名判断是否为待处理的图片"""
    return path.suffix.lower() in ImageFormats.SUPPORTED_EXTENSIONS


def find_image_files(
    directory: str | Path,
    recursive: bool = True,
    exclude_dirs: list[Path] | None = None,
) -> Iterator[Path]:
    """查找目录中的图像文件。

    Args:
        directory: 搜索目录
        recursive: 是否递归搜索子目录
        exclude_dirs: 要排除的目录（绝对路径）

    Yields:
        Path: 图像文件路径，按路径排序
    """
    directory = Path(directory)
    excluded = [d.resolve() for d in exclude_dirs or []]

    pattern = "**/*" if recursive else "*"
    try:
        candidates = sorted(p for p in directory.glob(pattern) if p.is_file())
    except PermissionError:
        logger.error(MessageFormatter.permission_error(directory, "访问目录"))
        return

    for file_path in candidates:
        relative_parts = file_path.relative_to(directory).parts[:-1]
        if any(part in ProcessingDefaults.EXCLUDE_DIRS for part in relative_parts):
            continue
        if any(file_path.resolve().is_relative_to(d) for d in excluded):
            continue
        if not is_supported_image(file_path):
            logger.warning(f"跳过不支持的文件: {file_path}")
            continue
        yield file_path


def write_output(path: Path, data: bytes) -> None:
    """写出文件，必要时创建父目录"""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def replace_with_backup(source: Path, data: bytes) -> None:
    """用新内容替换原文件

    先写临时文件，原文件改名为 .bak 备份，再把临时文件改名为原文件名；
    任一步失败都回滚，原文件保持不变。

    Raises:
        OSError: 写入或改名失败
    """
    temp_path = source.with_name(f"{ProcessingDefaults.OUTPUT_PREFIX}{source.name}")
    backup_path = source.with_name(f"{source.name}.bak")

    write_output(temp_path, data)
    try:
        source.rename(backup_path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise

    try:
        temp_path.rename(source)
    except OSError:
        backup_path.rename(source)
        temp_path.unlink(missing_ok=True)
        raise

    backup_path.unlink(missing_ok=True)
    logger.debug(f"已覆盖原文件: {source}")
