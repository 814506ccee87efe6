"""文件命名工具模块。

提供统一的文件命名策略和路径生成功能。
"""

from pathlib import Path

from ..models.compression_config import OutputFormat
from ..models.constants import ProcessingDefaults, get_extension


class FileNamingStrategy:
    """文件命名策略类"""

    @staticmethod
    def generate_output_name(
        input_path: Path, output_format: OutputFormat, overwrite: bool = False
    ) -> str:
        """生成输出文件名

        Args:
            input_path: 输入文件路径
            output_format: 实际输出格式
            overwrite: 覆盖模式下不加前缀

        Returns:
            str: 生成的文件名（不含路径）
        """
        ext = FileNamingStrategy._get_extension(input_path.suffix, output_format)
        if overwrite:
            return f"{input_path.stem}{ext}"
        return f"{ProcessingDefaults.OUTPUT_PREFIX}{input_path.stem}{ext}"

    @staticmethod
    def _get_extension(input_suffix: str, output_format: OutputFormat) -> str:
        """格式未变化时保留原扩展名的写法（如 .jpeg、.tif）"""
        preferred = get_extension(output_format)
        aliases = {
            OutputFormat.JPEG: {".jpg", ".jpeg"},
            OutputFormat.TIFF: {".tif", ".tiff"},
        }
        if input_suffix.lower() in aliases.get(output_format, {preferred}):
            return input_suffix
        return preferred


class PathResolver:
    """路径解析器"""

    @staticmethod
    def resolve_output_path(
        input_path: Path,
        output_format: OutputFormat,
        input_root: Path | None = None,
        output_dir: Path | None = None,
        overwrite: bool = False,
    ) -> Path:
        """解析输出路径

        Args:
            input_path: 输入文件路径
            output_format: 实际输出格式
            input_root: 目录批处理时的输入根目录，用于保持子目录结构
            output_dir: 输出目录，None 表示写到源文件旁边
            overwrite: 覆盖模式，忽略 output_dir

        Returns:
            Path: 输出路径
        """
        filename = FileNamingStrategy.generate_output_name(
            input_path, output_format, overwrite
        )

        if overwrite or output_dir is None:
            return input_path.with_name(filename)

        # 计算相对路径以保持目录结构
        target_dir = output_dir
        if input_root is not None:
            target_dir = output_dir / input_path.parent.relative_to(input_root)
        return target_dir / filename
