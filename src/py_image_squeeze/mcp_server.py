"""图像压缩 MCP 服务器。

通过 MCP 工具暴露目录/文件批量压缩。
"""

from functools import lru_cache
from typing import Any

from fastmcp import FastMCP

from .compressor import ImageCompressor
from .config import get_config
from .exceptions import ValidationError
from .utils.logging_helpers import configure_logging, get_logger
from .utils.message_formatter import MessageFormatter


# MCP 服务器响应类型定义
MCPCompressionResponse = dict[str, Any]

logger = get_logger()


class MCPResponseBuilder:
    """MCP 服务器响应构建器，专门用于构建符合 MCP 协议的响应格式。"""

    @staticmethod
    def error(
        message: str,
        error_type: str = "general",
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """构建错误结果。

        Args:
            message: 错误消息
            error_type: 错误类型
            details: 额外的错误详情

        Returns:
            dict: 标准化的错误响应
        """
        result = {
            "success": False,
            "error": message,
            "error_type": error_type,
        }

        if details:
            result["details"] = details

        return result

    @staticmethod
    def validation_error(message: str, field: str | None = None) -> dict[str, Any]:
        """构建验证错误结果。"""
        details = {"field": field} if field else None
        return MCPResponseBuilder.error(
            message=message,
            error_type="validation",
            details=details,
        )


# 创建MCP应用
mcp: FastMCP[Any] = FastMCP("图像压缩服务")


@lru_cache(maxsize=1)
def get_compressor() -> ImageCompressor:
    """进程内共享的压缩器（首次调用时创建）"""
    return ImageCompressor(get_config())


def compress_images(
    input_path: str,
    output_dir: str | None = None,
    compression_lvl: str = "mid",
    output_format: str = "original",
    png_quality: str | None = None,
    overwrite: bool = False,
) -> MCPCompressionResponse:
    """压缩图片文件或目录

    目录会被递归扫描；输出文件名为 c_<原文件名>，写到源文件旁边或 output_dir 中。

    Args:
        input_path: 输入路径（单个文件或目录）
        output_dir: 输出目录（可选）
        compression_lvl: 压缩等级 low / mid / max
        output_format: 输出格式 original / png / jpeg / webp / avif / tiff / bmp / ico
        png_quality: 质量范围 "min-max"，覆盖压缩等级的默认范围
        overwrite: 覆盖原文件

    Returns:
        dict: 批量处理摘要，每个文件一条记录
    """
    compressor = get_compressor()
    try:
        settings = compressor.settings(
            compression_lvl=compression_lvl,
            output_format=output_format,
            png_quality=png_quality,
        )
        batch = compressor.compress_path(
            input_path, output_dir=output_dir, settings=settings, overwrite=overwrite
        )
    except ValidationError as e:
        logger.warning(MessageFormatter.operation_failed("参数验证", input_path, e))
        return MCPResponseBuilder.validation_error(e.message, e.field)

    return {"success": batch.all_succeeded, **batch.to_summary_dict()}


def get_capabilities() -> dict[str, Any]:
    """查询当前环境各图片格式的编解码能力"""
    return {"success": True, "capabilities": ImageCompressor.capabilities()}


compress_images_tool = mcp.tool(compress_images)
get_capabilities_tool = mcp.tool(get_capabilities)


# ============================================================================
# 应用入口
# ============================================================================


def main() -> None:
    """启动 MCP 服务器"""
    configure_logging(get_config().logging)
    logger.info("启动图片压缩 MCP 服务器")
    mcp.run()


if __name__ == "__main__":
    main()
