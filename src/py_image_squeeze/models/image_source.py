"""输入来源模型。

本地路径、远程 URL、内联字节三种来源的标签联合，以及解析后的输入。
"""

from pathlib import Path
from typing import Annotated, Literal

from humanize import naturalsize
from pydantic import BaseModel, ConfigDict, Field


class LocalPathSource(BaseModel):
    """本地文件路径"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["local_path"] = "local_path"
    path: Path

    @property
    def label(self) -> str:
        return str(self.path)

    @property
    def filename(self) -> str | None:
        return self.path.name


class RemoteUrlSource(BaseModel):
    """远程 URL"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["remote_url"] = "remote_url"
    url: str

    @property
    def label(self) -> str:
        return self.url

    @property
    def filename(self) -> str | None:
        name = self.url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
        return name or None


class InlineBytesSource(BaseModel):
    """上传的内联字节"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inline_bytes"] = "inline_bytes"
    data: bytes = Field(repr=False)
    filename: str | None = None

    @property
    def label(self) -> str:
        return self.filename or f"<upload {naturalsize(len(self.data))}>"


ImageSource = Annotated[
    LocalPathSource | RemoteUrlSource | InlineBytesSource,
    Field(discriminator="kind"),
]


class ResolvedInput(BaseModel):
    """解析后的输入字节与来源描述"""

    model_config = ConfigDict(frozen=True)

    raw_bytes: bytes = Field(repr=False)
    origin: ImageSource
    size_bytes: int = Field(ge=0)
