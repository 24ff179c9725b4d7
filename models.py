from typing import Any

from pydantic import BaseModel, Field


class CaptureRequest(BaseModel):
    url: str
    width: int = Field(1440, ge=320, le=3840)
    height: int = Field(900, ge=320, le=4320)
    use_cache: bool = True


class BuildRequest(BaseModel):
    data: dict[str, Any] | None = None
    fetch_images: bool = True
