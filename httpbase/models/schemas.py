from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HealthInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = ""
    revision: str = Field(default="", alias="vcs.revision")
    time: datetime | None = Field(default=None, alias="vcs.time")
    modified: bool = Field(default=False, alias="vcs.modified")
