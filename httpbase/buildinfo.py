from __future__ import annotations

from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as dist_version

from httpbase.config import Settings
from httpbase.models.schemas import HealthInfo


DIST_NAME = "httpbase"


def _parse_vcs_time(value: str) -> datetime | None:
    if not value:
        return None
    try:
        # fromisoformat only accepts a trailing "Z" from 3.11 on.
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _installed_version() -> str:
    try:
        return dist_version(DIST_NAME)
    except PackageNotFoundError:
        return ""


def read_health_info(settings: Settings) -> HealthInfo:
    """Build the health payload once from build metadata.

    ``APP_VERSION`` wins over the installed distribution version. An unparseable
    ``VCS_TIME`` is reported as null rather than failing startup.
    """

    return HealthInfo(
        version=settings.app_version or _installed_version(),
        revision=settings.vcs_revision,
        time=_parse_vcs_time(settings.vcs_time),
        modified=settings.vcs_modified.strip().lower() == "true",
    )
