"""Build information reported by ``kubevirt-migrator version``."""

import os
import platform
from dataclasses import asdict, dataclass

from . import __version__


@dataclass(frozen=True)
class BuildInfo:
    version: str
    commit: str
    date: str
    python_version: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)

    def __str__(self) -> str:
        return (
            f"Version: {self.version}\n"
            f"Commit: {self.commit}\n"
            f"Build Date: {self.date}\n"
            f"Python Version: {self.python_version}"
        )


def get_build_info() -> BuildInfo:
    """Collect build info; commit and date are stamped into the environment by release builds."""
    return BuildInfo(
        version=__version__,
        commit=os.getenv("KUBEVIRT_MIGRATOR_BUILD_COMMIT", "none"),
        date=os.getenv("KUBEVIRT_MIGRATOR_BUILD_DATE", "unknown"),
        python_version=platform.python_version(),
    )
