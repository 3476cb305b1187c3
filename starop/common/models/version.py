import re
from typing import NamedTuple, Optional


class VersionInfo(NamedTuple):
    major: int
    minor: int
    micro: int
    releaselevel: str
    serial: str


class Version:
    _version: str

    info: VersionInfo

    def __init__(self, version: str, version_info: VersionInfo = None) -> None:
        self._version = version
        if version_info is None:
            version_info = Version.from_str(self._version).info
        self.info = version_info

    def __str__(self) -> str:
        return self._version

    @classmethod
    def from_str(cls, version: str) -> "Version":
        """Parse a version string."""
        _match = re.match(r"v?(\d+)\.(\d+)\.(\d+)(.+)?", version)
        if _match is None:
            raise ValueError(f"Invalid version string: {version!r}")
        _temp = _match.groups()
        _version_info = VersionInfo(
            int(_temp[0]), int(_temp[1]), int(_temp[2]), _temp[3] or "", ""
        )
        return cls(version, _version_info)


class PlatformVersion(NamedTuple):
    """Kubernetes server version as reported by ``/version``.

    ``minor`` is None when the server reports something unparsable; managed
    offerings report values like ``"27+"`` which parse as 27.
    """

    major: Optional[int]
    minor: Optional[int]

    @classmethod
    def parse(cls, major: Optional[str], minor: Optional[str]) -> "PlatformVersion":
        return cls(_parse_component(major), _parse_component(minor))

    @classmethod
    def from_git_version(cls, git_version: str) -> "PlatformVersion":
        """Parse ``v1.27.3`` style strings, as accepted by ``KUBERNETES_VERSION``."""
        _match = re.match(r"v?(\d+)\.(\d+\+?)", git_version or "")
        if _match is None:
            return cls(None, None)
        return cls.parse(_match.group(1), _match.group(2))


def _parse_component(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    value = str(value).strip().rstrip("+")
    try:
        return int(value)
    except ValueError:
        return None
