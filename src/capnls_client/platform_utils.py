"""
Platform detection and the table of platforms for which prebuilt capnp-ls release artifacts exist.
"""

import os
import platform
from enum import Enum

from capnls_client.constants import CAPNLS_COMMAND_NAME, RELEASES_BASE_URL
from capnls_client.exceptions import UnsupportedPlatformError


class PlatformId(str, Enum):
    WIN_x86 = "win-x86"
    WIN_x64 = "win-x64"
    WIN_arm64 = "win-arm64"
    OSX_x64 = "osx-x64"
    OSX_arm64 = "osx-arm64"
    LINUX_x86 = "linux-x86"
    LINUX_x64 = "linux-x64"
    LINUX_arm64 = "linux-arm64"
    LINUX_MUSL_x64 = "linux-musl-x64"
    LINUX_MUSL_arm64 = "linux-musl-arm64"

    def is_windows(self) -> bool:
        return self.value.startswith("win")


RELEASE_ARTIFACTS: dict[PlatformId, str] = {
    PlatformId.LINUX_x64: "capnp-ls-linux-x86_64",
}
"""
Maps the platforms eligible for automatic download to the name of the release artifact.
All other platforms rely on manual configuration or PATH lookup.
"""


class PlatformUtils:
    """
    This class provides utilities for platform detection and identification.
    """

    @classmethod
    def get_platform_id(cls) -> PlatformId:
        """
        Returns the platform id for the current system
        """
        system = platform.system()
        machine = platform.machine()
        bitness = platform.architecture()[0]
        if system == "Windows" and machine == "":
            machine = os.environ.get("PROCESSOR_ARCHITECTURE", "")
        system_map = {"Windows": "win", "Darwin": "osx", "Linux": "linux"}
        machine_map = {
            "AMD64": "x64",
            "x86_64": "x64",
            "i386": "x86",
            "i686": "x86",
            "x86": "x86",
            "aarch64": "arm64",
            "arm64": "arm64",
            "ARM64": "arm64",
        }
        if system in system_map and machine in machine_map:
            platform_id = system_map[system] + "-" + machine_map[machine]
            if system == "Linux" and bitness == "64bit":
                libc = platform.libc_ver()[0]
                if libc and libc != "glibc":
                    platform_id = f"{system_map[system]}-{libc}-{machine_map[machine]}"
            try:
                return PlatformId(platform_id)
            except ValueError:
                pass
        raise UnsupportedPlatformError(f"Unknown platform: {system=}, {machine=}, {bitness=}")

    @classmethod
    def get_platform_id_or_none(cls) -> PlatformId | None:
        try:
            return cls.get_platform_id()
        except UnsupportedPlatformError:
            return None

    @staticmethod
    def binary_name(platform_id: PlatformId | None) -> str:
        """
        :return: the file name of the language server executable on the given platform
        """
        if platform_id is not None and platform_id.is_windows():
            return CAPNLS_COMMAND_NAME + ".exe"
        return CAPNLS_COMMAND_NAME

    @staticmethod
    def get_release_artifact(platform_id: PlatformId | None) -> str | None:
        """
        :return: the name of the release artifact for the given platform or None if the platform
            is not eligible for automatic download
        """
        if platform_id is None:
            return None
        return RELEASE_ARTIFACTS.get(platform_id)

    @staticmethod
    def get_download_url(version: str, artifact_name: str) -> str:
        return f"{RELEASES_BASE_URL}/{version}/{artifact_name}"
