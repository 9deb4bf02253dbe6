"""
Acquisition of the capnp-ls executable: explicit override, search of candidate locations,
download of a release artifact and, as a last resort, the bare command name.
"""

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from capnls_client.config import ClientConfig, ServerPathPolicy
from capnls_client.download import ArtifactDownloader, DownloadSpec
from capnls_client.exceptions import ServerPathNotFoundError
from capnls_client.path_resolver import PathResolver
from capnls_client.platform_utils import PlatformId, PlatformUtils

log = logging.getLogger(__name__)


class AcquisitionSource(Enum):
    OVERRIDE = "override"
    CANDIDATE = "candidate"
    DOWNLOAD = "download"
    FALLBACK = "fallback"


@dataclass
class AcquisitionResult:
    path: str
    source: AcquisitionSource
    diagnostics: list[str] = field(default_factory=list)


class ExecutableAcquirer:
    """
    Produces the path of the capnp-ls executable for a given installation directory.
    Failing to find the executable is never an error: the result degrades to the bare command name,
    accompanied by a human-readable diagnostic trail.
    """

    def __init__(
        self,
        install_dir: str,
        resolver: PathResolver | None = None,
        downloader: ArtifactDownloader | None = None,
        platform_id: PlatformId | None = None,
    ) -> None:
        """
        :param install_dir: the client's installation directory, which is searched first and receives downloaded artifacts
        :param resolver: the resolver for environment variable references in configured paths
        :param downloader: the downloader to use for release artifacts
        :param platform_id: the platform to acquire the executable for; if None, the current platform is detected
        """
        self.install_dir = os.path.abspath(install_dir)
        self._resolver = resolver if resolver is not None else PathResolver()
        self._downloader = downloader if downloader is not None else ArtifactDownloader()
        self._platform_id = platform_id if platform_id is not None else PlatformUtils.get_platform_id_or_none()
        self.binary_name = PlatformUtils.binary_name(self._platform_id)

    @property
    def platform_id(self) -> PlatformId | None:
        return self._platform_id

    def fallback_command(self) -> str:
        """
        :return: the unqualified command name, to be looked up in the standard search path when the process is spawned
        """
        return self.binary_name

    def resolve_override(self, config: ClientConfig) -> str:
        """
        :return: the absolute path of the configured server path or the empty string if none is configured
        """
        server_path = self._resolver.resolve(config.server_path)
        if not server_path:
            return ""
        return PathResolver.to_absolute(server_path, self.install_dir)

    def verify_override(self, config: ClientConfig) -> None:
        """
        Checks that a configured server path exists if the strict policy applies.

        :raises ServerPathNotFoundError: if the configured path does not exist under the strict policy
        """
        override = self.resolve_override(config)
        if override and config.server_path_policy == ServerPathPolicy.STRICT and not os.path.exists(override):
            raise ServerPathNotFoundError(override)

    def candidate_paths(self, search_path: str | None = None) -> list[str]:
        """
        :param search_path: the executable search path; if None, the PATH environment variable is used
        :return: the ordered, de-duplicated list of absolute paths to probe
        """
        candidates = [os.path.join(self.install_dir, self.binary_name)]
        if search_path is None:
            search_path = os.environ.get("PATH", "")
        for directory in search_path.split(os.pathsep):
            if not directory:
                continue
            candidates.append(os.path.join(os.path.abspath(directory), self.binary_name))
        return list(dict.fromkeys(candidates))

    def _is_windows(self) -> bool:
        return self._platform_id is not None and self._platform_id.is_windows()

    def find_candidate(self, candidates: Iterable[str], diagnostics: list[str]) -> str | None:
        """
        :return: the first candidate which exists and is executable, or None
        """
        for candidate in candidates:
            if not os.path.isfile(candidate):
                continue
            if os.access(candidate, os.X_OK):
                diagnostics.append(f"Found language server at: {candidate}")
                return candidate
            diagnostics.append(f"Found language server at {candidate} but it's not executable")
            if self._is_windows():
                # no meaningful executable bit on Windows
                return candidate
        return None

    def acquire(self, config: ClientConfig, search_path: str | None = None) -> AcquisitionResult:
        """
        Determines the path of the language server executable.

        :param config: the client configuration
        :param search_path: the executable search path; if None, the PATH environment variable is used
        :return: the acquisition result
        """
        diagnostics: list[str] = []

        override = self.resolve_override(config)
        if override:
            if config.server_path_policy == ServerPathPolicy.FALLBACK and not os.path.exists(override):
                diagnostics.append(f"Configured server path {override} does not exist, searching for {self.binary_name} instead")
            else:
                diagnostics.append(f"Using configured server path: {override}")
                return self._result(override, AcquisitionSource.OVERRIDE, diagnostics)

        candidate = self.find_candidate(self.candidate_paths(search_path), diagnostics)
        if candidate is not None:
            return self._result(candidate, AcquisitionSource.CANDIDATE, diagnostics)

        spec = DownloadSpec.for_platform(config.server_version, self._platform_id, self.install_dir)
        if spec is None:
            platform_name = self._platform_id.value if self._platform_id is not None else "unknown"
            diagnostics.append(f"No prebuilt capnp-ls is available for platform {platform_name}")
        elif not config.download_enabled:
            diagnostics.append("Download of capnp-ls is disabled")
        else:
            diagnostics.append(f"Binary not found, attempting to download capnp-ls {spec.release_version} from {spec.url}")
            outcome = self._downloader.fetch(spec, timeout=config.download_timeout)
            if outcome.is_success():
                diagnostics.append(f"Successfully downloaded capnp-ls version {spec.release_version} to {spec.target_path}")
                return self._result(spec.target_path, AcquisitionSource.DOWNLOAD, diagnostics)
            diagnostics.append(f"Failed to download capnp-ls: {outcome.error}")

        command = self.fallback_command()
        diagnostics.append(f'Could not find capnp-ls, falling back to "{command}" command')
        return self._result(command, AcquisitionSource.FALLBACK, diagnostics)

    @staticmethod
    def _result(path: str, source: AcquisitionSource, diagnostics: list[str]) -> AcquisitionResult:
        for message in diagnostics:
            log.info(message)
        if source == AcquisitionSource.FALLBACK:
            log.warning("Could not find capnp-ls executable. Make sure it is installed and in your PATH.")
        return AcquisitionResult(path=path, source=source, diagnostics=diagnostics)
