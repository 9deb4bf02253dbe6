"""
Ownership of the language server process: building the launch information from the configuration
and starting/stopping the process.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from typing import Any

import psutil
from sensai.util.string import ToStringMixin

from capnls_client.acquirer import AcquisitionResult, ExecutableAcquirer
from capnls_client.config import ClientConfig
from capnls_client.constants import DEFAULT_SHUTDOWN_TIMEOUT
from capnls_client.exceptions import ConfigurationMissingError
from capnls_client.path_resolver import PathResolver

log = logging.getLogger(__name__)


@dataclass
class ProcessLaunchInfo:
    cmd: str
    """the resolved path (or bare command name) of the language server executable"""
    cwd: str
    """the working directory of the process"""
    env: dict[str, str] = field(default_factory=dict)
    """the full environment of the process (process environment merged with the configured extra variables)"""
    args: list[str] = field(default_factory=list)
    initialization_options: dict[str, Any] = field(default_factory=dict)
    """the initialization options to be sent by the LSP client"""

    def command_line(self) -> list[str]:
        return [self.cmd, *self.args]


class ServerSession(ToStringMixin):
    """
    Owns one language server process for a workspace, with an explicit start/stop lifecycle.
    The process communicates over standard I/O; this class does not speak the protocol itself.
    """

    def __init__(
        self,
        workspace_root: str | None,
        install_dir: str,
        config: ClientConfig,
        acquirer: ExecutableAcquirer | None = None,
        resolver: PathResolver | None = None,
    ) -> None:
        """
        :param workspace_root: the root folder of the open workspace
        :param install_dir: the client's installation directory
        :param config: the client configuration
        :param acquirer: the acquirer to use for determining the executable
        :param resolver: the resolver for environment variable references in configured paths
        :raises ConfigurationMissingError: if no workspace root is given
        """
        if not workspace_root:
            raise ConfigurationMissingError("No workspace folder is opened")
        self.workspace_root = os.path.abspath(workspace_root)
        self.config = config
        self._resolver = resolver if resolver is not None else PathResolver()
        self._acquirer = acquirer if acquirer is not None else ExecutableAcquirer(install_dir, resolver=self._resolver)
        self._acquisition: AcquisitionResult | None = None
        self._launch_info: ProcessLaunchInfo | None = None
        self.process: subprocess.Popen[bytes] | None = None

    def _tostring_includes(self) -> list[str]:
        return ["workspace_root"]

    @property
    def acquisition(self) -> AcquisitionResult | None:
        return self._acquisition

    def get_launch_info(self) -> ProcessLaunchInfo:
        """
        Resolves the executable (searching for or downloading it if necessary) and builds the launch information.
        The result is computed once per session.
        """
        if self._launch_info is not None:
            return self._launch_info

        self._acquisition = self._acquirer.acquire(self.config)
        server_path = self._acquisition.path
        compiler_path = self._resolver.resolve(self.config.compiler_path)
        import_paths = self._resolver.resolve_all(self.config.import_paths)

        log.info("Server path: %s", server_path)
        log.info("Compiler path: %s", compiler_path)
        log.info("Import paths: %s", ", ".join(import_paths))

        env = os.environ.copy()
        env.update(self.config.env_for_process())
        cwd = os.path.dirname(server_path) or self.workspace_root
        self._launch_info = ProcessLaunchInfo(
            cmd=server_path,
            cwd=cwd,
            env=env,
            initialization_options={"capnp": {"compilerPath": compiler_path, "importPaths": import_paths}},
        )
        return self._launch_info

    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def start(self) -> subprocess.Popen[bytes]:
        """
        Starts the language server process with pipes for standard I/O.

        :raises ServerPathNotFoundError: if the configured server path does not exist under the strict policy
        """
        if self.is_running():
            raise RuntimeError(f"Language server process already running for {self}")
        self._acquirer.verify_override(self.config)
        launch_info = self.get_launch_info()
        log.info("Starting language server process via command: %s", launch_info.command_line())
        self.process = subprocess.Popen(
            launch_info.command_line(),
            stdout=subprocess.PIPE,
            stdin=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=launch_info.env,
            cwd=launch_info.cwd,
        )
        return self.process

    def stop(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> bool:
        """
        Terminates the language server process together with any processes it spawned, waiting for them to exit
        until the given deadline and killing whatever is still alive afterwards.

        :param timeout: the time, in seconds, to wait for the processes to exit after the terminate signal
        :return: True if all processes exited (or none was running) before the deadline, False if any had to be killed
        """
        process = self.process
        self.process = None
        if process is None:
            return True
        deadline = time.monotonic() + timeout

        def remaining() -> float:
            return max(0.0, deadline - time.monotonic())

        self._safely_close_pipe(process.stdin)
        exited_in_time = True
        if process.poll() is None:
            descendants = self._descendants(process)
            self._terminate_all(descendants)
            process.terminate()
            try:
                process.wait(timeout=remaining())
            except subprocess.TimeoutExpired:
                log.warning("Language server did not stop within %s seconds, forcing shutdown", timeout)
                exited_in_time = False
                process.kill()
                process.wait()
            alive = self._wait_for_exit(descendants, remaining())
            if alive:
                log.warning("Killing %d remaining child process(es) of the language server", len(alive))
                exited_in_time = False
                self._terminate_all(alive, kill=True)
        self._safely_close_pipe(process.stdout)
        self._safely_close_pipe(process.stderr)
        log.info("Language server process stopped (return code %s)", process.returncode)
        return exited_in_time

    def __enter__(self) -> "ServerSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.stop()

    @staticmethod
    def _safely_close_pipe(pipe: Any) -> None:
        if pipe:
            try:
                pipe.close()
            except OSError:
                pass

    @staticmethod
    def _descendants(process: subprocess.Popen[bytes]) -> list[psutil.Process]:
        """
        :return: the processes spawned (directly or indirectly) by the given process, as far as they can be inspected
        """
        try:
            return psutil.Process(process.pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            log.debug("Cannot list child processes of language server process %s: %s", process.pid, e)
            return []

    @staticmethod
    def _wait_for_exit(processes: list[psutil.Process], timeout: float) -> list[psutil.Process]:
        """
        Waits for the given processes to exit. Orphans may linger as zombies until they are reaped, so zombies count as exited.

        :return: the processes still running after the timeout
        """

        def is_running(proc: psutil.Process) -> bool:
            try:
                return proc.status() != psutil.STATUS_ZOMBIE
            except psutil.NoSuchProcess:
                return False
            except psutil.AccessDenied:
                return True

        end = time.monotonic() + timeout
        while True:
            alive = [proc for proc in processes if is_running(proc)]
            if not alive or time.monotonic() >= end:
                return alive
            time.sleep(0.05)

    @staticmethod
    def _terminate_all(processes: list[psutil.Process], kill: bool = False) -> None:
        for proc in processes:
            try:
                if kill:
                    proc.kill()
                else:
                    proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                log.warning("Cannot signal child process %s of the language server: %s", proc.pid, e)
