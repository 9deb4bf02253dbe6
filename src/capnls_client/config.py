"""
Configuration of the client: where to find the language server and how to launch it.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Self

from ruamel.yaml import YAML, YAMLError

from capnls_client.constants import CONFIG_FILE_ENCODING, CONFIG_SECTION, DEFAULT_DOWNLOAD_TIMEOUT, DEFAULT_SERVER_VERSION
from capnls_client.exceptions import ClientConfigError

log = logging.getLogger(__name__)


class ServerPathPolicy(Enum):
    """
    Defines what happens if an explicitly configured server path does not exist.
    """

    STRICT = "strict"
    """
    The configured path is used as is; launching fails if it does not exist.
    """
    FALLBACK = "fallback"
    """
    A configured path that does not exist is ignored and the language server is searched for (and downloaded) instead.
    """

    @staticmethod
    def from_str(policy_str: str) -> "ServerPathPolicy":
        try:
            return ServerPathPolicy(policy_str.lower())
        except ValueError as e:
            raise ClientConfigError(
                f"Invalid server path policy '{policy_str}'; valid values: {[p.value for p in ServerPathPolicy]}"
            ) from e


@dataclass
class ClientConfig:
    server_path: str = ""
    """
    explicit path to the capnp-ls executable; may contain environment variable references and may be relative
    to the installation directory
    """
    server_path_policy: ServerPathPolicy = ServerPathPolicy.STRICT
    compiler_path: str = ""
    """path to the capnp compiler, passed on to the language server"""
    import_paths: list[str] = field(default_factory=list)
    extra_env: dict[str, str | int] = field(default_factory=dict)
    """additional environment variables for the language server process"""
    server_version: str = DEFAULT_SERVER_VERSION
    """the release version to download if no local executable is found"""
    download_enabled: bool = True
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT

    # maps the keys used in editor settings (below the capnp-ls-client section) to field names
    EDITOR_KEYS = {
        "languageServer.path": "server_path",
        "languageServer.pathPolicy": "server_path_policy",
        "languageServer.version": "server_version",
        "languageServer.download": "download_enabled",
        "languageServer.downloadTimeout": "download_timeout",
        "compiler.path": "compiler_path",
        "compiler.importPaths": "import_paths",
        "server.extraEnv": "extra_env",
    }

    @classmethod
    def _normalise_keys(cls, data: dict[str, Any]) -> dict[str, Any]:
        if CONFIG_SECTION in data:
            section = data[CONFIG_SECTION] or {}
            data = {cls.EDITOR_KEYS.get(k, k): v for k, v in section.items()}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Creates a configuration from a dictionary, applying defaults for missing or empty values.
        The dictionary may either use the field names directly or contain a `capnp-ls-client` section
        using the editor settings keys (e.g. `languageServer.path`).
        """
        data = cls._normalise_keys(dict(data))
        field_names = {f.name for f in dataclasses.fields(cls)}
        unknown_keys = set(data.keys()) - field_names
        if unknown_keys:
            log.warning("Ignoring unknown configuration keys: %s", sorted(unknown_keys))

        def get_value_or_default(name: str) -> Any:
            value = data.get(name)
            if value is None or value == "":
                return getattr(cls(), name)
            return value

        import_paths = get_value_or_default("import_paths")
        if isinstance(import_paths, str):
            import_paths = [import_paths]
        extra_env = get_value_or_default("extra_env")
        if not isinstance(extra_env, dict):
            raise ClientConfigError(f"extra_env must be a mapping, got {type(extra_env).__name__}")
        policy = get_value_or_default("server_path_policy")
        if not isinstance(policy, ServerPathPolicy):
            policy = ServerPathPolicy.from_str(str(policy))

        return cls(
            server_path=str(get_value_or_default("server_path")),
            server_path_policy=policy,
            compiler_path=str(get_value_or_default("compiler_path")),
            import_paths=[str(p) for p in import_paths],
            extra_env=dict(extra_env),
            server_version=str(get_value_or_default("server_version")),
            download_enabled=bool(get_value_or_default("download_enabled")),
            download_timeout=float(get_value_or_default("download_timeout")),
        )

    @classmethod
    def load(cls, path: str | Path) -> Self:
        """
        Loads the configuration from a YAML file.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        yaml = YAML(typ="safe")
        with open(path, encoding=CONFIG_FILE_ENCODING) as f:
            try:
                data = yaml.load(f)
            except YAMLError as e:
                raise ClientConfigError(f"Invalid YAML in configuration file {path}", cause=e) from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ClientConfigError(f"Configuration file {path} must contain a mapping at the top level")
        log.info("Loaded configuration from %s", path)
        return cls.from_dict(data)

    def env_for_process(self) -> dict[str, str]:
        """
        :return: the extra environment variables with all values converted to strings
        """
        return {str(k): str(v) for k, v in self.extra_env.items()}
