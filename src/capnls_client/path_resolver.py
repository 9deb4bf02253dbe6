"""
Expansion of environment variable references in configured paths.
"""

import os
import re
from collections.abc import Iterable, Mapping

_ENV_VAR_PATTERN = re.compile(r"\$([A-Za-z0-9_]+)|\$\{([A-Za-z0-9_]+)\}|%([A-Za-z0-9_]+)%")


class PathResolver:
    """
    Substitutes `$NAME`, `${NAME}` and `%NAME%` references in configuration strings and
    makes relative paths absolute.
    References to variables that are undefined (or empty) are kept verbatim.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        """
        :param environ: the environment to look variables up in; if None, the current process environment
            is used (and read at the time of each lookup)
        """
        self._environ = environ

    def _lookup(self, name: str) -> str | None:
        environ = os.environ if self._environ is None else self._environ
        return environ.get(name)

    def resolve(self, template: str) -> str:
        """
        :param template: a string which may contain environment variable references
        :return: the string with all references to defined, non-empty variables substituted
        """
        if not template:
            return template

        def replace(match: re.Match[str]) -> str:
            name = match.group(1) or match.group(2) or match.group(3)
            value = self._lookup(name)
            return value if value else match.group(0)

        return _ENV_VAR_PATTERN.sub(replace, template)

    def resolve_all(self, templates: Iterable[str]) -> list[str]:
        return [self.resolve(t) for t in templates]

    @staticmethod
    def to_absolute(path: str, base_dir: str) -> str:
        """
        Returns the path unchanged if it is absolute, otherwise joined with the given base directory.
        The existence of the path is not checked.
        """
        if os.path.isabs(path):
            return path
        return os.path.join(base_dir, path)
