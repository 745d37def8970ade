"""
Bucket name resolution shared by the management API, the public proxy and the
storage gateway.

Operators whitelist real bucket identifiers and may attach a friendly alias to
each one. Every call site accepts either form, so integrations that use raw
identifiers keep working after aliases are introduced or renamed.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .config import ConfigurationError, Settings


class InvalidBucketError(Exception):
    """Raised when a name is neither a configured bucket nor one of its aliases."""

    def __init__(self, name: str):
        super().__init__(f"Invalid bucket: {name!r}")
        self.name = name


@dataclass(frozen=True)
class BucketRegistry:
    """
    Immutable two-way mapping between aliases and real bucket identifiers.

    When aliases are disabled both mappings are the identity over
    ``real_names``. Lookups are plain dictionary hits; nothing is added or
    removed after construction.
    """

    real_names: Tuple[str, ...]
    aliases: Tuple[str, ...]
    alias_to_real: Dict[str, str]
    real_to_alias: Dict[str, str]

    @classmethod
    def from_names(
        cls,
        real_names: Iterable[str],
        aliases: Optional[Iterable[str]] = None,
    ) -> "BucketRegistry":
        """
        Validate the configured pairs and build the registry.

        Args:
            real_names: Bucket identifiers as known to the storage backend.
            aliases: Optional display names, one per real identifier, in the
                same order. Empty or ``None`` disables aliasing.

        Raises:
            ConfigurationError: on an empty bucket list, a count mismatch,
                duplicates on either side, or an alias that equals a
                different bucket's real identifier.
        """
        reals = tuple(real_names)
        alias_list = tuple(aliases or ())

        if not reals:
            raise ConfigurationError("At least one bucket must be configured")
        if alias_list and len(alias_list) != len(reals):
            raise ConfigurationError(
                f"Alias count ({len(alias_list)}) must match bucket count ({len(reals)})"
            )

        duplicates = _duplicates(reals)
        if duplicates:
            raise ConfigurationError(f"Duplicate bucket names: {', '.join(duplicates)}")

        if not alias_list:
            identity = {name: name for name in reals}
            return cls(reals, (), identity, dict(identity))

        duplicates = _duplicates(alias_list)
        if duplicates:
            raise ConfigurationError(f"Duplicate bucket aliases: {', '.join(duplicates)}")

        real_set = set(reals)
        for real, alias in zip(reals, alias_list):
            if alias in real_set and alias != real:
                raise ConfigurationError(
                    f"Alias {alias!r} for bucket {real!r} collides with another bucket name"
                )

        alias_to_real = dict(zip(alias_list, reals))
        real_to_alias = dict(zip(reals, alias_list))
        return cls(reals, alias_list, alias_to_real, real_to_alias)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BucketRegistry":
        return cls.from_names(settings.bucket_names, settings.friendly_bucket_names)

    @property
    def aliases_enabled(self) -> bool:
        return bool(self.aliases)

    def resolve(self, name: str) -> str:
        """
        Return the real identifier for ``name`` (alias or real form).

        Raises:
            InvalidBucketError: if ``name`` is blank or not configured.
        """
        if not name or not name.strip():
            raise InvalidBucketError(name)
        real = self.alias_to_real.get(name)
        if real is not None:
            return real
        if name in self.real_to_alias:
            return name
        raise InvalidBucketError(name)

    def is_valid(self, name: str) -> bool:
        try:
            self.resolve(name)
        except InvalidBucketError:
            return False
        return True

    def display_name(self, name: str) -> str:
        """Alias for ``name`` if one is configured, otherwise ``name`` itself."""
        try:
            real = self.resolve(name)
        except InvalidBucketError:
            return name
        return self.real_to_alias.get(real, real)

    def entries(self) -> List[Tuple[str, str]]:
        """``(real, display)`` pairs in configured order."""
        return [(real, self.real_to_alias.get(real, real)) for real in self.real_names]


def _duplicates(names: Tuple[str, ...]) -> List[str]:
    seen = set()
    dupes: List[str] = []
    for name in names:
        if name in seen and name not in dupes:
            dupes.append(name)
        seen.add(name)
    return dupes
