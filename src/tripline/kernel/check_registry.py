"""Check registry: the named checks available for files and for directories."""

from typing import Dict, Iterable, List, Optional

from tripline.errors import UnknownCheckError
from tripline.kernel.checks import (
    Check,
    ChildCheck,
    ModTimeCheck,
    NoCheck,
    OwnerCache,
    OwnershipCheck,
    PermissionsCheck,
    SizeCheck,
    Sha256Check,
)

DEFAULT_FILE_CHECKS = "size,modtime,ownership,permissions,sha256"
DEFAULT_DIR_CHECKS = "child,modtime,ownership,permissions"


class CheckRegistry:
    """Maps check names to check instances, separately for files and dirs.

    A registry is an explicit value handed to the engine, so tests can build
    one with fake checks. Instances may carry state (the ownership cache),
    which lives as long as the registry.
    """

    def __init__(self, file_checks: Iterable[Check], dir_checks: Iterable[Check]):
        self._file_checks: Dict[str, Check] = {c.name: c for c in file_checks}
        self._dir_checks: Dict[str, Check] = {c.name: c for c in dir_checks}

    def _checks_for(self, is_dir: bool) -> Dict[str, Check]:
        return self._dir_checks if is_dir else self._file_checks

    def get(self, name: str, is_dir: bool) -> Optional[Check]:
        """Get a check by name, or None if it is not registered for this kind."""
        return self._checks_for(is_dir).get(name)

    def names(self, is_dir: bool) -> List[str]:
        return sorted(self._checks_for(is_dir))

    def parse_check_list(self, checks: str, is_dir: bool) -> List[str]:
        """Split "check1, Check2,..." into normalized names.

        Names are trimmed and lower-cased. Order is kept, it is the order the
        checks run in.

        Raises:
            UnknownCheckError: On the first name not registered for this kind.
        """
        valid = self._checks_for(is_dir)
        result = []
        for raw in checks.split(","):
            name = raw.strip().lower()
            if name not in valid:
                raise UnknownCheckError(name, is_dir=is_dir)
            result.append(name)
        return result


def default_registry() -> CheckRegistry:
    """Build a registry with the built-in checks and a fresh ownership cache."""
    ownership = OwnershipCheck(OwnerCache())
    modtime = ModTimeCheck()
    permissions = PermissionsCheck()
    nocheck = NoCheck()
    return CheckRegistry(
        file_checks=[nocheck, SizeCheck(), ownership, modtime, permissions, Sha256Check()],
        dir_checks=[nocheck, ownership, ChildCheck(), modtime, permissions],
    )
