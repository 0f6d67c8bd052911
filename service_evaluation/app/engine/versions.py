"""
Selection of the rule set a flag is evaluated with.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from shared.errors import FlagVersionNotFoundError
from shared.logging import get_logger
from .models import FeatureFlag, FlagVersion, TargetingRule


@dataclass(frozen=True)
class ResolvedVersion:
    """The version chosen for an evaluation and its ordered rules."""
    version: Optional[int]
    version_id: Optional[str]
    rules: Tuple[TargetingRule, ...] = ()
    anomaly: Optional[str] = None


class VersionResolver:
    """Picks the active FlagVersion of a flag.

    The current version is the one referenced by ``current_version_id``.
    When that reference is missing or dangling the highest version number
    wins; a dangling reference is reported as an anomaly, not an error.
    """

    def __init__(self):
        self.logger = get_logger("evaluation.versions")

    def resolve(self, flag: FeatureFlag, version: Optional[int] = None) -> ResolvedVersion:
        """Resolve the version to evaluate.

        ``version`` pins an explicit version number for audit replay and
        raises FlagVersionNotFoundError if the flag has no such version.
        """
        if version is not None:
            for candidate in flag.versions:
                if candidate.version == version:
                    return self._resolved(candidate)
            raise FlagVersionNotFoundError(flag.key, version)

        if not flag.versions:
            return ResolvedVersion(version=None, version_id=None)

        if flag.current_version_id is not None:
            for candidate in flag.versions:
                if candidate.id == flag.current_version_id:
                    return self._resolved(candidate)

        latest = max(flag.versions, key=lambda v: v.version)
        anomaly = None
        if flag.current_version_id is not None:
            anomaly = (
                f"current version '{flag.current_version_id}' not found; "
                f"using version {latest.version}"
            )
            self.logger.warning(
                "Unresolved current flag version",
                flag_key=flag.key,
                tenant_id=flag.tenant_id,
                current_version_id=flag.current_version_id,
                fallback_version=latest.version
            )
        return self._resolved(latest, anomaly)

    def active_rules(self, flag: FeatureFlag) -> Tuple[TargetingRule, ...]:
        """Ordered rules of the active version; empty when the flag has none."""
        return self.resolve(flag).rules

    @staticmethod
    def _resolved(flag_version: FlagVersion, anomaly: Optional[str] = None) -> ResolvedVersion:
        return ResolvedVersion(
            version=flag_version.version,
            version_id=flag_version.id,
            rules=flag_version.targeting_rules,
            anomaly=anomaly
        )
