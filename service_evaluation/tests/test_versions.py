"""
Unit tests for flag version resolution.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import FlagVersionNotFoundError
from service_evaluation.app.engine.models import FeatureFlag, FlagVersion, TargetingRule
from service_evaluation.app.engine.versions import VersionResolver


def make_flag(current_version_id=None, versions=()):
    return FeatureFlag(
        id="flag-1",
        key="checkout",
        tenant_id="acme",
        enabled=True,
        current_version_id=current_version_id,
        versions=versions
    )


class TestVersionResolver:
    """Test cases for VersionResolver."""

    @pytest.fixture
    def resolver(self):
        """Create VersionResolver instance."""
        return VersionResolver()

    @pytest.fixture
    def versions(self):
        """Three versions stored out of order."""
        return (
            FlagVersion(id="v2", version=2, targeting_rules=(TargetingRule(id="r2"),)),
            FlagVersion(id="v3", version=3, targeting_rules=(TargetingRule(id="r3"),)),
            FlagVersion(id="v1", version=1, targeting_rules=(TargetingRule(id="r1"),)),
        )

    def test_current_version_is_used(self, resolver, versions):
        resolved = resolver.resolve(make_flag("v2", versions))

        assert resolved.version == 2
        assert resolved.version_id == "v2"
        assert [rule.id for rule in resolved.rules] == ["r2"]
        assert resolved.anomaly is None

    def test_missing_current_version_falls_back_to_highest(self, resolver, versions):
        resolved = resolver.resolve(make_flag(None, versions))

        assert resolved.version == 3
        assert resolved.anomaly is None

    def test_dangling_current_version_is_an_anomaly(self, resolver, versions):
        resolved = resolver.resolve(make_flag("v9", versions))

        assert resolved.version == 3
        assert "v9" in resolved.anomaly

    def test_no_versions(self, resolver):
        resolved = resolver.resolve(make_flag("v1"))

        assert resolved.version is None
        assert resolved.rules == ()

    def test_explicit_version_replay(self, resolver, versions):
        resolved = resolver.resolve(make_flag("v3", versions), version=1)

        assert resolved.version == 1
        assert [rule.id for rule in resolved.rules] == ["r1"]

    def test_unknown_explicit_version(self, resolver, versions):
        with pytest.raises(FlagVersionNotFoundError) as exc_info:
            resolver.resolve(make_flag("v3", versions), version=7)

        assert exc_info.value.code == "VERSION_NOT_FOUND"
        assert exc_info.value.http_status == 404

    def test_active_rules(self, resolver, versions):
        assert [rule.id for rule in resolver.active_rules(make_flag("v1", versions))] == ["r1"]
        assert resolver.active_rules(make_flag()) == ()
