"""
Shared fixtures for the prod / prod-pci scenario.
"""

import pytest

from peering.config import Config
from peering.registry import PeerRegistry
from peering.tests.fakes import FakeResolver, build_scenario_cloud, scenario_data


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """No real sleeping between retries or activation polls."""
    monkeypatch.setattr(Config, "RETRY_BASE_DELAY", 0.0)
    monkeypatch.setattr(Config, "RETRY_MAX_DELAY", 0.0)
    monkeypatch.setattr(Config, "MAX_RETRIES", 3)


@pytest.fixture
def cloud():
    """Fresh two-account cloud with tagged app and untagged data tiers."""
    return build_scenario_cloud()


@pytest.fixture
def registry():
    """Registry for prod <-> prod-pci, both with additional routes tagged 'app'."""
    return PeerRegistry.from_dict(scenario_data())


@pytest.fixture
def resolver(cloud):
    """Resolver handing out contexts bound to the fake cloud."""
    return FakeResolver(cloud)


@pytest.fixture
def contexts(registry, resolver):
    """(prod, prod-pci) contexts."""
    return resolver.resolve(registry.get("prod")), resolver.resolve(registry.get("prod-pci"))
