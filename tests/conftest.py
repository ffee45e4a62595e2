from typing import Any, Callable, List, Optional, Tuple

import pytest

from armsynth.collector import CollectionResult, ResourceCollector
from armsynth.dependency_graph import DependencyGraph
from armsynth.partitioner import TemplatePartitioner, TemplateUnit
from armsynth.resources import GenericResource
from armsynth.stacks import App, ResourceGroupStack, SubscriptionStack

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000001"
OTHER_SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000002"

STORAGE_TYPE = "Microsoft.Storage/storageAccounts"
STORAGE_API = "2023-01-01"


# ============================================================================
# Construct Tree Fixtures
# ============================================================================


@pytest.fixture
def app() -> App:
    """Root of a tree with tenant-wide naming defaults."""
    return App("Payments", organization="acme", project="pay")


@pytest.fixture
def subscription(app: App) -> SubscriptionStack:
    """Production subscription in East US."""
    return SubscriptionStack(
        app,
        "Prod",
        subscription_id=SUBSCRIPTION_ID,
        environment="prod",
        geography="eastus",
        instance=1,
    )


@pytest.fixture
def resource_group(subscription: SubscriptionStack) -> ResourceGroupStack:
    """Resource group whose name is generated."""
    return ResourceGroupStack(subscription, "Data")


@pytest.fixture
def make_resource() -> Callable[..., GenericResource]:
    """Factory for generic resources with a fixed size estimate."""

    def factory(
        scope: Any,
        node_id: str,
        size: Optional[int] = 1024,
        provider_type: str = STORAGE_TYPE,
        api_version: str = STORAGE_API,
        **kwargs: Any,
    ) -> GenericResource:
        return GenericResource(
            scope,
            node_id,
            provider_type,
            api_version,
            kwargs.pop("properties", None),
            size_bytes=size,
            **kwargs,
        )

    return factory


# ============================================================================
# Pipeline Helpers
# ============================================================================


@pytest.fixture
def collect() -> Callable[[App], Tuple[CollectionResult, DependencyGraph]]:
    """Run the collector and build the resource dependency graph."""

    def run(root: App) -> Tuple[CollectionResult, DependencyGraph]:
        collection = ResourceCollector().collect(root)
        graph = DependencyGraph.from_edges(
            (d.logical_id for d in collection.descriptors), collection.edges
        )
        return collection, graph

    return run


@pytest.fixture
def partition(collect) -> Callable[..., Tuple[CollectionResult, List[TemplateUnit]]]:
    """Collect and partition a tree with the given ceilings."""

    def run(root: App, **options: Any) -> Tuple[CollectionResult, List[TemplateUnit]]:
        collection, graph = collect(root)
        options.setdefault("stack_name", root.stack_name)
        units = TemplatePartitioner(**options).partition(collection.descriptors, graph)
        return collection, units

    return run
