"""Tests for template partitioning."""

import pytest

from armsynth.exceptions import PartitionOverflowError
from armsynth.partitioner import ReferenceIndex, TemplatePartitioner, build_atomic_groups
from armsynth.rewriter import ReferenceRewriter
from armsynth.stacks import ResourceGroupStack


def members(units):
    return [unit.logical_ids for unit in units]


class TestAtomicGroups:
    """Test co-location equivalence classes."""

    def test_singletons_without_co_location(self, app, resource_group, make_resource, collect):
        make_resource(resource_group, "A")
        make_resource(resource_group, "B")
        collection, _ = collect(app)

        groups = build_atomic_groups(collection.descriptors)

        assert [group.logical_ids for group in groups] == [["Prod/Data/A"], ["Prod/Data/B"]]

    def test_co_location_is_transitive(self, app, resource_group, make_resource, collect):
        """A~B and B~C put all three in one group."""
        a = make_resource(resource_group, "A", size=100)
        b = make_resource(resource_group, "B", size=200, co_locate_with=a)
        make_resource(resource_group, "C", size=300, co_locate_with=b)
        make_resource(resource_group, "D", size=400)
        collection, _ = collect(app)

        groups = build_atomic_groups(collection.descriptors)

        assert [group.logical_ids for group in groups] == [
            ["Prod/Data/A", "Prod/Data/B", "Prod/Data/C"],
            ["Prod/Data/D"],
        ]
        assert groups[0].size_bytes == 600

    def test_group_dependencies_exclude_members(self, app, resource_group, make_resource, collect):
        base = make_resource(resource_group, "Base")
        a = make_resource(resource_group, "A", depends_on=[base])
        make_resource(resource_group, "B", depends_on=[a], co_locate_with=a)
        collection, _ = collect(app)

        groups = build_atomic_groups(collection.descriptors)

        assert groups[1].logical_ids == ["Prod/Data/A", "Prod/Data/B"]
        assert groups[1].dependencies == {"Prod/Data/Base"}

    def test_strong_affinity_children_join_their_parent(
        self, app, resource_group, make_resource, collect
    ):
        """Subnets stay with their network; unrelated child types do not."""
        vnet = make_resource(
            resource_group, "Vnet",
            provider_type="Microsoft.Network/virtualNetworks", api_version="2023-04-01",
        )
        make_resource(
            vnet, "Apps",
            provider_type="Microsoft.Network/virtualNetworks/subnets", api_version="2023-04-01",
        )
        make_resource(
            vnet, "Peering",
            provider_type="Microsoft.Network/virtualNetworks/virtualNetworkPeerings",
            api_version="2023-04-01",
        )
        collection, _ = collect(app)

        groups = build_atomic_groups(collection.descriptors)

        assert collection.by_id["Prod/Data/Vnet/Apps"].parent_logical_id == "Prod/Data/Vnet"
        assert [group.logical_ids for group in groups] == [
            ["Prod/Data/Vnet", "Prod/Data/Vnet/Apps"],
            ["Prod/Data/Vnet/Peering"],
        ]

    def test_strong_affinity_keeps_site_config_in_parent_unit(
        self, app, resource_group, make_resource, partition
    ):
        site = make_resource(
            resource_group, "Portal", size=1000,
            provider_type="Microsoft.Web/sites", api_version="2022-09-01",
        )
        make_resource(resource_group, "Ledger", size=1000)
        make_resource(
            site, "Settings", size=1000,
            provider_type="Microsoft.Web/sites/config", api_version="2022-09-01",
        )

        _, units = partition(app, max_unit_size_bytes=2000)

        assert members(units) == [
            ["Prod/Data/Portal", "Prod/Data/Portal/Settings"],
            ["Prod/Data/Ledger"],
        ]


class TestTemplatePartitioner:
    """Test greedy packing of atomic groups into units."""

    def test_reference_example(self, app, resource_group, make_resource, partition):
        """A(1KB), B(1KB, needs A), C(1KB, with A), 2.5KB ceiling: {A,C} then {B}."""
        a = make_resource(resource_group, "A", size=1024)
        make_resource(resource_group, "B", size=1024, depends_on=[a])
        make_resource(resource_group, "C", size=1024, co_locate_with=a)

        _, units = partition(app, max_unit_size_bytes=2560)

        assert members(units) == [["Prod/Data/A", "Prod/Data/C"], ["Prod/Data/B"]]
        assert [unit.size_bytes for unit in units] == [2048, 1024]
        assert [unit.name for unit in units] == ["payments-01", "payments-02"]
        assert units[1].depends_on == ["payments-01"]
        assert units[0].depends_on == []

    def test_co_location_independent_of_declaration_order(
        self, app, resource_group, make_resource, partition
    ):
        """The co-located resource may be declared before its partner."""
        make_resource(resource_group, "C", size=1024, co_locate_with="Prod/Data/A")
        make_resource(resource_group, "B", size=1024, depends_on=["Prod/Data/A"])
        make_resource(resource_group, "A", size=1024)

        _, units = partition(app, max_unit_size_bytes=2560)

        assert sorted(units[0].logical_ids) == ["Prod/Data/A", "Prod/Data/C"]
        assert members(units[1:]) == [["Prod/Data/B"]]
        assert units[1].depends_on == [units[0].name]

    def test_empty_input_yields_no_units(self, app, resource_group, partition):
        _, units = partition(app)

        assert units == []

    def test_resource_count_ceiling(self, app, resource_group, make_resource, partition):
        for node_id in ["A", "B", "C", "D", "E"]:
            make_resource(resource_group, node_id, size=10)

        _, units = partition(app, max_resources_per_unit=2)

        assert [unit.resource_count for unit in units] == [2, 2, 1]
        assert [unit.depends_on for unit in units] == [[], [], []]

    def test_scope_change_opens_new_unit(
        self, app, subscription, resource_group, make_resource, partition
    ):
        """Each unit deploys to exactly one scope."""
        other = ResourceGroupStack(subscription, "Other")
        a = make_resource(resource_group, "A", size=10)
        b = make_resource(other, "B", size=10, depends_on=[a])
        make_resource(resource_group, "C", size=10, depends_on=[b])

        _, units = partition(app)

        assert members(units) == [["Prod/Data/A"], ["Prod/Other/B"], ["Prod/Data/C"]]
        assert len({unit.scope_key for unit in units}) == 2
        assert [unit.depends_on for unit in units] == [[], ["payments-01"], ["payments-02"]]

    def test_dependencies_always_in_earlier_units(
        self, app, resource_group, make_resource, partition
    ):
        """Collapsing units leaves an acyclic graph pointing backwards."""
        previous = None
        for index in range(8):
            previous = make_resource(
                resource_group, f"R{index}", size=600,
                depends_on=[previous] if previous is not None else None,
            )

        collection, units = partition(app, max_unit_size_bytes=1300)
        position = {unit.name: i for i, unit in enumerate(units)}

        assert len(units) == 4
        for index, unit in enumerate(units):
            assert all(position[name] < index for name in unit.depends_on)
        covered = [logical_id for unit in units for logical_id in unit.logical_ids]
        assert sorted(covered) == sorted(d.logical_id for d in collection.descriptors)

    def test_intra_group_dependency_is_a_no_op(
        self, app, resource_group, make_resource, partition
    ):
        a = make_resource(resource_group, "A", size=100)
        make_resource(resource_group, "B", size=100, depends_on=[a], co_locate_with=a)

        _, units = partition(app)

        assert members(units) == [["Prod/Data/A", "Prod/Data/B"]]
        assert units[0].depends_on == []

    def test_members_follow_dependency_order(
        self, app, resource_group, make_resource, partition
    ):
        """Within a group, dependencies are listed first."""
        make_resource(resource_group, "Web", size=10, depends_on=["Prod/Data/Plan"],
                      co_locate_with="Prod/Data/Plan")
        make_resource(resource_group, "Plan", size=10)

        _, units = partition(app)

        assert units[0].logical_ids == ["Prod/Data/Plan", "Prod/Data/Web"]

    def test_stable_across_runs(self, app, resource_group, make_resource, collect):
        for index in range(10):
            make_resource(resource_group, f"R{index}", size=100 * (index + 1))
        collection, graph = collect(app)
        partitioner = TemplatePartitioner(max_unit_size_bytes=1000, stack_name="payments")

        first = partitioner.partition(collection.descriptors, graph)
        second = partitioner.partition(collection.descriptors, graph)

        assert members(first) == members(second)
        assert [unit.name for unit in first] == [unit.name for unit in second]


class TestPartitionOverflow:
    """Test indivisible groups above a ceiling."""

    def test_oversized_resource_names_only_itself(
        self, app, resource_group, make_resource, partition
    ):
        make_resource(resource_group, "Small", size=100)
        make_resource(resource_group, "Big", size=5000)
        make_resource(resource_group, "Other", size=100)

        with pytest.raises(PartitionOverflowError) as exc_info:
            partition(app, max_unit_size_bytes=2560)

        assert exc_info.value.logical_ids == ["Prod/Data/Big"]
        assert exc_info.value.context["size_bytes"] == 5000

    def test_co_located_group_over_count_ceiling(
        self, app, resource_group, make_resource, partition
    ):
        a = make_resource(resource_group, "A", size=10)
        make_resource(resource_group, "B", size=10, co_locate_with=a)
        make_resource(resource_group, "C", size=10)

        with pytest.raises(PartitionOverflowError) as exc_info:
            partition(app, max_resources_per_unit=1)

        assert exc_info.value.logical_ids == ["Prod/Data/A", "Prod/Data/B"]

    def test_group_exactly_at_ceiling_fits(self, app, resource_group, make_resource, partition):
        make_resource(resource_group, "A", size=2560)

        _, units = partition(app, max_unit_size_bytes=2560)

        assert members(units) == [["Prod/Data/A"]]


class TestReferenceLimits:
    """Test the per-template limits on cross-unit parameters and outputs."""

    SITE = {"provider_type": "Microsoft.Web/sites", "api_version": "2022-09-01"}

    def test_reference_index_counts_boundary_values(
        self, app, resource_group, make_resource, collect
    ):
        ledger = make_resource(resource_group, "Ledger")
        make_resource(
            resource_group, "Portal",
            properties={"a": ledger.ref(), "b": ledger.ref(), "c": ledger.ref("name")},
            **self.SITE,
        )
        collection, _ = collect(app)

        index = ReferenceIndex(collection.descriptors)

        assert index.outputs({"Prod/Data/Ledger"}) == {
            ("Prod/Data/Ledger", "id"),
            ("Prod/Data/Ledger", "name"),
        }
        assert index.parameters({"Prod/Data/Portal"}) == index.outputs({"Prod/Data/Ledger"})
        assert index.outputs({"Prod/Data/Ledger", "Prod/Data/Portal"}) == set()

    def test_producers_split_before_exceeding_output_limit(
        self, app, resource_group, make_resource, partition
    ):
        """70 stores read by one portal: the first unit stops at 64 outputs."""
        stores = [make_resource(resource_group, f"Store{i:02d}", size=100) for i in range(70)]
        make_resource(
            resource_group, "Portal", size=100,
            properties={f"store{i:02d}": store.ref() for i, store in enumerate(stores)},
            **self.SITE,
        )

        collection, units = partition(app, max_resources_per_unit=70)
        ReferenceRewriter().rewrite(units, collection.by_id)

        assert [unit.resource_count for unit in units] == [64, 7]
        assert len(units[0].outputs) == 64
        assert len(units[1].parameters) == 64
        assert units[1].outputs == {}

    def test_consumer_moves_on_when_parameters_run_out(
        self, app, resource_group, make_resource, partition
    ):
        a = make_resource(resource_group, "A", size=100)
        b = make_resource(resource_group, "B", size=100)
        make_resource(resource_group, "X", size=100, properties={"a": a.ref()})
        make_resource(resource_group, "Y", size=100, properties={"b": b.ref()})

        _, units = partition(app, max_resources_per_unit=2, max_parameters_per_unit=1)

        assert members(units) == [
            ["Prod/Data/A", "Prod/Data/B"],
            ["Prod/Data/X"],
            ["Prod/Data/Y"],
        ]

    def test_group_reading_too_many_values_overflows(
        self, app, resource_group, make_resource, partition
    ):
        stores = [make_resource(resource_group, f"Store{i}", size=100) for i in range(3)]
        make_resource(
            resource_group, "Portal", size=100,
            properties={f"s{i}": store.ref() for i, store in enumerate(stores)},
            **self.SITE,
        )

        with pytest.raises(PartitionOverflowError) as exc_info:
            partition(app, max_resources_per_unit=3, max_parameters_per_unit=2)

        assert exc_info.value.logical_ids == ["Prod/Data/Portal"]
        assert "3 values" in exc_info.value.message

    def test_unit_exposing_too_many_outputs_overflows(
        self, app, resource_group, make_resource, partition
    ):
        ledger = make_resource(resource_group, "Ledger", size=1000)
        make_resource(
            resource_group, "Portal", size=1000,
            properties={
                "id": ledger.ref(),
                "name": ledger.ref("name"),
                "endpoint": ledger.ref("properties.primaryEndpoints.blob"),
            },
            **self.SITE,
        )

        with pytest.raises(PartitionOverflowError) as exc_info:
            partition(app, max_unit_size_bytes=1500, max_outputs_per_unit=2)

        assert exc_info.value.logical_ids == ["Prod/Data/Ledger"]
        assert "payments-01" in exc_info.value.message
