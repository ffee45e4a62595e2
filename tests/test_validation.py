"""Tests for validation aggregation."""

from armsynth.resources import GenericResource
from armsynth.stacks import ResourceGroupStack
from armsynth.validation import Severity, ValidationIssue, ValidationReport
from armsynth.validation.aggregator import ValidationAggregator


class WarningResource(GenericResource):
    """Reports one warning about itself."""

    def validate(self, resolved_name=None):
        return [ValidationIssue.warning(self.logical_id, "Consider zone redundancy")]


class BrokenValidatorResource(GenericResource):
    """Its validator raises instead of returning issues."""

    def validate(self, resolved_name=None):
        raise RuntimeError("validator exploded")


def codes(report):
    return [issue.code for issue in report.issues]


class TestValidationAggregator:
    """Test the cross-resource checks."""

    def test_clean_tree_has_no_issues(self, app, resource_group, make_resource, collect):
        ledger = make_resource(resource_group, "Ledger")
        make_resource(resource_group, "Audit", depends_on=[ledger])
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert report.issues == []
        assert not report.is_blocking

    def test_duplicate_names_in_same_scope_and_type(
        self, app, resource_group, make_resource, collect
    ):
        """Names must be unique per scope and provider type, ignoring case."""
        make_resource(resource_group, "First", name="shared")
        make_resource(resource_group, "Second", name="SHARED")
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["DUPLICATE_NAME"]
        assert report.errors[0].source_logical_id == "Prod/Data/Second"

    def test_same_name_in_different_scopes_or_types(
        self, app, subscription, resource_group, make_resource, collect
    ):
        other = ResourceGroupStack(subscription, "Other")
        make_resource(resource_group, "First", name="shared")
        make_resource(other, "Second", name="shared")
        make_resource(
            resource_group, "Third", name="shared", provider_type="Microsoft.KeyVault/vaults"
        )
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert report.issues == []

    def test_unknown_dependency_target(self, app, resource_group, make_resource, collect):
        make_resource(resource_group, "Web", depends_on=["Prod/Data/Missing"])
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["UNKNOWN_DEPENDENCY"]
        assert "Prod/Data/Missing" in report.errors[0].message

    def test_unknown_co_location_target(self, app, resource_group, make_resource, collect):
        make_resource(resource_group, "Web", co_locate_with="Prod/Data/Missing")
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["UNKNOWN_CO_LOCATION"]

    def test_cycle_reported_with_full_path(self, app, resource_group, make_resource, collect):
        """One issue per cycle, naming every node on it."""
        a = make_resource(resource_group, "A")
        b = make_resource(resource_group, "B", depends_on=[a])
        a.add_dependency(b)
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["DEPENDENCY_CYCLE"]
        assert "Prod/Data/A -> Prod/Data/B -> Prod/Data/A" in report.errors[0].message

    def test_self_dependency_is_a_cycle(self, app, resource_group, make_resource, collect):
        a = make_resource(resource_group, "A")
        a.add_dependency(a)
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["DEPENDENCY_CYCLE"]

    def test_co_location_across_scopes_conflicts(
        self, app, subscription, resource_group, make_resource, collect
    ):
        """Co-located resources cannot target different resource groups."""
        other = ResourceGroupStack(subscription, "Other")
        ledger = make_resource(resource_group, "Ledger")
        make_resource(other, "Audit", co_locate_with=ledger)
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["CO_LOCATION_CONFLICT"]
        assert report.errors[0].source_logical_id == "Prod/Data/Ledger"

    def test_co_location_closing_a_cycle(self, app, resource_group, make_resource, collect):
        """A co-located with C while C waits for B and B waits for A."""
        a = make_resource(resource_group, "A")
        b = make_resource(resource_group, "B", depends_on=[a])
        make_resource(resource_group, "C", depends_on=[b], co_locate_with=a)
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["CO_LOCATION_CYCLE"]

    def test_validator_exception_becomes_issue(self, app, resource_group, make_resource, collect):
        """A raising validator does not stop the walk."""
        BrokenValidatorResource(resource_group, "Broken", "Microsoft.Web/sites", "2022-09-01")
        make_resource(resource_group, "Web", depends_on=["Prod/Data/Missing"])
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["VALIDATOR_FAILED", "UNKNOWN_DEPENDENCY"]
        assert "validator exploded" in report.errors[0].message

    def test_all_issues_collected_before_deciding(
        self, app, resource_group, make_resource, collect
    ):
        """Independent problems are all reported in one pass."""
        make_resource(resource_group, "First", name="dup")
        make_resource(resource_group, "Second", name="dup")
        make_resource(resource_group, "Third", depends_on=["Prod/Data/Nowhere"])
        make_resource(resource_group, "Fourth", co_locate_with="Prod/Data/Nowhere")
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert sorted(codes(report)) == [
            "DUPLICATE_NAME",
            "UNKNOWN_CO_LOCATION",
            "UNKNOWN_DEPENDENCY",
        ]

    def test_resource_validator_issues_included(self, app, resource_group, collect):
        GenericResource(resource_group, "Web", "Microsoft.Web/sites", "", max_name_length=10)
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["MISSING_API_VERSION", "NAME_TOO_LONG"]

    def test_validators_receive_resolved_name_without_touching_nodes(
        self, app, resource_group, collect
    ):
        """Generated names are passed to validators; the locked tree stays as declared."""
        web = GenericResource(
            resource_group, "Web", "Microsoft.Web/sites", "2022-09-01", max_name_length=10
        )
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert codes(report) == ["NAME_TOO_LONG"]
        assert collection.by_id["Prod/Data/Web"].declared_name in report.issues[0].message
        assert web.declared_name is None
        assert not hasattr(web, "resolved_name")


class TestSeverity:
    """Test blocking decisions."""

    def test_warnings_do_not_block(self, app, resource_group, collect):
        WarningResource(resource_group, "Web", "Microsoft.Web/sites", "2022-09-01")
        collection, graph = collect(app)

        report = ValidationAggregator().validate(collection, graph)

        assert len(report.warnings) == 1
        assert report.warnings[0].severity is Severity.WARNING
        assert not report.has_errors
        assert not report.is_blocking

    def test_strict_mode_blocks_on_warnings(self, app, resource_group, collect):
        WarningResource(resource_group, "Web", "Microsoft.Web/sites", "2022-09-01")
        collection, graph = collect(app)

        report = ValidationAggregator(strict=True).validate(collection, graph)

        assert report.is_blocking

    def test_report_to_dict(self):
        report = ValidationReport()
        report.add(ValidationIssue.error("A", "broken", code="X"))
        report.add(ValidationIssue.warning("B", "odd"))

        data = report.to_dict()

        assert data["errorCount"] == 1
        assert data["warningCount"] == 1
        assert data["issues"][0] == {
            "severity": "error",
            "sourceLogicalId": "A",
            "code": "X",
            "message": "broken",
        }
