"""Tests for the construct tree model."""

import gc

import pytest

from armsynth.construct import Capability, Node, RootNode, attach, find_ancestor, walk
from armsynth.exceptions import DeclarationError, DuplicateIdError, TreeLockedError
from armsynth.stacks import App, ResourceGroupStack, SubscriptionStack, kebab_case


class TestAttach:
    """Test attaching nodes to a tree."""

    def test_constructor_with_scope_attaches(self, app, subscription):
        """Passing a parent to the constructor attaches the node."""
        assert subscription.parent is app
        assert app.children == (subscription,)
        assert app.child("Prod") is subscription

    def test_duplicate_sibling_id_raises(self, subscription):
        """A sibling already owning the id is a DuplicateIdError."""
        ResourceGroupStack(subscription, "Data")

        with pytest.raises(DuplicateIdError) as exc_info:
            ResourceGroupStack(subscription, "Data")

        assert exc_info.value.context["node_id"] == "Data"
        assert isinstance(exc_info.value, DeclarationError)

    def test_same_id_under_different_parents_is_allowed(self, subscription):
        """Ids only need to be unique among siblings."""
        first = ResourceGroupStack(subscription, "First")
        second = ResourceGroupStack(subscription, "Second")
        Node(first, "Shared")
        Node(second, "Shared")

        assert first.child("Shared").path == "Prod/First/Shared"
        assert second.child("Shared").path == "Prod/Second/Shared"

    def test_attach_detached_subtree(self, app):
        """A subtree built without a parent can be attached later."""
        detached = Node(None, "Detached")
        Node(detached, "Leaf")

        attach(app, detached)

        assert detached.parent is app
        assert [node.node_id for node in app.declarations] == ["Payments", "Detached", "Leaf"]

    def test_attach_twice_raises(self, app):
        """A node has exactly one parent."""
        node = Node(app, "Once")
        other = Node(app, "Other")

        with pytest.raises(DeclarationError, match="already attached"):
            attach(other, node)

    def test_attach_below_itself_raises(self, app):
        """Attaching an ancestor below its descendant is rejected."""
        detached = Node(None, "Top")
        child = Node(detached, "Child")

        with pytest.raises(DeclarationError, match="below itself"):
            attach(child, detached)

    @pytest.mark.parametrize("bad_id", ["", "has/slash", "-leading", "with space", "a:b"])
    def test_invalid_ids_raise(self, app, bad_id):
        """Ids must compose into paths and reference placeholders."""
        with pytest.raises(DeclarationError, match="Invalid node id"):
            Node(app, bad_id)

    def test_locked_tree_rejects_new_nodes(self, app, subscription):
        """Nodes cannot be added once synthesis has locked the tree."""
        app.declarations.lock()

        with pytest.raises(TreeLockedError):
            ResourceGroupStack(subscription, "Late")

        assert subscription.children == ()


class TestTreeQueries:
    """Test ancestor lookup, paths and walking."""

    def test_find_ancestor_returns_nearest(self, app, subscription, resource_group):
        """The nearest ancestor-or-self with the capability wins."""
        leaf = Node(resource_group, "Leaf")

        assert find_ancestor(leaf, Capability.RESOURCE_GROUP) is resource_group
        assert find_ancestor(leaf, Capability.SUBSCRIPTION) is subscription
        assert find_ancestor(leaf, Capability.ROOT) is app
        assert find_ancestor(resource_group, Capability.RESOURCE_GROUP) is resource_group

    def test_find_ancestor_not_found(self, app, subscription):
        """A missing capability yields None."""
        assert find_ancestor(subscription, Capability.RESOURCE_GROUP) is None
        assert find_ancestor(subscription, Capability.MANAGEMENT_GROUP) is None

    def test_path_excludes_root(self, app, subscription, resource_group):
        """Paths are the ids below the root."""
        leaf = Node(resource_group, "Leaf")

        assert app.path == ""
        assert leaf.path == "Prod/Data/Leaf"
        assert leaf.root is app

    def test_walk_is_pre_order_in_declaration_order(self, app):
        """Children are visited in the order they were declared."""
        a = Node(app, "A")
        Node(a, "A1")
        Node(a, "A2")
        Node(app, "B")

        assert [node.node_id for node in walk(app)] == ["Payments", "A", "A1", "A2", "B"]

    def test_registry_records_declaration_order(self, app, subscription, resource_group):
        """The root owns a registry indexing every node."""
        leaf = Node(resource_group, "Leaf")

        registry = app.declarations
        assert len(registry) == 4
        assert registry.index_of(app) == 0
        assert registry.index_of(leaf) == 3
        assert leaf.registry is registry

    def test_index_of_foreign_node_raises(self, app):
        """Nodes of another tree are not in the registry."""
        other = App("Other")
        foreign = Node(other, "Foreign")

        with pytest.raises(DeclarationError):
            app.declarations.index_of(foreign)

    def test_registry_belongs_to_root_nodes_only(self):
        """Claiming the root capability does not make a node own a registry."""

        class Impostor(Node):
            capabilities = frozenset({Capability.ROOT})

        impostor = Impostor(None, "Impostor")
        root = RootNode("Plain")

        assert Node(impostor, "Leaf").registry is None
        assert Node(root, "Leaf").registry is root.declarations
        assert root.stack_name == "plain"

    def test_parent_link_is_weak(self):
        """Children do not keep their parent alive."""
        root = App("Temporary")
        child = Node(root, "Child")

        del root
        gc.collect()

        assert child.parent is None


class TestStacks:
    """Test the capabilities and context of stack nodes."""

    def test_capabilities(self, app, subscription, resource_group):
        """Stacks expose explicit capability sets."""
        assert app.has_capability(Capability.ROOT)
        assert subscription.has_capability(Capability.SUBSCRIPTION)
        assert subscription.has_capability(Capability.NAMING_CONTEXT)
        assert resource_group.has_capability(Capability.RESOURCE_GROUP)
        assert not resource_group.has_capability(Capability.SUBSCRIPTION)

    def test_instance_number_is_zero_padded(self, app):
        """Integer instances become two-digit strings."""
        stack = SubscriptionStack(app, "Dev", subscription_id="sub", instance=3)

        assert stack.context_overrides()["instance"] == "03"

    def test_stack_name_is_kebab_case(self):
        """Unit names derive from the root id."""
        assert App("PaymentsApp").stack_name == "payments-app"
        assert kebab_case("my_app") == "my-app"
        assert kebab_case("App") == "app"
