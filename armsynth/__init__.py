"""ARM Synth - synthesize construct trees into Azure Resource Manager templates."""

from .config import SynthesisOptions
from .construct import Capability, Node, RootNode, attach, find_ancestor, walk
from .exceptions import (
    ArmSynthError,
    ConfigError,
    CycleError,
    DeclarationError,
    DuplicateIdError,
    InternalInvariantError,
    NamingError,
    PartitionOverflowError,
    ScopeResolutionError,
    SynthesisValidationError,
    TreeLockedError,
)
from .naming import NamingResolver
from .resources import GenericResource, Resource
from .scope import DeploymentScope, Geography, ScopeContext, ScopeKey
from .stacks import App, ManagementGroupStack, ResourceGroupStack, SubscriptionStack
from .synthesizer import SynthesisResult, Synthesizer, synthesize
from .validation import Severity, ValidationIssue, ValidationReport

__version__ = "0.1.0"

__all__ = [
    "App",
    "ArmSynthError",
    "Capability",
    "ConfigError",
    "CycleError",
    "DeclarationError",
    "DeploymentScope",
    "DuplicateIdError",
    "GenericResource",
    "Geography",
    "InternalInvariantError",
    "ManagementGroupStack",
    "NamingError",
    "NamingResolver",
    "Node",
    "PartitionOverflowError",
    "Resource",
    "ResourceGroupStack",
    "RootNode",
    "ScopeContext",
    "ScopeKey",
    "ScopeResolutionError",
    "Severity",
    "SubscriptionStack",
    "SynthesisOptions",
    "SynthesisResult",
    "SynthesisValidationError",
    "Synthesizer",
    "TreeLockedError",
    "ValidationIssue",
    "ValidationReport",
    "attach",
    "find_ancestor",
    "synthesize",
    "walk",
]
