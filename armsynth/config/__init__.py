"""
Configuration management for synthesis.

Provides type-safe configuration loading and validation with support
for multiple configuration sources and priority-based merging.
"""

from ..exceptions import ConfigError
from .loader import ConfigLoader, create_default_config, load_config
from .models import (
    ARM_MAX_OUTPUTS_PER_TEMPLATE,
    ARM_MAX_PARAMETERS_PER_TEMPLATE,
    ARM_MAX_RESOURCES_PER_TEMPLATE,
    ARM_MAX_TEMPLATE_BYTES,
    ArmSynthConfig,
    LoggingConfig,
    OutputConfig,
    SynthesisOptions,
)

__all__ = [
    "ARM_MAX_OUTPUTS_PER_TEMPLATE",
    "ARM_MAX_PARAMETERS_PER_TEMPLATE",
    "ARM_MAX_RESOURCES_PER_TEMPLATE",
    "ARM_MAX_TEMPLATE_BYTES",
    "ArmSynthConfig",
    "ConfigError",
    "ConfigLoader",
    "LoggingConfig",
    "OutputConfig",
    "SynthesisOptions",
    "create_default_config",
    "load_config",
]
