"""
Configuration models for synthesis.

Provides type-safe configuration using pydantic with validation,
defaults, and schema enforcement.
"""

from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Hard limits Azure Resource Manager enforces per template
ARM_MAX_TEMPLATE_BYTES = 4 * 1024 * 1024
ARM_MAX_RESOURCES_PER_TEMPLATE = 800
ARM_MAX_PARAMETERS_PER_TEMPLATE = 256
ARM_MAX_OUTPUTS_PER_TEMPLATE = 64

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SynthesisOptions(BaseModel):
    """Options controlling how a construct tree is partitioned and named."""

    max_unit_size_bytes: Annotated[int, Field(gt=0, le=ARM_MAX_TEMPLATE_BYTES)] = Field(
        default=3_670_016,
        description="Size ceiling of one template unit in bytes (3.5 MiB)",
    )
    max_resources_per_unit: Annotated[
        int, Field(gt=0, le=ARM_MAX_RESOURCES_PER_TEMPLATE)
    ] = Field(
        default=200,
        description="Maximum number of resources in one template unit",
    )
    max_parameters_per_unit: Annotated[
        int, Field(gt=0, le=ARM_MAX_PARAMETERS_PER_TEMPLATE)
    ] = Field(
        default=ARM_MAX_PARAMETERS_PER_TEMPLATE,
        description="Maximum cross-unit parameters one template unit consumes",
    )
    max_outputs_per_unit: Annotated[int, Field(gt=0, le=ARM_MAX_OUTPUTS_PER_TEMPLATE)] = Field(
        default=ARM_MAX_OUTPUTS_PER_TEMPLATE,
        description="Maximum outputs one template unit exposes to later units",
    )
    name_separator: str = Field(
        default="-",
        description="Separator between generated name components",
    )
    strict: bool = Field(
        default=False,
        description="Treat validation warnings as errors",
    )

    model_config = ConfigDict(extra="forbid")  # Reject unknown fields

    @field_validator("name_separator")
    @classmethod
    def validate_separator(cls, v: str) -> str:
        """Separators are short and free of whitespace."""
        if len(v) > 3 or any(ch.isspace() for ch in v):
            raise ValueError("name_separator must be at most 3 non-whitespace characters")
        return v


class OutputConfig(BaseModel):
    """Where and how synthesized templates are written."""

    out_dir: Path = Field(
        default=Path("armsynth.out"),
        description="Directory receiving the unit templates and manifest",
    )
    format: str = Field(
        default="arm",
        description="Registered emitter format",
    )
    emit_root_template: bool = Field(
        default=True,
        description="Also write azuredeploy.json orchestrating every unit",
    )

    model_config = ConfigDict(extra="forbid")


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(default="INFO", description="Root log level")
    json_logs: bool = Field(
        default=False,
        description="Render structlog events as JSON instead of console text",
    )

    model_config = ConfigDict(extra="forbid")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(LOG_LEVELS)}")
        return level


class ArmSynthConfig(BaseModel):
    """Root configuration."""

    synthesis: SynthesisOptions = Field(
        default_factory=SynthesisOptions,
        description="Partitioning and naming settings",
    )
    output: OutputConfig = Field(
        default_factory=OutputConfig,
        description="Output settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging settings",
    )

    model_config = ConfigDict(extra="forbid")
