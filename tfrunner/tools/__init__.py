"""Tool adapters for driving external CLIs in tfrunner."""

from tfrunner.tools.base import ToolAdapter
from tfrunner.tools.terraform import (
    ApplyOptions,
    DestroyOptions,
    InitOptions,
    PlanOptions,
    TerraformAdapter,
)

__all__ = [
    "ToolAdapter",
    "TerraformAdapter",
    "InitOptions",
    "PlanOptions",
    "ApplyOptions",
    "DestroyOptions",
]
