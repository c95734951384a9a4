"""The `dep-graph` APIs."""

__version__ = "0.1.0"

from .builder import DepGraphBuilder
from .errors import (
    CatalogError,
    DepGraphError,
    ExitCodeError,
    NoSupportedProjectsError,
    ResolutionError,
)
from .legacy import LegacyResolver
from .models import DepGraph, PkgInfo, PkgManager
from .orchestrator import ResolutionOptions, ResolutionOrchestrator
from .parsers import DepGraphOutput, JSONLOutputParser, PlainTextOutputParser
from .workflow import WorkflowOutput

__all__ = [
    "CatalogError",
    "DepGraph",
    "DepGraphBuilder",
    "DepGraphError",
    "DepGraphOutput",
    "ExitCodeError",
    "JSONLOutputParser",
    "LegacyResolver",
    "NoSupportedProjectsError",
    "PkgInfo",
    "PkgManager",
    "PlainTextOutputParser",
    "ResolutionError",
    "ResolutionOptions",
    "ResolutionOrchestrator",
    "WorkflowOutput",
]
