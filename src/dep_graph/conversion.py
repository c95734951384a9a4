"""Conversion of SBOM documents into dependency graphs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .builder import DepGraphBuilder
from .errors import ResolutionError
from .models import DepGraph, PkgInfo, PkgManager

if TYPE_CHECKING:
    from .plugin import Metadata
    from .sbom_client import SBOMConvertClient, ScanResult

logger = logging.getLogger(__name__)


def sbom_to_dep_graphs(
    sbom: bytes,
    metadata: Metadata,
    client: SBOMConvertClient,
    remote_repo_url: str = "",
) -> list[DepGraph]:
    """Convert an SBOM into dependency graphs using the conversion service.

    An SBOM without any dependency graph (e.g. a project without
    dependencies) yields a single graph holding only the root package.
    """
    scans, warnings = client.sbom_convert(sbom, remote_repo_url)
    logger.info("Successfully converted SBOM, warning(s): %d", len(warnings))
    for warning in warnings:
        logger.debug("SBOM conversion warning for %s: %s", warning.bom_ref, warning.msg)

    dep_graphs = extract_dep_graphs_from_scans(scans)
    if not dep_graphs:
        dep_graphs.append(empty_dep_graph(metadata))
    return dep_graphs


def extract_dep_graphs_from_scans(scans: list[ScanResult]) -> list[DepGraph]:
    """Collect the dependency graphs of all scans.

    Raises:
        DepGraphValidationError: if a converted graph is structurally invalid

    """
    dep_graphs = [dep_graph for scan in scans for dep_graph in scan.dep_graphs()]
    for dep_graph in dep_graphs:
        dep_graph.check_invariants()
    return dep_graphs


def empty_dep_graph(metadata: Metadata) -> DepGraph:
    """Build a graph holding only the root package described by metadata."""
    if not metadata.package_manager:
        msg = "failed to create empty depgraph: found empty PackageManager on metadata"
        raise ResolutionError(msg)
    if not metadata.name:
        msg = "failed to create empty depgraph: found empty Name on metadata"
        raise ResolutionError(msg)
    builder = DepGraphBuilder(
        PkgManager(name=metadata.package_manager),
        PkgInfo(name=metadata.name, version=metadata.version or None),
    )
    return builder.build()
