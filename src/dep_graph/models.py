"""Core data models for the dependency graph document."""

from __future__ import annotations

import networkx as nx
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from .errors import DepGraphDecodeError, DepGraphValidationError

SCHEMA_VERSION = "1.3.0"


class _GraphModel(BaseModel):
    """Base for all graph document models: camelCase aliases, construction by field name, immutable."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Repository(_GraphModel):
    """A package repository known to the package manager."""

    alias: str


class PkgManager(_GraphModel):
    """The package manager that produced the graph."""

    name: str
    version: str | None = None
    repositories: tuple[Repository, ...] | None = None


class PkgInfo(_GraphModel):
    """Name, version and package URL of a package."""

    name: str
    version: str | None = None
    package_url: str | None = Field(default=None, alias="purl")

    @property
    def pkg_id(self) -> str:
        """Get the deterministic package id (`name@version`)."""
        return f"{self.name}@{self.version or ''}"


class Pkg(_GraphModel):
    """A package entry in the graph, referenced by nodes through its id."""

    id: str
    info: PkgInfo


class Property(_GraphModel):
    name: str


class VersionProvenance(_GraphModel):
    type: str
    location: str
    property: Property | None = None


class NodeInfo(_GraphModel):
    version_provenance: VersionProvenance | None = Field(default=None, alias="versionProvenance")
    labels: dict[str, str] | None = None


class Dependency(_GraphModel):
    """An edge from a node to the child node with this id."""

    node_id: str = Field(alias="nodeId")


class Node(_GraphModel):
    """A node of the graph, pointing at a package and at its children."""

    node_id: str = Field(alias="nodeId")
    pkg_id: str = Field(alias="pkgId")
    info: NodeInfo | None = None
    deps: tuple[Dependency, ...] = ()


class Graph(_GraphModel):
    root_node_id: str = Field(alias="rootNodeId")
    nodes: tuple[Node, ...] = ()


class DepGraph(_GraphModel):
    """A package-manager independent dependency graph.

    Instances are read-only once built or decoded: every model is frozen and
    collections are tuples. Node labels are the exception, they are plain
    dictionaries. The root package and the package index are computed on
    first use and memoized; recomputing them yields the same result, so
    concurrent first calls are harmless.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    schema_version: str = Field(alias="schemaVersion")
    pkg_manager: PkgManager = Field(alias="pkgManager")
    pkgs: tuple[Pkg, ...] = ()
    graph: Graph

    _root_pkg: Pkg | None = PrivateAttr(default=None)
    _pkg_idx: dict[str, Pkg] | None = PrivateAttr(default=None)

    @classmethod
    def from_json(cls, data: bytes | str) -> DepGraph:
        """Decode a graph document, rejecting unknown top-level fields.

        Raises:
            DepGraphDecodeError: if the document is not a valid graph

        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            msg = f"could not decode DepGraph: {e}"
            raise DepGraphDecodeError(msg) from e

    def to_json(self) -> bytes:
        """Encode the graph as canonical JSON, omitting absent optional fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode()

    def to_obj(self) -> dict:
        """Convert the graph to its JSON-compatible dictionary representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def get_root_pkg(self) -> Pkg | None:
        """Return the package of the root node, or None if it cannot be found."""
        if self._root_pkg is not None:
            return self._root_pkg
        root_pkg = None
        for node in self.graph.nodes:
            if node.node_id != self.graph.root_node_id:
                continue
            root_pkg, _ = self.get_pkg(node.pkg_id)
            break
        self._root_pkg = root_pkg
        return root_pkg

    def get_pkg(self, pkg_id: str) -> tuple[Pkg | None, bool]:
        """Look up a package by id.

        Returns:
            The package (or None) and whether it was found

        """
        if self._pkg_idx is None:
            self._pkg_idx = {pkg.id: pkg for pkg in self.pkgs}
        pkg = self._pkg_idx.get(pkg_id)
        return pkg, pkg is not None

    def to_networkx(self) -> nx.DiGraph:
        """Convert the graph to a directed graph of node ids, annotated with their package ids.

        Edges towards unknown nodes are kept; their target carries no `pkg_id`.
        """
        graph = nx.DiGraph()
        for node in self.graph.nodes:
            graph.add_node(node.node_id, pkg_id=node.pkg_id)
        for node in self.graph.nodes:
            for dep in node.deps:
                graph.add_edge(node.node_id, dep.node_id)
        return graph

    def check_invariants(self) -> None:
        """Check the structural invariants of the graph.

        Raises:
            DepGraphValidationError: listing every violated invariant

        """
        problems: list[str] = []
        pkg_ids = [pkg.id for pkg in self.pkgs]
        if len(set(pkg_ids)) != len(pkg_ids):
            problems.append("package ids are not unique")
        node_ids = [node.node_id for node in self.graph.nodes]
        if len(set(node_ids)) != len(node_ids):
            problems.append("node ids are not unique")
        roots = node_ids.count(self.graph.root_node_id)
        if roots != 1:
            problems.append(f"expected exactly one root node {self.graph.root_node_id!r}, found {roots}")

        known_pkgs = set(pkg_ids)
        problems.extend(
            f"node {node.node_id!r} references unknown package {node.pkg_id!r}"
            for node in self.graph.nodes
            if node.pkg_id not in known_pkgs
        )
        graph = self.to_networkx()
        dangling = {node_id for node_id, pkg_id in graph.nodes(data="pkg_id") if pkg_id is None}
        problems.extend(
            f"node {parent!r} depends on unknown node {child!r}"
            for parent, child in graph.edges
            if child in dangling
        )
        if problems:
            raise DepGraphValidationError(problems)
