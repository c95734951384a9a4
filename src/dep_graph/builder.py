"""Incremental construction of dependency graphs."""

from __future__ import annotations

import logging

from .errors import NodeNotFoundError
from .models import SCHEMA_VERSION, DepGraph, Dependency, Graph, Node, NodeInfo, Pkg, PkgInfo, PkgManager

logger = logging.getLogger(__name__)

ROOT_NODE_ID = "root-node"

# Package used as the root when a graph is built without one.
SENTINEL_ROOT_NAME = "_root"
SENTINEL_ROOT_VERSION = "0.0.0"


def sentinel_root() -> PkgInfo:
    return PkgInfo(name=SENTINEL_ROOT_NAME, version=SENTINEL_ROOT_VERSION)


class DepGraphBuilder:
    """Builds a DepGraph one node and one edge at a time.

    A builder has a single owner: it must not be mutated concurrently. Once
    `build()` has been called the builder should be discarded.
    """

    def __init__(self, pkg_manager: PkgManager | None, root_pkg: PkgInfo | None = None) -> None:
        """Initialize the builder and register the root node.

        Args:
            pkg_manager: Package manager of the graph
            root_pkg: Root package; the sentinel root is used when omitted

        """
        if pkg_manager is None:
            msg = "cannot create builder without a package manager"
            raise ValueError(msg)
        if root_pkg is None:
            root_pkg = sentinel_root()
        self.schema_version: str = SCHEMA_VERSION
        self.root_node_id: str = ROOT_NODE_ID
        self.root_pkg_id: str = root_pkg.pkg_id
        self._pkg_manager: PkgManager = pkg_manager
        self._pkgs: dict[str, Pkg] = {}
        # node id -> node without its edges, and node id -> child node ids
        self._nodes: dict[str, Node] = {}
        self._deps: dict[str, list[str]] = {}
        self.add_node(self.root_node_id, root_pkg)

    @property
    def pkg_manager(self) -> PkgManager:
        return self._pkg_manager

    def get_pkgs(self) -> list[Pkg]:
        """Return all packages registered so far, in insertion order."""
        return list(self._pkgs.values())

    def get_root_node(self) -> Node:
        return self._node(self.root_node_id)

    def _node(self, node_id: str) -> Node:
        deps = tuple(Dependency(node_id=child_id) for child_id in self._deps[node_id])
        return self._nodes[node_id].model_copy(update={"deps": deps})

    def add_node(self, node_id: str, pkg_info: PkgInfo, node_info: NodeInfo | None = None) -> Node:
        """Add a node for a package.

        Adding a node id that already exists leaves the existing node
        unchanged. Packages are deduplicated by their `name@version` id.
        """
        if node_id not in self._nodes:
            pkg_id = pkg_info.pkg_id
            if pkg_id not in self._pkgs:
                self._pkgs[pkg_id] = Pkg(id=pkg_id, info=pkg_info)
            self._nodes[node_id] = Node(node_id=node_id, pkg_id=pkg_id, info=node_info)
            self._deps[node_id] = []
        return self._node(node_id)

    def connect_nodes(self, parent_node_id: str, child_node_id: str) -> None:
        """Add an edge from the parent node to the child node.

        Raises:
            NodeNotFoundError: if either node is unknown; nothing is changed in that case

        """
        if parent_node_id not in self._nodes:
            msg = f"could not find parent node {parent_node_id}"
            raise NodeNotFoundError(msg)
        if child_node_id not in self._nodes:
            msg = f"could not find child node {child_node_id}"
            raise NodeNotFoundError(msg)
        self._deps[parent_node_id].append(child_node_id)

    def build(self) -> DepGraph:
        """Return an immutable snapshot of the graph built so far."""
        nodes = tuple(self._node(node_id) for node_id in self._nodes)
        pkgs = tuple(self._pkgs.values())
        dep_graph = DepGraph(
            schema_version=self.schema_version,
            pkg_manager=self._pkg_manager,
            pkgs=pkgs,
            graph=Graph(root_node_id=self.root_node_id, nodes=nodes),
        )
        pkg_idx = {pkg.id: pkg for pkg in pkgs}
        dep_graph._pkg_idx = pkg_idx  # noqa: SLF001
        dep_graph._root_pkg = pkg_idx.get(self.root_pkg_id)  # noqa: SLF001
        logger.debug("Built dependency graph with %d packages and %d nodes", len(pkgs), len(nodes))
        return dep_graph
