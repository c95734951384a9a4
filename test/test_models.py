import json
from unittest import TestCase

import pytest
from pydantic import ValidationError

from dep_graph.errors import DepGraphDecodeError, DepGraphValidationError
from dep_graph.models import DepGraph, Dependency, PkgInfo

DEP_GRAPH_JSON = """
{
    "schemaVersion": "1.3.0",
    "pkgManager": {"name": "pip", "repositories": [{"alias": "pypi"}]},
    "pkgs": [
        {"id": "app@1.0.0", "info": {"name": "app", "version": "1.0.0"}},
        {"id": "requests@2.31.0", "info": {"name": "requests", "version": "2.31.0",
                                           "purl": "pkg:pypi/requests@2.31.0"}},
        {"id": "urllib3@2.0.7", "info": {"name": "urllib3", "version": "2.0.7"}}
    ],
    "graph": {
        "rootNodeId": "root-node",
        "nodes": [
            {"nodeId": "root-node", "pkgId": "app@1.0.0", "deps": [{"nodeId": "requests@2.31.0"}]},
            {"nodeId": "requests@2.31.0", "pkgId": "requests@2.31.0", "deps": [{"nodeId": "urllib3@2.0.7"}],
             "info": {"labels": {"scope": "prod"}}},
            {"nodeId": "urllib3@2.0.7", "pkgId": "urllib3@2.0.7", "deps": []}
        ]
    }
}
"""


def _edges(dep_graph: DepGraph) -> set[tuple[str, str]]:
    return {(node.node_id, dep.node_id) for node in dep_graph.graph.nodes for dep in node.deps}


class TestDepGraph(TestCase):
    def test_round_trip(self) -> None:
        dep_graph = DepGraph.from_json(DEP_GRAPH_JSON)
        decoded = DepGraph.from_json(dep_graph.to_json())
        assert {pkg.id for pkg in decoded.pkgs} == {"app@1.0.0", "requests@2.31.0", "urllib3@2.0.7"}
        assert decoded.pkgs == dep_graph.pkgs
        assert {node.node_id for node in decoded.graph.nodes} == {node.node_id for node in dep_graph.graph.nodes}
        assert _edges(decoded) == _edges(dep_graph)
        assert decoded.pkg_manager.repositories is not None
        assert decoded.pkg_manager.repositories[0].alias == "pypi"

    def test_to_json_uses_camel_case_and_omits_absent_fields(self) -> None:
        obj = json.loads(DepGraph.from_json(DEP_GRAPH_JSON).to_json())
        assert set(obj) == {"schemaVersion", "pkgManager", "pkgs", "graph"}
        assert obj["graph"]["rootNodeId"] == "root-node"
        assert "version" not in obj["pkgManager"]
        assert obj["pkgs"][1]["info"]["purl"] == "pkg:pypi/requests@2.31.0"
        assert "purl" not in obj["pkgs"][0]["info"]
        assert "info" not in obj["graph"]["nodes"][0]

    def test_unknown_top_level_field_is_rejected(self) -> None:
        document = json.loads(DEP_GRAPH_JSON)
        document["unexpected"] = True
        with pytest.raises(DepGraphDecodeError, match="could not decode DepGraph"):
            DepGraph.from_json(json.dumps(document))

    def test_invalid_json_is_rejected(self) -> None:
        with pytest.raises(DepGraphDecodeError):
            DepGraph.from_json(b"{not json")

    def test_lookups(self) -> None:
        dep_graph = DepGraph.from_json(DEP_GRAPH_JSON)
        root = dep_graph.get_root_pkg()
        assert root is not None
        assert root.id == "app@1.0.0"
        assert dep_graph.get_root_pkg() is root
        pkg, found = dep_graph.get_pkg("urllib3@2.0.7")
        assert found
        assert pkg is not None
        assert pkg.info.name == "urllib3"
        assert dep_graph.get_pkg("missing@0") == (None, False)

    def test_to_networkx(self) -> None:
        graph = DepGraph.from_json(DEP_GRAPH_JSON).to_networkx()
        assert set(graph.nodes) == {"root-node", "requests@2.31.0", "urllib3@2.0.7"}
        assert graph.has_edge("root-node", "requests@2.31.0")
        assert graph.nodes["root-node"]["pkg_id"] == "app@1.0.0"

    def test_nested_models_are_immutable(self) -> None:
        dep_graph = DepGraph.from_json(DEP_GRAPH_JSON)
        root_node = dep_graph.graph.nodes[0]
        assert isinstance(root_node.deps, tuple)
        assert isinstance(dep_graph.pkgs, tuple)
        with pytest.raises(ValidationError):
            root_node.pkg_id = "other@1.0.0"
        with pytest.raises(ValidationError):
            dep_graph.pkgs[0].info.name = "other"
        with pytest.raises(AttributeError):
            root_node.deps.append(Dependency(node_id="urllib3@2.0.7"))  # type: ignore[attr-defined]
        assert _edges(dep_graph) == _edges(DepGraph.from_json(DEP_GRAPH_JSON))

    def test_check_invariants_accepts_valid_graph(self) -> None:
        DepGraph.from_json(DEP_GRAPH_JSON).check_invariants()

    def test_check_invariants_lists_every_problem(self) -> None:
        document = json.loads(DEP_GRAPH_JSON)
        document["graph"]["nodes"][1]["pkgId"] = "unknown@1"
        document["graph"]["nodes"][2]["deps"] = [{"nodeId": "nowhere"}]
        document["graph"]["nodes"].append({"nodeId": "root-node", "pkgId": "app@1.0.0", "deps": []})
        with pytest.raises(DepGraphValidationError) as exc_info:
            DepGraph.from_json(json.dumps(document)).check_invariants()
        problems = exc_info.value.problems
        assert len(problems) == 4  # noqa: PLR2004
        assert "node ids are not unique" in problems
        assert any("unknown package 'unknown@1'" in problem for problem in problems)
        assert any("unknown node 'nowhere'" in problem for problem in problems)


class TestPkgInfo(TestCase):
    def test_pkg_id(self) -> None:
        assert PkgInfo(name="requests", version="2.31.0").pkg_id == "requests@2.31.0"
        assert PkgInfo(name="local").pkg_id == "local@"
