from unittest import TestCase

from dep_graph.orchestrator import ResolutionOptions
from dep_graph.plugin import parse_exclude_flag


class TestParseExcludeFlag(TestCase):
    def test_empty(self) -> None:
        assert parse_exclude_flag("") is None
        assert parse_exclude_flag(" , ,") is None

    def test_entries_are_trimmed(self) -> None:
        assert parse_exclude_flag("node_modules, build ,,dist") == ["node_modules", "build", "dist"]

    def test_single_entry(self) -> None:
        assert parse_exclude_flag("vendor") == ["vendor"]


class TestResolutionOptions(TestCase):
    def test_to_plugin_options(self) -> None:
        options = ResolutionOptions(all_projects=True, dev=True, exclude="a, b", target_file="uv.lock")
        plugin_options = options.to_plugin_options()
        assert plugin_options.all_projects
        assert plugin_options.dev
        assert plugin_options.exclude == ["a", "b"]
        assert plugin_options.target_file == "uv.lock"
        assert ResolutionOptions().to_plugin_options().exclude is None
