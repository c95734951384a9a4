import json
import subprocess
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase
from unittest.mock import Mock, patch

import pytest

from dep_graph.builder import DepGraphBuilder
from dep_graph.errors import GeneralSCAFailureError, UnprocessableFileError
from dep_graph.models import DepGraph, PkgInfo, PkgManager
from dep_graph.plugin import Options
from dep_graph.sbom_client import SBOMConvertClient, ScanResult
from dep_graph.uv import (
    UvClient,
    UvPlugin,
    extract_metadata,
    extract_workspace_packages,
    parse_and_validate_sbom,
    parse_and_validate_version,
)

SBOM = {
    "bomFormat": "CycloneDX",
    "specVersion": "1.5",
    "metadata": {"component": {"type": "application", "name": "workspace-root", "version": "0.1.0"}},
    "components": [
        {
            "type": "library",
            "name": "api",
            "version": "0.2.0",
            "properties": [{"name": "uv:workspace:path", "value": "packages/api"}],
        },
        {"type": "library", "name": "requests", "version": "2.31.0"},
    ],
}
SBOM_BYTES = json.dumps(SBOM).encode()


def _dep_graph(name: str, version: str) -> DepGraph:
    return DepGraphBuilder(PkgManager(name="pip"), PkgInfo(name=name, version=version)).build()


def _scan(*dep_graphs: DepGraph) -> ScanResult:
    return ScanResult.model_validate(
        {"facts": [{"type": "depGraph", "data": dep_graph.to_obj()} for dep_graph in dep_graphs]}
    )


class TestSBOMParsing(TestCase):
    def test_metadata_and_workspace_packages(self) -> None:
        sbom = parse_and_validate_sbom(SBOM_BYTES)
        metadata = extract_metadata(sbom)
        assert (metadata.package_manager, metadata.name, metadata.version) == ("pip", "workspace-root", "0.1.0")
        (workspace_package,) = extract_workspace_packages(sbom)
        assert (workspace_package.name, workspace_package.version) == ("api", "0.2.0")
        assert workspace_package.path == "packages/api"

    def test_missing_root_component(self) -> None:
        with pytest.raises(UnprocessableFileError, match="missing root component"):
            parse_and_validate_sbom(json.dumps({"bomFormat": "CycloneDX", "metadata": {}}).encode())

    def test_root_component_without_name(self) -> None:
        document = {"metadata": {"component": {"version": "1.0.0"}}}
        with pytest.raises(UnprocessableFileError, match="missing name"):
            parse_and_validate_sbom(json.dumps(document).encode())

    def test_invalid_json(self) -> None:
        with pytest.raises(UnprocessableFileError, match="Failed to parse SBOM JSON"):
            parse_and_validate_sbom(b"warning: something\n{")


class TestVersionGating(TestCase):
    def test_supported_versions(self) -> None:
        assert str(parse_and_validate_version("uv", "uv 0.9.11\n")) == "0.9.11"
        assert str(parse_and_validate_version("uv", "uv 0.10.2 (7c3e1b2 2025-12-01)")) == "0.10.2"

    def test_unsupported_version(self) -> None:
        with pytest.raises(GeneralSCAFailureError, match="Minimum required version is 0.9.11"):
            parse_and_validate_version("uv", "uv 0.9.10")

    def test_unparseable_version(self) -> None:
        with pytest.raises(GeneralSCAFailureError, match="unable to parse"):
            parse_and_validate_version("uv", "uv dev")


class TestUvClient(TestCase):
    @patch("dep_graph.uv.subprocess.run")
    @patch("dep_graph.uv.which")
    def test_export_sbom(self, mock_which: Mock, mock_run: Mock) -> None:
        mock_which.return_value = "/usr/bin/uv"
        mock_run.side_effect = [Mock(stdout="uv 0.9.11\n"), Mock(stdout=SBOM_BYTES)]

        sbom = UvClient().export_sbom("/project", Options())

        assert sbom == SBOM_BYTES
        export_call = mock_run.call_args_list[1]
        assert export_call.args[0] == [
            "/usr/bin/uv",
            "export",
            "--format",
            "cyclonedx1.5",
            "--frozen",
            "--preview",
            "--no-dev",
        ]
        assert export_call.kwargs["cwd"] == "/project"

    @patch("dep_graph.uv.subprocess.run")
    @patch("dep_graph.uv.which")
    def test_export_all_packages_with_dev(self, mock_which: Mock, mock_run: Mock) -> None:
        mock_which.return_value = "/usr/bin/uv"
        mock_run.side_effect = [Mock(stdout="uv 0.9.11\n"), Mock(stdout=SBOM_BYTES)]
        UvClient().export_sbom("/project", Options(all_projects=True, dev=True))
        args = mock_run.call_args_list[1].args[0]
        assert "--all-packages" in args
        assert "--no-dev" not in args

    @patch("dep_graph.uv.which")
    def test_binary_not_found(self, mock_which: Mock) -> None:
        mock_which.return_value = None
        with pytest.raises(GeneralSCAFailureError, match="uv binary not found in PATH"):
            UvClient().export_sbom("/project", Options())

    @patch("dep_graph.uv.subprocess.run")
    @patch("dep_graph.uv.which")
    def test_old_version_is_rejected_before_export(self, mock_which: Mock, mock_run: Mock) -> None:
        mock_which.return_value = "/usr/bin/uv"
        mock_run.return_value = Mock(stdout="uv 0.5.0\n")
        with pytest.raises(GeneralSCAFailureError, match="not supported"):
            UvClient().export_sbom("/project", Options())
        assert mock_run.call_count == 1

    @patch("dep_graph.uv.subprocess.run")
    @patch("dep_graph.uv.which")
    def test_export_failure(self, mock_which: Mock, mock_run: Mock) -> None:
        mock_which.return_value = "/usr/bin/uv"
        failure = subprocess.CalledProcessError(
            2, ["uv", "export"], output=b"", stderr=b"The lockfile needs to be updated"
        )
        mock_run.side_effect = [Mock(stdout="uv 0.9.11\n"), failure]
        with pytest.raises(GeneralSCAFailureError, match="The lockfile needs to be updated") as exc_info:
            UvClient().export_sbom("/project", Options())
        assert exc_info.value.__cause__ is failure


class TestUvPlugin(TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.root = Path(self._tmp.name)
        for lock_file in ("uv.lock", "services/api/uv.lock", ".venv/uv.lock"):
            path = self.root / lock_file
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("")
        self.client = Mock(spec=UvClient)
        self.client.export_sbom.return_value = SBOM_BYTES
        self.sbom_client = Mock(spec=SBOMConvertClient)
        self.sbom_client.sbom_convert.return_value = ([_scan(_dep_graph("workspace-root", "0.1.0"))], [])

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_skips_other_target_files(self) -> None:
        plugin = UvPlugin(self.client, self.sbom_client)
        assert plugin.build_findings_from_dir(str(self.root), Options(target_file="requirements.txt")) == []
        self.client.export_sbom.assert_not_called()

    def test_root_lock_file(self) -> None:
        plugin = UvPlugin(self.client, self.sbom_client, "https://github.com/org/repo")
        (finding,) = plugin.build_findings_from_dir(str(self.root), Options())
        self.client.export_sbom.assert_called_once_with(str(self.root), Options())
        self.sbom_client.sbom_convert.assert_called_once_with(SBOM_BYTES, "https://github.com/org/repo")
        assert finding.lock_file == "uv.lock"
        assert finding.manifest_file == "pyproject.toml"
        assert finding.error is None
        assert finding.file_exclusions == []
        assert finding.metadata is not None
        assert finding.metadata.name == "workspace-root"
        assert finding.dep_graph is not None

    def test_target_file(self) -> None:
        plugin = UvPlugin(self.client, self.sbom_client)
        (finding,) = plugin.build_findings_from_dir(str(self.root), Options(target_file="services/api/uv.lock"))
        assert finding.lock_file == "services/api/uv.lock"
        assert finding.manifest_file == "services/api/pyproject.toml"
        self.client.export_sbom.assert_called_once()
        assert self.client.export_sbom.call_args.args[0] == str(self.root / "services" / "api")

    def test_all_projects(self) -> None:
        self.client.export_sbom.side_effect = [GeneralSCAFailureError("uv crashed"), SBOM_BYTES]
        plugin = UvPlugin(self.client, self.sbom_client)
        findings = plugin.build_findings_from_dir(str(self.root), Options(all_projects=True))
        assert [finding.lock_file for finding in findings] == ["services/api/uv.lock", "uv.lock"]
        assert isinstance(findings[0].error, GeneralSCAFailureError)
        assert findings[0].dep_graph is None
        assert findings[1].error is None

    def test_all_projects_with_user_excludes(self) -> None:
        plugin = UvPlugin(self.client, self.sbom_client)
        findings = plugin.build_findings_from_dir(str(self.root), Options(all_projects=True, exclude=["services"]))
        assert [finding.lock_file for finding in findings] == ["uv.lock"]

    def test_workspace_packages(self) -> None:
        self.sbom_client.sbom_convert.return_value = (
            [_scan(_dep_graph("workspace-root", "0.1.0"), _dep_graph("api", "0.2.0"))],
            [],
        )
        plugin = UvPlugin(self.client, self.sbom_client, report_file_exclusions=True)
        root, api = plugin.build_findings_from_dir(str(self.root), Options())
        assert root.manifest_file == "pyproject.toml"
        assert api.manifest_file == "packages/api/pyproject.toml"
        assert api.file_exclusions == ["packages/api/pyproject.toml", "packages/api/requirements.txt"]
        assert [package.name for package in api.workspace_packages] == ["api"]

    def test_project_without_dependencies(self) -> None:
        self.sbom_client.sbom_convert.return_value = ([], [])
        plugin = UvPlugin(self.client, self.sbom_client)
        (finding,) = plugin.build_findings_from_dir(str(self.root), Options())
        assert finding.dep_graph is not None
        assert [pkg.id for pkg in finding.dep_graph.pkgs] == ["workspace-root@0.1.0"]


class TestUvIntegration(TestCase):
    @pytest.mark.integration
    def test_export_sbom_of_project_without_dependencies(self) -> None:
        with TemporaryDirectory() as tmp:
            project = Path(tmp)
            (project / "pyproject.toml").write_text(
                '[project]\nname = "test-package"\nversion = "1.0.0"\nrequires-python = ">=3.10"\ndependencies = []\n'
            )
            subprocess.run(["uv", "lock"], cwd=project, check=True, capture_output=True)  # noqa: S607

            sbom = UvClient().export_sbom(str(project), Options())

            metadata = extract_metadata(parse_and_validate_sbom(sbom))
            assert (metadata.package_manager, metadata.name, metadata.version) == ("pip", "test-package", "1.0.0")
