import json
from subprocess import CalledProcessError
from unittest import TestCase

from dep_graph.errors import (
    EXIT_CODE_FAIL_FAST,
    CatalogError,
    EmptyOrgError,
    ExitCodeError,
    GeneralSCAFailureError,
    LegacyCLIJSONError,
    NoSupportedProjectsError,
    UnprocessableFileError,
    create_fail_fast_error,
    exit_code_of,
    extract_legacy_cli_error,
    is_exit_code_3,
    new_sca_error,
)

ERROR_DOCUMENT = {
    "jsonapi": {"version": "1.0"},
    "errors": [
        {
            "id": "0f12c0e1",
            "status": "422",
            "code": "SNYK-OS-0001",
            "title": "Unable to parse manifest",
            "detail": "package.json is not valid JSON",
            "meta": {"isErrorCatalogError": True},
        }
    ],
}


class TestExitCodes(TestCase):
    def test_exit_code_3(self) -> None:
        assert is_exit_code_3(CalledProcessError(3, ["snyk"]))
        assert is_exit_code_3(ExitCodeError(3, "no projects"))
        assert not is_exit_code_3(CalledProcessError(2, ["snyk"]))
        assert not is_exit_code_3(ValueError("boom"))
        assert not is_exit_code_3(None)

    def test_exit_code_3_in_cause_chain(self) -> None:
        error = GeneralSCAFailureError("legacy failed", cause=CalledProcessError(3, ["snyk"]))
        assert is_exit_code_3(error)
        try:
            try:
                raise CalledProcessError(3, ["snyk"])
            except CalledProcessError as e:
                msg = "wrapped"
                raise RuntimeError(msg) from e
        except RuntimeError as e:
            assert is_exit_code_3(e)

    def test_exit_code_of_first_error_wins(self) -> None:
        error = ExitCodeError(2, "outer", cause=CalledProcessError(3, ["snyk"]))
        assert exit_code_of(error) == EXIT_CODE_FAIL_FAST

    def test_no_supported_projects(self) -> None:
        error = NoSupportedProjectsError()
        assert str(error) == "no supported projects detected"
        assert is_exit_code_3(error)


class TestFailFastError(TestCase):
    def test_detail_of_catalog_error(self) -> None:
        cause = UnprocessableFileError("SBOM root component missing name")
        error = create_fail_fast_error("sub/uv.lock", cause)
        assert error.exit_code == EXIT_CODE_FAIL_FAST
        assert error.detail == "Failed to scan sub/uv.lock: SBOM root component missing name"
        assert error.__cause__ is cause

    def test_detail_of_plain_error(self) -> None:
        cause = RuntimeError("uv crashed")
        error = create_fail_fast_error("uv.lock", cause)
        assert str(error) == "Failed to scan uv.lock: uv crashed"
        assert exit_code_of(error) == EXIT_CODE_FAIL_FAST


class TestCatalogError(TestCase):
    def test_from_jsonapi(self) -> None:
        (error,) = CatalogError.from_jsonapi(json.dumps(ERROR_DOCUMENT))
        assert error.status == 422  # noqa: PLR2004
        assert error.code == "SNYK-OS-0001"
        assert error.detail == "package.json is not valid JSON"
        assert error.error_id == "0f12c0e1"
        assert error.meta == {"isErrorCatalogError": True}
        assert error.to_obj() == {
            "title": "Unable to parse manifest",
            "detail": "package.json is not valid JSON",
            "code": "SNYK-OS-0001",
            "status": "422",
            "id": "0f12c0e1",
            "meta": {"isErrorCatalogError": True},
        }

    def test_from_jsonapi_rejects_other_documents(self) -> None:
        for data in ("{}", '{"errors": []}', "not json", '{"ok": false, "error": "x"}'):
            with self.assertRaises(ValueError):
                CatalogError.from_jsonapi(data)

    def test_sca_error(self) -> None:
        cause = RuntimeError("connection refused")
        error = new_sca_error(cause)
        assert error.user_msg == "There was an error while analyzing the SBOM document: connection refused"
        assert error.__cause__ is cause

    def test_empty_org_error(self) -> None:
        error = EmptyOrgError()
        assert "--org" in error.user_msg


class TestExtractLegacyCLIError(TestCase):
    def test_catalog_error_is_returned_unchanged(self) -> None:
        error = UnprocessableFileError("bad file")
        assert extract_legacy_cli_error(error, b"ignored") is error

    def test_wrapped_catalog_error(self) -> None:
        error = UnprocessableFileError("bad file")
        wrapper = RuntimeError("wrapper")
        wrapper.__cause__ = error
        assert extract_legacy_cli_error(wrapper) is error

    def test_error_document(self) -> None:
        raw_err = CalledProcessError(2, ["snyk"])
        error = extract_legacy_cli_error(raw_err, json.dumps(ERROR_DOCUMENT).encode())
        assert error.code == "SNYK-OS-0001"
        assert error.__cause__ is raw_err
        assert exit_code_of(error) == 2  # noqa: PLR2004

    def test_error_document_nested_under_error(self) -> None:
        output = json.dumps({"ok": False, "error": ERROR_DOCUMENT}).encode()
        error = extract_legacy_cli_error(CalledProcessError(2, ["snyk"]), output)
        assert error.detail == "package.json is not valid JSON"

    def test_error_embedded_in_jsonl(self) -> None:
        lines = [
            {"depGraph": {"schemaVersion": "1.3.0"}, "normalisedTargetFile": "package-lock.json"},
            {"normalisedTargetFile": "package.json", "error": ERROR_DOCUMENT},
        ]
        output = "\n".join(json.dumps(line) for line in lines).encode()
        error = extract_legacy_cli_error(CalledProcessError(1, ["snyk"]), output)
        assert error.code == "SNYK-OS-0001"

    def test_legacy_json_error(self) -> None:
        output = json.dumps({"ok": False, "error": "Could not detect supported target files", "path": "."}).encode()
        raw_err = CalledProcessError(3, ["snyk"], output=output)
        error = extract_legacy_cli_error(raw_err, output)
        assert isinstance(error, GeneralSCAFailureError)
        assert error.detail == "Could not detect supported target files"
        assert isinstance(error.__cause__, LegacyCLIJSONError)
        assert error.__cause__.path == "."
        assert is_exit_code_3(error)

    def test_generic_failure(self) -> None:
        raw_err = CalledProcessError(1, ["snyk"], output=b"plain output", stderr=b"segfault")
        error = extract_legacy_cli_error(raw_err, b"plain output")
        assert isinstance(error, GeneralSCAFailureError)
        assert error.title == "Unspecified Error"
        assert "stdout: plain output" in error.detail
        assert "stderr: segfault" in error.detail
        assert error.__cause__ is raw_err
