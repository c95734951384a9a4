"""Error types and error classification for dependency graph resolution."""

from __future__ import annotations

import json
import logging
from subprocess import CalledProcessError
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

EXIT_CODE_FAIL_FAST = 2
EXIT_CODE_NO_PROJECTS = 3


class DepGraphError(Exception):
    """Base class for all errors raised by dep-graph."""


class DepGraphDecodeError(DepGraphError, ValueError):
    """A dependency graph document could not be decoded."""


class DepGraphValidationError(DepGraphError, ValueError):
    """A dependency graph violates one or more structural invariants."""

    def __init__(self, problems: list[str]) -> None:
        """Initialize the error with the list of violated invariants."""
        super().__init__("invalid DepGraph: " + "; ".join(problems))
        self.problems: list[str] = list(problems)


class NodeNotFoundError(DepGraphError, KeyError):
    """A node referenced while connecting nodes does not exist."""

    def __str__(self) -> str:
        """Return the message without KeyError's quoting."""
        return str(self.args[0]) if self.args else ""


class OutputParseError(DepGraphError, ValueError):
    """Output of the legacy resolver could not be parsed."""


class ResolutionError(DepGraphError):
    """Resolving dependency graphs failed."""


class NoDepGraphsFoundError(ResolutionError):
    """The legacy resolver succeeded but produced no dependency graphs."""

    def __init__(self, msg: str = "no depgraphs found") -> None:
        """Initialize the error."""
        super().__init__(msg)


class CatalogError(DepGraphError):
    """A structured, user-facing error, as described by a JSON:API error object."""

    def __init__(  # noqa: PLR0913
        self,
        detail: str,
        *,
        title: str = "",
        code: str = "",
        status: int = 0,
        error_id: str = "",
        meta: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            detail: Human readable explanation of this occurrence of the error
            title: Short summary of the error class
            code: Catalog error code
            status: HTTP-like status code, 0 when unknown
            error_id: Identifier of this error occurrence
            meta: Free-form metadata attached to the error
            cause: The underlying error, kept for classification

        """
        super().__init__(detail or title)
        self.detail: str = detail
        self.title: str = title
        self.code: str = code
        self.status: int = status
        self.error_id: str = error_id
        self.meta: dict[str, Any] = dict(meta or {})
        self.cause: BaseException | None = cause
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def from_jsonapi(cls, data: bytes | str) -> list[CatalogError]:
        """Decode all errors from a JSON:API error document.

        Raises:
            ValueError: if data is not a JSON:API error document

        """
        try:
            document = _JSONAPIErrorDocument.model_validate_json(data)
        except ValidationError as e:
            msg = f"not a JSON:API error document: {e}"
            raise ValueError(msg) from e
        return [
            cls(
                error.detail,
                title=error.title,
                code=error.code,
                status=error.status,
                error_id=error.id,
                meta=error.meta,
            )
            for error in document.errors
        ]

    def to_obj(self) -> dict[str, Any]:
        """Convert the error to a JSON:API error object."""
        obj: dict[str, Any] = {"title": self.title, "detail": self.detail}
        if self.code:
            obj["code"] = self.code
        if self.status:
            obj["status"] = str(self.status)
        if self.error_id:
            obj["id"] = self.error_id
        if self.meta:
            obj["meta"] = self.meta
        return obj


class GeneralSCAFailureError(CatalogError):
    """Catch-all catalog error for failures that carry no structured error of their own."""

    TITLE = "Unspecified Error"

    def __init__(self, detail: str, *, cause: BaseException | None = None) -> None:
        """Initialize the error with a detail message and an optional cause."""
        super().__init__(detail, title=self.TITLE, status=500, cause=cause)


class UnprocessableFileError(CatalogError):
    """A manifest or SBOM could not be processed."""

    TITLE = "Unprocessable file"

    def __init__(self, detail: str, *, cause: BaseException | None = None) -> None:
        """Initialize the error with a detail message and an optional cause."""
        super().__init__(detail, title=self.TITLE, status=422, cause=cause)


class EcosystemError(CatalogError):
    """Base of the catalog errors reported by package manager tooling."""

    TITLE = "Package manager error"
    STATUS = 422

    def __init__(self, detail: str, *, cause: BaseException | None = None) -> None:
        """Initialize the error with a detail message and an optional cause."""
        super().__init__(detail, title=self.TITLE, status=self.STATUS, cause=cause)


class SyntaxIssuesError(EcosystemError):
    TITLE = "Syntax issues"


class PythonPackageNotFoundError(EcosystemError):
    TITLE = "Package not found"


class UnsupportedPythonVersionError(EcosystemError):
    TITLE = "Unsupported Python version"


class ConflictingRequirementsError(EcosystemError):
    TITLE = "Conflicting requirements"


class InstallationFailureError(EcosystemError):
    TITLE = "Installation failure"


class ManifestNotFoundError(EcosystemError):
    TITLE = "Manifest not found"
    STATUS = 404


class _JSONAPIErrorObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    status: int = 0
    code: str = ""
    title: str = ""
    detail: str = ""
    meta: dict[str, Any] | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> int:
        try:
            return int(value)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return 0


class _JSONAPIErrorDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    errors: list[_JSONAPIErrorObject]

    @field_validator("errors")
    @classmethod
    def _not_empty(cls, value: list[_JSONAPIErrorObject]) -> list[_JSONAPIErrorObject]:
        if not value:
            msg = "errors must not be empty"
            raise ValueError(msg)
        return value


class LegacyCLIJSONError(DepGraphError):
    """Error reported by the legacy resolver as `{"ok": false, "error": ..., "path": ...}`."""

    def __init__(
        self,
        error_msg: str,
        path: str = "",
        *,
        ok: bool = False,
        exit_err: BaseException | None = None,
    ) -> None:
        """Initialize the error."""
        super().__init__(error_msg)
        self.ok: bool = ok
        self.error_msg: str = error_msg
        self.path: str = path
        if exit_err is not None:
            self.__cause__ = exit_err

    @classmethod
    def from_output(cls, output: bytes, exit_err: BaseException | None = None) -> LegacyCLIJSONError | None:
        """Decode the legacy JSON error from captured output, or return None if it is not one."""
        try:
            decoded = json.loads(output)
        except ValueError:
            return None
        if not isinstance(decoded, dict) or not isinstance(decoded.get("error"), str):
            return None
        return cls(
            decoded["error"],
            path=str(decoded.get("path") or ""),
            ok=bool(decoded.get("ok", False)),
            exit_err=exit_err,
        )


class ExitCodeError(DepGraphError):
    """An error that requests a specific process exit code."""

    def __init__(self, exit_code: int, detail: str, cause: BaseException | None = None) -> None:
        """Initialize the error."""
        super().__init__(detail)
        self.exit_code: int = exit_code
        self.detail: str = detail
        if cause is not None:
            self.__cause__ = cause


class NoSupportedProjectsError(ExitCodeError, ResolutionError):
    """Neither the SBOM sources nor the legacy resolver found a project to resolve."""

    def __init__(self, cause: BaseException | None = None) -> None:
        """Initialize the error."""
        super().__init__(EXIT_CODE_NO_PROJECTS, "no supported projects detected", cause)


class SBOMExtensionError(DepGraphError):
    """An error with a distinct user-facing message, raised while converting SBOMs."""

    def __init__(self, err: BaseException, user_msg: str) -> None:
        """Initialize the error.

        Args:
            err: The internal error
            user_msg: Message shown to the user

        """
        super().__init__(user_msg)
        self.err: BaseException = err
        self.user_msg: str = user_msg
        self.__cause__ = err


class EmptyOrgError(SBOMExtensionError):
    """The organization id could not be determined."""

    def __init__(self) -> None:
        """Initialize the error."""
        super().__init__(
            ValueError("failed to determine org id"),
            "Failed to infer an organization ID. Please make sure to authenticate, and should the issue "
            "persist, explicitly set an organization ID via the `--org` flag.",
        )
        logger.error("%s", self.err)


def new_sca_error(err: BaseException) -> SBOMExtensionError:
    """Wrap an error raised while analyzing an SBOM document."""
    logger.error("%s", err)
    return SBOMExtensionError(err, f"There was an error while analyzing the SBOM document: {err}")


def _iter_causes(err: BaseException | None) -> Iterator[BaseException]:
    """Iterate over an error and the chain of errors that caused it."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        next_err = err.__cause__ or getattr(err, "cause", None)
        if next_err is None and not err.__suppress_context__:
            next_err = err.__context__
        err = next_err


def exit_code_of(err: BaseException | None) -> int | None:
    """Return the first exit code reported in the error chain, or None."""
    for e in _iter_causes(err):
        if isinstance(e, CalledProcessError):
            return e.returncode
        exit_code = getattr(e, "exit_code", None)
        if isinstance(exit_code, int):
            return exit_code
    return None


def is_exit_code_3(err: BaseException | None) -> bool:
    """Check whether the error chain reports exit code 3, i.e. "no projects found to test"."""
    return exit_code_of(err) == EXIT_CODE_NO_PROJECTS


def find_catalog_error(err: BaseException | None) -> CatalogError | None:
    """Return the first catalog error in the error chain, or None."""
    for e in _iter_causes(err):
        if isinstance(e, CatalogError):
            return e
    return None


def create_fail_fast_error(lock_file: str, err: BaseException) -> ExitCodeError:
    """Create the error returned when --fail-fast is set and scanning `lock_file` failed."""
    catalog_error = find_catalog_error(err)
    if catalog_error is not None:
        detail = f"Failed to scan {lock_file}: {catalog_error.detail}"
    else:
        detail = f"Failed to scan {lock_file}: {err!s}"
    return ExitCodeError(EXIT_CODE_FAIL_FAST, detail, err)


def parse_jsonapi_error(data: bytes | str) -> CatalogError | None:
    """Return the first error of a JSON:API error document, or None if data is not one."""
    try:
        errors = CatalogError.from_jsonapi(data)
    except ValueError:
        return None
    return errors[0]


def _parse_error_catalog_from_output(output: bytes) -> CatalogError | None:
    """Extract a single catalog error from the captured legacy output.

    The output is either a single JSON document (the error document itself, or
    an object with the document under "error"), or line-delimited JSON where
    any line may embed an error document.
    """
    if not output:
        return None
    error = parse_jsonapi_error(output)
    if error is not None:
        return error
    try:
        wrapper = json.loads(output)
    except ValueError:
        wrapper = None
    if isinstance(wrapper, dict) and wrapper.get("error"):
        error = parse_jsonapi_error(json.dumps(wrapper["error"]))
        if error is not None:
            return error
    return _parse_first_error_from_jsonl(output)


def _parse_first_error_from_jsonl(output: bytes) -> CatalogError | None:
    from .parsers import JSONLOutputParser  # noqa: PLC0415

    try:
        outputs = JSONLOutputParser().parse_output(output)
    except OutputParseError:
        return None
    for parsed in outputs:
        if not parsed.error:
            continue
        error = parse_jsonapi_error(parsed.error)
        if error is not None:
            return error
    return None


def extract_legacy_cli_error(raw_err: BaseException, captured_output: bytes | None = None) -> CatalogError:
    """Turn a failed legacy resolver invocation into a structured error.

    Resolution order:
        1. raw_err already is (or wraps) a catalog error: it is returned unchanged
        2. the captured output is a JSON:API error document
        3. the captured output is line-delimited and a line embeds an error document
        4. otherwise the process failure is wrapped in a GeneralSCAFailureError, using
           the legacy `{"ok": false, "error": ...}` message when the output is one

    The raw error stays reachable as the cause of the returned error.
    """
    if isinstance(raw_err, CatalogError):
        return raw_err
    catalog_error = find_catalog_error(raw_err)
    if catalog_error is not None:
        return catalog_error

    catalog_error = _parse_error_catalog_from_output(captured_output or b"")
    if catalog_error is not None:
        catalog_error.cause = raw_err
        catalog_error.__cause__ = raw_err
        return catalog_error

    output: BaseException = raw_err
    if isinstance(raw_err, CalledProcessError) and captured_output:
        decoded = LegacyCLIJSONError.from_output(captured_output, exit_err=raw_err)
        if decoded is not None:
            output = decoded
    detail = str(output)
    if output is raw_err and isinstance(raw_err, CalledProcessError):
        stdout = _as_text(raw_err.stdout)
        stderr = _as_text(raw_err.stderr)
        if stdout:
            detail += f"\nstdout: {stdout}"
        if stderr:
            detail += f"\nstderr: {stderr}"
    return GeneralSCAFailureError(detail, cause=output)


def _as_text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode(errors="replace")
    return value.strip()
