"""Error taxonomy for pkgfry.

Every error carries a stable ``code`` for programmatic handling and an
optional ``details`` mapping with structured diagnostic data. The CLI
reports any PkgfryError and exits with status 1.
"""

from typing import Any


class PkgfryError(Exception):
    """Base error for all pkgfry operations."""

    default_code = "error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details: dict[str, Any] = details or {}


class ConfigurationError(PkgfryError):
    """Raised for invalid options or settings, before any engine call."""

    default_code = "configuration"


class RecipeNotFoundError(ConfigurationError):
    """Raised when the recipe file does not exist."""

    default_code = "recipe_not_found"

    def __init__(self, path: str) -> None:
        super().__init__(f"Recipe not found: {path}", details={"recipe": path})
        self.path = path


class LintError(PkgfryError):
    """Raised when a recipe has problems; all problems are attached."""

    default_code = "lint"

    def __init__(self, problems: list[str]) -> None:
        super().__init__(
            f"Recipe has {len(problems)} problem(s)",
            details={"problems": list(problems)},
        )
        self.problems = list(problems)


class ProtocolError(PkgfryError):
    """Raised for a malformed engine stream. Never retried."""

    default_code = "protocol"


class ShortReadError(ProtocolError):
    """Raised when a stream ends in the middle of a frame."""

    default_code = "short_read"

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            f"Stream ended after {received} of {expected} bytes",
            details={"expected": expected, "received": received},
        )
        self.expected = expected
        self.received = received


class BuildFailure(PkgfryError):
    """Raised when a build did not produce a usable result."""

    default_code = "build_failed"

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if exit_code is not None:
            details["exit_code"] = exit_code
        super().__init__(message, code=code, details=details)
        self.exit_code = exit_code


class EngineError(PkgfryError):
    """Raised when an engine operation fails."""

    default_code = "engine_error"

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.status_code = status_code


class ImageNotFoundError(EngineError):
    """Raised when an image is unknown to the engine."""

    default_code = "image_not_found"

    def __init__(self, image: str, operation: str | None = None) -> None:
        super().__init__(
            f'Image "{image}" not found', operation=operation, status_code=404
        )
        self.image = image


class FileNotFoundInContainerError(EngineError):
    """Raised when a path does not exist inside a container."""

    default_code = "file_not_found"

    def __init__(self, container: str, path: str) -> None:
        super().__init__(
            f"{path} not found in container {container[:12]}",
            operation="get_archive",
            status_code=404,
        )
        self.container = container
        self.path = path


class SourceError(PkgfryError):
    """Raised when a recipe source cannot be fetched or verified."""

    default_code = "source_error"


__all__ = [
    "BuildFailure",
    "ConfigurationError",
    "EngineError",
    "FileNotFoundInContainerError",
    "ImageNotFoundError",
    "LintError",
    "PkgfryError",
    "ProtocolError",
    "RecipeNotFoundError",
    "ShortReadError",
    "SourceError",
]
