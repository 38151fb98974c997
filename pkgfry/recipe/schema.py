"""Pydantic models for recipe file validation.

A recipe file is YAML; these models validate its shape before it is turned
into Recipe objects. Semantic checks that should be reported all at once
(missing checksums, overlapping names...) live in Recipe.lint().
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Debian policy is the stricter of the two package naming rules
PACKAGE_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9+.\-]+$")
ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StepSchema(BaseModel):
    """A build step.

    Attributes:
        name: Optional label printed before the step runs.
        run: Shell command(s) to execute.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, description="Step label")
    run: str = Field(description="Shell command to run", min_length=1)


class DirSourceSchema(BaseModel):
    """A local directory shipped into the build.

    Attributes:
        dir: Directory path, relative to the recipe file.
        exclude: Glob patterns (relative paths) not shipped.
    """

    model_config = ConfigDict(extra="forbid")

    dir: str = Field(description="Source directory relative to the recipe")
    exclude: list[str] = Field(default_factory=list)


class UrlSourceSchema(BaseModel):
    """A source archive downloaded from a URL.

    Attributes:
        url: Download URL of a tar archive.
        checksum: Expected SHA-256 of the archive.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(description="Archive URL")
    checksum: str | None = Field(default=None, description="SHA-256 of the archive")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate the URL scheme."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v


class PackageSchema(BaseModel):
    """An output package declaration.

    Attributes:
        name: Package name.
        files: Absolute glob patterns of files the package claims.
        depends: Runtime dependencies.
        config_files: Files flagged as configuration explicitly.
        exclude: Absolute glob patterns left out of the build output.
        description: Package description (defaults to the recipe's).
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    files: list[str] = Field(default_factory=list)
    depends: list[str] = Field(default_factory=list)
    config_files: list[str] | None = Field(default=None)
    exclude: list[str] = Field(default_factory=list)
    description: str | None = Field(default=None)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the package name."""
        if not PACKAGE_NAME_PATTERN.match(v):
            raise ValueError(
                f"package name must match {PACKAGE_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v


class RecipeSchema(BaseModel):
    """Complete recipe file schema."""

    model_config = ConfigDict(extra="forbid")

    name: str
    version: str = Field(min_length=1)
    iteration: str = Field(default="1")
    description: str | None = None
    maintainer: str | None = None
    vendor: str | None = None
    license: str | None = None
    homepage: str | None = None
    architecture: str | None = Field(
        default=None, description="Package architecture (default: detected)"
    )

    depends: list[str] = Field(default_factory=list)
    build_depends: list[str] = Field(default_factory=list)
    variables: dict[str, str] = Field(default_factory=dict)
    exclude: list[str] = Field(
        default_factory=list, description="Absolute glob patterns never packaged"
    )

    source: Annotated[
        DirSourceSchema | UrlSourceSchema | None, Field(default=None)
    ] = None
    steps: list[StepSchema] = Field(default_factory=list)
    packages: list[PackageSchema] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the recipe name."""
        if not PACKAGE_NAME_PATTERN.match(v):
            raise ValueError(
                f"name must match {PACKAGE_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("iteration", "version", mode="before")
    @classmethod
    def coerce_numbers(cls, v: object) -> object:
        """YAML reads 1.0 and 2 as numbers."""
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator("variables")
    @classmethod
    def validate_variables(cls, v: dict[str, str]) -> dict[str, str]:
        """Variables become environment variables of the build."""
        for key in v:
            if not ENV_NAME_PATTERN.match(key):
                raise ValueError(f"variable name '{key}' is not a valid environment name")
        return v

    @model_validator(mode="before")
    @classmethod
    def normalize_steps(cls, data: object) -> object:
        """Allow steps written as plain command strings."""
        if isinstance(data, dict) and isinstance(data.get("steps"), list):
            data = dict(data)
            data["steps"] = [
                {"run": step} if isinstance(step, str) else step
                for step in data["steps"]
            ]
        return data


__all__ = [
    "DirSourceSchema",
    "PackageSchema",
    "RecipeSchema",
    "StepSchema",
    "UrlSourceSchema",
]
