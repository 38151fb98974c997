"""Recipe file loading.

Recipes are YAML mappings validated against RecipeSchema. String values
may reference detected image variables as ``${distribution}``,
``${release}``, ``${codename}``, ``${flavour}`` or ``${architecture}``;
unknown references are left as they are so shell variables in build steps
keep working.
"""

from __future__ import annotations

import logging
from pathlib import Path
from string import Template
from typing import Any

import yaml
from pydantic import ValidationError

from pkgfry.errors import ConfigurationError, RecipeNotFoundError
from pkgfry.recipe.recipe import PackageDeclaration, Recipe, Step
from pkgfry.recipe.schema import DirSourceSchema, RecipeSchema, UrlSourceSchema
from pkgfry.recipe.source import DirSource, Source, UrlSource
from pkgfry.types import Variables

logger = logging.getLogger(__name__)

DEFAULT_RECIPE = "recipe.yaml"

# Pattern of the package used when a recipe declares none
DEFAULT_PACKAGE_FILES = ["/"]


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        RecipeNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not a YAML mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise RecipeNotFoundError(str(path)) from None
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {path}: {e}", code="invalid_recipe"
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a YAML mapping in {path}, got {type(data).__name__}",
            code="invalid_recipe",
        )
    return data


def substitute_variables(data: Any, variables: dict[str, Any]) -> Any:
    """Replace ${name} references in all strings of a parsed document."""
    if isinstance(data, str):
        return Template(data).safe_substitute(variables)
    if isinstance(data, list):
        return [substitute_variables(item, variables) for item in data]
    if isinstance(data, dict):
        return {key: substitute_variables(value, variables) for key, value in data.items()}
    return data


def _format_validation_error(path: Path, error: ValidationError) -> str:
    lines = [f"Invalid recipe {path}:"]
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        lines.append(f"  {location}: {item['msg']}")
    return "\n".join(lines)


def _build_source(
    schema: DirSourceSchema | UrlSourceSchema | None,
    base_path: Path,
    cache_dir: Path,
    download_timeout: float,
) -> Source:
    if isinstance(schema, DirSourceSchema):
        return DirSource(base_path / schema.dir, exclude=schema.exclude)
    if isinstance(schema, UrlSourceSchema):
        return UrlSource(
            schema.url, schema.checksum, cache_dir=cache_dir, timeout=download_timeout
        )
    return Source()


def build_recipe(
    schema: RecipeSchema,
    base_path: Path,
    cache_dir: Path,
    download_timeout: float = 3600,
) -> Recipe:
    """Turn a validated schema into a Recipe.

    Args:
        schema: Validated recipe file content.
        base_path: Directory relative source paths are resolved against.
        cache_dir: Download cache for url sources.
        download_timeout: Timeout for url source downloads.
    """
    metadata = {
        key: value
        for key, value in {
            "description": schema.description,
            "maintainer": schema.maintainer,
            "vendor": schema.vendor,
            "license": schema.license,
            "homepage": schema.homepage,
        }.items()
        if value is not None
    }

    packages: list[PackageDeclaration] = []
    for package in schema.packages:
        package_metadata = dict(metadata)
        if package.description is not None:
            package_metadata["description"] = package.description
        packages.append(
            PackageDeclaration(
                name=package.name,
                files=list(package.files),
                version=schema.version,
                iteration=schema.iteration,
                depends=list(package.depends),
                config_files=package.config_files,
                exclude=list(package.exclude),
                architecture=schema.architecture,
                metadata=package_metadata,
            )
        )
    if not schema.packages:
        packages.append(
            PackageDeclaration(
                name=schema.name,
                files=list(DEFAULT_PACKAGE_FILES),
                version=schema.version,
                iteration=schema.iteration,
                depends=list(schema.depends),
                architecture=schema.architecture,
                metadata=metadata,
            )
        )
    else:
        # Recipe level depends apply to every package
        for declaration in packages:
            declaration.depends = list(schema.depends) + [
                dep for dep in declaration.depends if dep not in schema.depends
            ]

    steps = [
        Step(name=step.name or f"step {index}", run=step.run)
        for index, step in enumerate(schema.steps, start=1)
    ]

    return Recipe(
        name=schema.name,
        version=schema.version,
        source=_build_source(schema.source, base_path, cache_dir, download_timeout),
        steps=steps,
        variables=dict(schema.variables),
        build_depends=list(schema.build_depends),
        exclude=list(schema.exclude),
        packages=packages,
    )


def load_recipe(
    path: Path,
    variables: Variables,
    cache_dir: Path,
    download_timeout: float = 3600,
) -> Recipe:
    """Load a recipe file for a detected image.

    Args:
        path: Path to the recipe YAML file.
        variables: Variables detected on the base image.
        cache_dir: Download cache for url sources.
        download_timeout: Timeout for url source downloads.

    Returns:
        The loaded Recipe.

    Raises:
        RecipeNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or not a valid recipe.
    """
    data = load_yaml(path)
    data = substitute_variables(
        data,
        {key: value for key, value in variables.as_dict().items() if value is not None},
    )
    try:
        schema = RecipeSchema.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            _format_validation_error(path, e), code="invalid_recipe"
        ) from e
    logger.debug("Loaded recipe %s from %s", schema.name, path)
    return build_recipe(
        schema,
        base_path=path.parent,
        cache_dir=cache_dir,
        download_timeout=download_timeout,
    )


__all__ = [
    "DEFAULT_RECIPE",
    "build_recipe",
    "load_recipe",
    "load_yaml",
    "substitute_variables",
]
