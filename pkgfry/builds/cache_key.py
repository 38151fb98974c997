"""Cache key computation for source images.

This module handles:
- Canonical input snapshot creation from a recipe
- Deterministic hash computation over base image digest and inputs
- Deriving the image tag a cached source image is stored under

The key is a pure function of the base image's content digest and the
recipe's declared build inputs; timestamps never enter it.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pkgfry.recipe.recipe import Recipe

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"

# Length of the cache key prefix used in image tags
CACHE_TAG_LENGTH = 31


@dataclass
class SourceInputs:
    """Canonical representation of the recipe's build inputs.

    Attributes:
        schema_version: Version of cache key schema.
        source: Fingerprint of the recipe source.
        steps: Build steps in order.
        variables: Build environment.
        build_depends: Sorted build dependencies.
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    source: dict[str, Any] = field(default_factory=dict)
    steps: list[dict[str, str]] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)
    build_depends: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def create_source_inputs(recipe: Recipe) -> SourceInputs:
    """Collect the cache-relevant inputs of a recipe."""
    return SourceInputs(
        source=recipe.source.fingerprint(),
        steps=[{"name": step.name, "run": step.run} for step in recipe.steps],
        variables=dict(recipe.variables),
        build_depends=sorted(recipe.build_depends),
    )


def fingerprint_inputs(inputs: SourceInputs) -> str:
    """Hash the canonical JSON form of the inputs."""
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def compute_cache_key(base_image_digest: str, recipe_fingerprint: str) -> str:
    """Combine base image digest and recipe fingerprint into a cache key.

    Args:
        base_image_digest: Content digest of the base image (not a tag).
        recipe_fingerprint: Fingerprint of the recipe inputs.

    Returns:
        Cache key as hex string.
    """
    sha256 = hashlib.sha256()
    sha256.update(base_image_digest.encode("utf-8"))
    sha256.update(b"\0")
    sha256.update(recipe_fingerprint.encode("utf-8"))
    return sha256.hexdigest()


def compute(base_image_digest: str, recipe: Recipe) -> str:
    """Compute the cache key of a recipe built on a base image.

    Returns:
        Cache key as hex string.
    """
    inputs = create_source_inputs(recipe)
    return compute_cache_key(base_image_digest, fingerprint_inputs(inputs))


def cache_tag(cache_key: str, prefix: str = "pkgfry") -> str:
    """Image tag a source image with this key is stored under."""
    return f"{prefix}:{cache_key[:CACHE_TAG_LENGTH]}"


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "CACHE_TAG_LENGTH",
    "SourceInputs",
    "cache_tag",
    "compute",
    "compute_cache_key",
    "create_source_inputs",
    "fingerprint_inputs",
]
