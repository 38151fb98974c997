"""Recipe loading, validation and sources."""

from pkgfry.recipe.io import load_recipe
from pkgfry.recipe.recipe import PackageDeclaration, Recipe, Step
from pkgfry.recipe.source import DirSource, Source, UrlSource

__all__ = [
    "DirSource",
    "PackageDeclaration",
    "Recipe",
    "Source",
    "Step",
    "UrlSource",
    "load_recipe",
]
