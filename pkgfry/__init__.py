"""pkgfry - build deb/rpm packages inside a container engine.

This package drives a recipe-based build in a throw-away container,
extracts the files the build produced and repackages them.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
