"""Build orchestration module.

This module handles:
- Cache key computation for source images
- Package writers and staging areas
- Extraction of built files from containers
- Package assembly and atomic output
- The end-to-end cook flow
"""

from pkgfry.builds.cook import Cook, CookContext, CookOptions

__all__ = ["Cook", "CookContext", "CookOptions"]
