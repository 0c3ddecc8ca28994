"""Kernel build module.

This module handles:
- Composing and running the make targets
- Regenerating the stored defconfig
- Build log capture and tail reporting
"""

from kernel_release.builds.runner import BuildResult

__all__ = ["BuildResult"]
