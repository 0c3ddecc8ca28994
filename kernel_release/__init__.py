"""Kernel Release - build, package and publish a device kernel.

This package orchestrates an external kernel build toolchain, wraps the
resulting boot image into a flashable AnyKernel3 zip, and optionally uploads
the zip to Telegram or Oshi.at.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
