"""Error definitions for kernel_release.

Every fatal condition in the workflow is raised as a ReleaseError subclass
carrying a stable code. The CLI turns any of them into exit status 1.
"""

# Dependency provisioning
DEPENDENCY_INSTALL_FAILED = "dependency_install_failed"
TOOLCHAIN_INSTALL_FAILED = "toolchain_install_failed"

# Build
DEFCONFIG_FAILED = "defconfig_failed"
COMPILE_FAILED = "compile_failed"
IMAGE_MISSING = "image_missing"
CLEAN_FAILED = "clean_failed"
EXECUTION_ERROR = "execution_error"

# Packaging
TEMPLATE_UNAVAILABLE = "template_unavailable"
ARCHIVE_FAILED = "archive_failed"

# Upload
UPLOAD_HTTP_ERROR = "http_error"
UPLOAD_TIMEOUT = "timeout"
UPLOAD_NETWORK_ERROR = "network_error"
UPLOAD_FILE_ERROR = "file_error"


class ReleaseError(Exception):
    """Base error for workflow failures."""

    def __init__(self, message: str, code: str = "release_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ProvisioningError(ReleaseError):
    """Raised when packages or the compiler toolchain cannot be installed."""


class BuildError(ReleaseError):
    """Raised when configuring or compiling the kernel fails."""

    def __init__(
        self,
        message: str,
        code: str = COMPILE_FAILED,
        log_tail: list[str] | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message, code)
        self.log_tail = log_tail or []
        self.exit_code = exit_code


class PackagingError(ReleaseError):
    """Raised when the flashable archive cannot be produced."""


class UploadError(ReleaseError):
    """Raised when publishing the archive fails."""


__all__ = [
    "ARCHIVE_FAILED",
    "BuildError",
    "COMPILE_FAILED",
    "DEFCONFIG_FAILED",
    "DEPENDENCY_INSTALL_FAILED",
    "EXECUTION_ERROR",
    "IMAGE_MISSING",
    "PackagingError",
    "ProvisioningError",
    "ReleaseError",
    "TEMPLATE_UNAVAILABLE",
    "TOOLCHAIN_INSTALL_FAILED",
    "UPLOAD_FILE_ERROR",
    "UPLOAD_HTTP_ERROR",
    "UPLOAD_NETWORK_ERROR",
    "UPLOAD_TIMEOUT",
    "UploadError",
]
