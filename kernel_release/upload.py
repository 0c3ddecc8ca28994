"""Release archive upload.

This module handles:
- Sending the archive as a document to a Telegram channel
- Uploading the archive to Oshi.at and returning its retrieval URLs
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn
from urllib.parse import quote

import httpx

from kernel_release.errors import (
    UPLOAD_FILE_ERROR,
    UPLOAD_HTTP_ERROR,
    UPLOAD_NETWORK_ERROR,
    UPLOAD_TIMEOUT,
    UploadError,
)

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
OSHI_BASE = "https://oshi.at"

# Timeout for uploads (seconds)
UPLOAD_TIMEOUT_SECONDS = 1800


def telegram_send_document_url(token: str, api_base: str = TELEGRAM_API_BASE) -> str:
    """Build the Bot API sendDocument endpoint for a bot token."""
    return f"{api_base.rstrip('/')}/bot{token}/sendDocument"


def oshi_upload_url(archive_name: str, base_url: str = OSHI_BASE) -> str:
    """Build the Oshi.at upload URL; the remote name mirrors the local one."""
    return f"{base_url.rstrip('/')}/{quote(archive_name)}"


def _raise_transport_error(e: httpx.HTTPError, service: str) -> NoReturn:
    if isinstance(e, httpx.HTTPStatusError):
        raise UploadError(
            f"Failed to upload to {service}: "
            f"{e.response.status_code} {e.response.reason_phrase}",
            code=UPLOAD_HTTP_ERROR,
        ) from e
    if isinstance(e, httpx.TimeoutException):
        raise UploadError(
            f"Timeout uploading to {service}",
            code=UPLOAD_TIMEOUT,
        ) from e
    raise UploadError(
        f"Network error uploading to {service}: {e}",
        code=UPLOAD_NETWORK_ERROR,
    ) from e


def upload_to_telegram(
    client: httpx.Client,
    archive_path: Path,
    token: str,
    chat_id: str,
    api_base: str = TELEGRAM_API_BASE,
    timeout: float = UPLOAD_TIMEOUT_SECONDS,
) -> str:
    """Send the archive to a Telegram chat as a document.

    Args:
        client: HTTPX client instance.
        archive_path: Archive to send.
        token: Bot token.
        chat_id: Target chat or channel id.
        api_base: Bot API base URL.
        timeout: Request timeout in seconds.

    Returns:
        Raw response body.

    Raises:
        UploadError: On transport failure, HTTP error, or API rejection.
    """
    url = telegram_send_document_url(token, api_base)
    logger.info("Uploading %s to Telegram chat %s", archive_path.name, chat_id)

    try:
        with archive_path.open("rb") as f:
            response = client.post(
                url,
                data={"chat_id": chat_id},
                files={"document": (archive_path.name, f, "application/zip")},
                timeout=timeout,
            )
        response.raise_for_status()
    except OSError as e:
        raise UploadError(
            f"Cannot read {archive_path}: {e}", code=UPLOAD_FILE_ERROR
        ) from e
    except httpx.HTTPError as e:
        _raise_transport_error(e, "Telegram")

    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("ok") is False:
        raise UploadError(
            "Telegram rejected the upload: "
            f"{payload.get('description', 'unknown error')}",
            code=UPLOAD_HTTP_ERROR,
        )

    return response.text


def upload_to_oshi(
    client: httpx.Client,
    archive_path: Path,
    base_url: str = OSHI_BASE,
    timeout: float = UPLOAD_TIMEOUT_SECONDS,
) -> str:
    """PUT the archive to Oshi.at.

    Returns:
        The service response, normally the download and admin URLs.

    Raises:
        UploadError: On transport failure or HTTP error.
    """
    url = oshi_upload_url(archive_path.name, base_url)
    logger.info("Uploading %s to %s", archive_path.name, url)

    try:
        with archive_path.open("rb") as f:
            response = client.put(url, content=f, timeout=timeout)
        response.raise_for_status()
    except OSError as e:
        raise UploadError(
            f"Cannot read {archive_path}: {e}", code=UPLOAD_FILE_ERROR
        ) from e
    except httpx.HTTPError as e:
        _raise_transport_error(e, "Oshi.at")

    return response.text.strip()


__all__ = [
    "OSHI_BASE",
    "TELEGRAM_API_BASE",
    "oshi_upload_url",
    "telegram_send_document_url",
    "upload_to_oshi",
    "upload_to_telegram",
]
