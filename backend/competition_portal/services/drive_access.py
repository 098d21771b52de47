"""Google Drive link validation and public-accessibility check."""

import logging
import re
from dataclasses import dataclass
from typing import Optional
import httpx
from competition_portal.core.config import settings

logger = logging.getLogger(__name__)

DRIVE_URL_PATTERNS = [
    re.compile(r"^https://drive\.google\.com/file/d/[a-zA-Z0-9_-]+"),
    re.compile(r"^https://drive\.google\.com/drive/folders/[a-zA-Z0-9_-]+"),
    re.compile(r"^https://docs\.google\.com/(document|spreadsheets|presentation)/d/[a-zA-Z0-9_-]+"),
]
FILE_ID_PATTERN = re.compile(r"/file/d/([a-zA-Z0-9_-]+)")


@dataclass
class AccessCheckResult:
    success: bool
    error: Optional[str] = None


def is_valid_google_drive_url(url: str) -> bool:
    return any(pattern.match(url) for pattern in DRIVE_URL_PATTERNS)


def to_check_url(url: str) -> str:
    """File links are checked through the direct download endpoint."""
    match = FILE_ID_PATTERN.search(url)
    if match:
        return f"https://drive.google.com/uc?id={match.group(1)}"
    return url


def check_drive_access(url: str) -> AccessCheckResult:
    """HEAD the link and report whether anyone with the link can view it."""
    if not settings.DRIVE_ACCESS_CHECK_ENABLED:
        return AccessCheckResult(success=True)

    try:
        response = httpx.head(
            to_check_url(url),
            follow_redirects=True,
            timeout=settings.DRIVE_ACCESS_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.warning(f"Drive access check failed for {url}: {str(e)}")
        return AccessCheckResult(
            success=False,
            error="Failed to verify file access. Please ensure the URL is correct and publicly accessible.",
        )

    if response.status_code == 200:
        return AccessCheckResult(success=True)
    if response.status_code == 403:
        return AccessCheckResult(
            success=False,
            error='File is not publicly accessible. Please set sharing to "Anyone with the link can view".',
        )
    return AccessCheckResult(
        success=False,
        error=f"Unable to access file (Status: {response.status_code}). Please check the URL and sharing settings.",
    )
