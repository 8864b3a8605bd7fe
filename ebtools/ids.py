"""
Version label generation utilities.
"""

import random
import string
from datetime import datetime
from typing import Optional


def new_version_label(now: Optional[datetime] = None) -> str:
    """
    Generate a new application version label in format: v-YYYYMMDD-hhmmss-XXXX

    Returns:
        str: Unique version label
    """
    now = now or datetime.now()
    date_str = now.strftime("%Y%m%d")
    time_str = now.strftime("%H%M%S")

    # 4 random alphanumeric characters keep labels unique within a second
    random_suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))

    return f"v-{date_str}-{time_str}-{random_suffix}"


def is_valid_version_label(label: str) -> bool:
    """
    Validate a version label against Elastic Beanstalk limits.

    Args:
        label: Label to validate

    Returns:
        bool: True if the label is 1-100 characters and has no slash
    """
    if not label or len(label) > 100:
        return False

    return "/" not in label


def s3_key_for_version(application: str, version_label: str, extension: str = ".zip") -> str:
    """S3 key the bundle for an application version is uploaded to."""
    application = application.replace(" ", "-")
    version_label = version_label.replace(" ", "-")
    return f"{application}/AWSDeploymentArchive_{application}_{version_label}{extension}"
