"""
Retry policies shared by container and transport operations.

Both use bounded attempts with exponential backoff; the last exception is
re-raised so callers can classify it.
"""

from __future__ import annotations

import logging
from typing import Tuple, Type

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .constants import (
    CONTAINER_RETRY_WAIT_MAX,
    CONTAINER_RETRY_WAIT_MIN,
    TRANSPORT_RETRY_WAIT_MAX,
    TRANSPORT_RETRY_WAIT_MIN,
)
from .logging import get_logger

logger = get_logger(__name__)


def retrying(
    attempts: int,
    retry_on: Tuple[Type[BaseException], ...],
    wait_min: float,
    wait_max: float,
) -> Retrying:
    """
    Build a tenacity controller.

    Args:
        attempts: Total number of tries (>= 1)
        retry_on: Exception types considered transient
        wait_min: Lower bound of the exponential backoff in seconds
        wait_max: Upper bound of the exponential backoff in seconds
    """
    return Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=wait_min or 1, min=wait_min, max=wait_max),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def container_retrying(attempts: int, retry_on: Tuple[Type[BaseException], ...]) -> Retrying:
    return retrying(attempts, retry_on, CONTAINER_RETRY_WAIT_MIN, CONTAINER_RETRY_WAIT_MAX)


def transport_retrying(attempts: int, retry_on: Tuple[Type[BaseException], ...]) -> Retrying:
    return retrying(attempts, retry_on, TRANSPORT_RETRY_WAIT_MIN, TRANSPORT_RETRY_WAIT_MAX)
