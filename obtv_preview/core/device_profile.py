"""
Device classification for the preview core.

Decides once per process whether the host is a constrained TV / set-top class
device and derives the preview budget from that. The core components never
inspect the environment themselves; they receive the resulting
:class:`DeviceProfile` (or a config built from it) at construction time.
"""

import os
import re
from dataclasses import dataclass
from typing import Optional

import psutil

from obtv_preview.core.logging_utils import get_module_logger

logger = get_module_logger("DeviceProfile")

TV_USER_AGENT_PATTERN = re.compile(
    r"silk|webos|tizen|roku|chromecast|firestick|androidtv|smarttv",
    re.IGNORECASE,
)

USER_AGENT_ENV_VAR = "OBTV_USER_AGENT"

# Set-top boxes in the field ship with 1-2 GB of RAM
LOW_MEMORY_THRESHOLD_BYTES = 2 * 1024 ** 3

CONSTRAINED_MAX_CONCURRENT = 1
DEFAULT_MAX_CONCURRENT = 2
DEFAULT_SNAPSHOT_INTERVAL = 30.0


@dataclass(frozen=True)
class DeviceProfile:
    """Immutable preview budget for the current device.

    Attributes:
        device_is_constrained: True for TV / set-top class hardware
        max_concurrent: Number of live preview connections allowed at once
        snapshot_interval: Seconds between snapshot capture passes
        reason: Why the device was classified the way it was
        user_agent: The user agent string the decision was based on, if any
    """

    device_is_constrained: bool
    max_concurrent: int
    snapshot_interval: float = DEFAULT_SNAPSHOT_INTERVAL
    reason: str = "default"
    user_agent: Optional[str] = None

    @classmethod
    def for_device(
        cls,
        constrained: bool,
        *,
        reason: str = "default",
        user_agent: Optional[str] = None,
    ) -> "DeviceProfile":
        return cls(
            device_is_constrained=constrained,
            max_concurrent=CONSTRAINED_MAX_CONCURRENT if constrained else DEFAULT_MAX_CONCURRENT,
            snapshot_interval=DEFAULT_SNAPSHOT_INTERVAL,
            reason=reason,
            user_agent=user_agent,
        )

    def __str__(self) -> str:
        kind = "constrained" if self.device_is_constrained else "standard"
        return f"{kind} device (max_concurrent={self.max_concurrent}, reason={self.reason})"


def is_tv_user_agent(user_agent: Optional[str]) -> bool:
    """Return True if ``user_agent`` identifies a TV / set-top browser."""
    if not user_agent:
        return False
    return bool(TV_USER_AGENT_PATTERN.search(user_agent))


def _has_low_memory(threshold: int) -> bool:
    try:
        total = psutil.virtual_memory().total
    except (OSError, RuntimeError) as exc:
        logger.debug("Unable to read system memory: %s", exc)
        return False
    return total < threshold


def detect_device_profile(
    user_agent: Optional[str] = None,
    *,
    check_memory: bool = True,
    memory_threshold: int = LOW_MEMORY_THRESHOLD_BYTES,
) -> DeviceProfile:
    """Classify the current device.

    The user agent comes from ``user_agent`` or, when omitted, from the
    ``OBTV_USER_AGENT`` environment variable. A matching TV user agent wins;
    otherwise hosts below ``memory_threshold`` bytes of RAM are treated as
    constrained too.

    This performs the actual detection. Use get_device_profile() for the
    cached process-wide instance.
    """
    if user_agent is None:
        user_agent = os.environ.get(USER_AGENT_ENV_VAR)

    if is_tv_user_agent(user_agent):
        profile = DeviceProfile.for_device(True, reason="tv-user-agent", user_agent=user_agent)
    elif check_memory and _has_low_memory(memory_threshold):
        profile = DeviceProfile.for_device(True, reason="low-memory", user_agent=user_agent)
    else:
        profile = DeviceProfile.for_device(False, user_agent=user_agent)

    logger.info("Device detected: %s", profile)
    return profile


# Singleton instance
_device_profile: Optional[DeviceProfile] = None


def get_device_profile() -> DeviceProfile:
    """Get the cached device profile, detecting it on first access."""
    global _device_profile
    if _device_profile is None:
        _device_profile = detect_device_profile()
    return _device_profile


def reset_device_profile() -> None:
    """Reset the cached device profile (for testing only)."""
    global _device_profile
    _device_profile = None


__all__ = [
    "DeviceProfile",
    "TV_USER_AGENT_PATTERN",
    "detect_device_profile",
    "get_device_profile",
    "is_tv_user_agent",
    "reset_device_profile",
]
