"""
Preview Admission Controller - bounds the number of live preview connections.

Each tile that wants to decode a live stream must hold a slot. The number of
slots is tiny (one on TV hardware, two elsewhere) because over-granting
crashes constrained decoders, while a denied tile simply keeps showing its
static thumbnail.

Slot lifecycle:
- request_slot(): granted while capacity remains (idempotent per stream)
- release_slot(): voluntary release, the tile already closed its connection
- force_release_oldest(): FIFO eviction, the evicted tile is told to close
- suspend_all(): evicts everything and denies new requests until resume()
"""

from dataclasses import dataclass, field
from itertools import count
from typing import Callable, Dict, Optional, Protocol, Tuple

from obtv_preview.core.logging_utils import LoggerLike, ensure_structured_logger


class RevocationListener(Protocol):
    """Receives forced slot revocations."""

    def on_revoked(self, stream_id: str) -> None:
        ...


class CallbackRevocationListener:
    """Adapts a zero-argument cleanup callable to RevocationListener."""

    def __init__(self, callback: Callable[[], None]):
        self._callback = callback

    def on_revoked(self, stream_id: str) -> None:
        self._callback()


@dataclass
class PreviewSlot:
    """Right of one stream to hold an active live connection."""

    stream_id: str
    source_url: str
    listener: RevocationListener
    sequence: int
    revoked: bool = field(default=False, compare=False)

    def notify_revoked(self, logger) -> None:
        """Tell the owner to tear down its connection (at most once)."""
        if self.revoked:
            return
        self.revoked = True
        try:
            self.listener.on_revoked(self.stream_id)
        except Exception as e:
            logger.error("Revocation listener for %s failed: %s", self.stream_id, e)


@dataclass(frozen=True)
class AdmissionStatus:
    active: int
    max_concurrent: int
    has_capacity: bool
    suspended: bool = False

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "maxConcurrent": self.max_concurrent,
            "hasCapacity": self.has_capacity,
            "suspended": self.suspended,
        }


class PreviewAdmissionController:
    """
    Capacity-bounded allocator of preview slots.

    Slots are kept in insertion order so that the oldest grant is always the
    first entry; eviction is FIFO, not LRU. All operations are synchronous.
    """

    def __init__(self, max_concurrent: int, *, logger: LoggerLike = None):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1 (got {max_concurrent})")
        self.logger = ensure_structured_logger(logger, fallback_name="PreviewAdmission")
        self._max_concurrent = max_concurrent
        self._slots: Dict[str, PreviewSlot] = {}
        self._sequence = count()
        self._suspended = False

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active_count(self) -> int:
        return len(self._slots)

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    def active_stream_ids(self) -> Tuple[str, ...]:
        """Active streams, oldest grant first."""
        return tuple(self._slots)

    # =========================================================================
    # Tile-facing operations
    # =========================================================================

    def request_slot(
        self,
        stream_id: str,
        source_url: str,
        listener: RevocationListener,
    ) -> bool:
        """Request a preview slot. Returns True if granted."""
        if self._suspended:
            self.logger.debug("Suspended, denying slot for %s", stream_id)
            return False

        if stream_id in self._slots:
            return True

        if len(self._slots) >= self._max_concurrent:
            self.logger.info(
                "At capacity (%d/%d), denying slot for %s",
                len(self._slots), self._max_concurrent, stream_id,
            )
            return False

        self._slots[stream_id] = PreviewSlot(
            stream_id=stream_id,
            source_url=source_url,
            listener=listener,
            sequence=next(self._sequence),
        )
        self.logger.info(
            "Granted slot %s (%d/%d)", stream_id, len(self._slots), self._max_concurrent
        )
        return True

    def release_slot(self, stream_id: str) -> None:
        """Voluntarily release a slot. The listener is not notified."""
        if self._slots.pop(stream_id, None) is not None:
            self.logger.info(
                "Released slot %s (%d/%d)", stream_id, len(self._slots), self._max_concurrent
            )

    def force_release_oldest(self) -> bool:
        """Evict the longest-held slot. Returns False if no slots exist."""
        if not self._slots:
            return False

        stream_id = next(iter(self._slots))
        # Detach before notifying so the listener may call back into us.
        slot = self._slots.pop(stream_id)
        slot.notify_revoked(self.logger)
        self.logger.info("Force released oldest slot %s", stream_id)
        return True

    def acquire_or_steal(
        self,
        stream_id: str,
        source_url: str,
        listener: RevocationListener,
    ) -> bool:
        """Request a slot, evicting the oldest holder once if at capacity."""
        if self.request_slot(stream_id, source_url, listener):
            return True
        if self._suspended:
            return False
        if not self.force_release_oldest():
            return False
        return self.request_slot(stream_id, source_url, listener)

    def get_status(self) -> AdmissionStatus:
        active = len(self._slots)
        return AdmissionStatus(
            active=active,
            max_concurrent=self._max_concurrent,
            has_capacity=active < self._max_concurrent and not self._suspended,
            suspended=self._suspended,
        )

    # =========================================================================
    # Suspension (driven by ExclusivePlaybackCoordinator)
    # =========================================================================

    def suspend_all(self) -> int:
        """Revoke every slot and deny requests until resume(). Returns evictions."""
        self._suspended = True
        if not self._slots:
            return 0

        evicted = list(self._slots.values())
        self._slots.clear()
        for slot in evicted:
            slot.notify_revoked(self.logger)

        self.logger.info("Suspended, revoked %d slot(s)", len(evicted))
        return len(evicted)

    def resume(self) -> None:
        if not self._suspended:
            return
        self._suspended = False
        self.logger.info("Resumed, capacity %d", self._max_concurrent)


__all__ = [
    "AdmissionStatus",
    "CallbackRevocationListener",
    "PreviewAdmissionController",
    "PreviewSlot",
    "RevocationListener",
]
