from .admission_controller import (
    AdmissionStatus,
    CallbackRevocationListener,
    PreviewAdmissionController,
    PreviewSlot,
    RevocationListener,
)
from .clock import Clock, MonotonicClock
from .config_loader import PreviewConfig, load_preview_config
from .device_profile import DeviceProfile, detect_device_profile, get_device_profile
from .exclusive_playback import ExclusivePlaybackCoordinator, SuspensionState
from .media import (
    CaptureError,
    ConnectionFactory,
    ConnectionOpenError,
    EmptyFrameError,
    MediaConnection,
)
from .preview_service import PreviewService
from .snapshot_capture import Snapshot, SnapshotCapturer
from .snapshot_scheduler import SchedulerState, SnapshotScheduler
from .snapshot_workers import SnapshotWorkerPool

__version__ = "1.0.0"

__all__ = [
    'AdmissionStatus',
    'CallbackRevocationListener',
    'CaptureError',
    'Clock',
    'ConnectionFactory',
    'ConnectionOpenError',
    'DeviceProfile',
    'EmptyFrameError',
    'ExclusivePlaybackCoordinator',
    'MediaConnection',
    'MonotonicClock',
    'PreviewAdmissionController',
    'PreviewConfig',
    'PreviewService',
    'PreviewSlot',
    'RevocationListener',
    'SchedulerState',
    'Snapshot',
    'SnapshotCapturer',
    'SnapshotScheduler',
    'SnapshotWorkerPool',
    'SuspensionState',
    'detect_device_profile',
    'get_device_profile',
    'load_preview_config',
    '__version__',
]
