# Workers for processing bicks

from bickqr.workers.acquisition import (
    AcquiredAudio,
    SourceAcquisition,
    acquisition_scope,
    cleanup_dir,
    download_thumbnail,
)
from bickqr.workers.bick_processor import BickProcessor, ProcessingResult
from bickqr.workers.media import MediaTools
from bickqr.workers.runner import CommandFailed, CommandResult, CommandRunner, CommandTimeout

__all__ = [
    "AcquiredAudio",
    "SourceAcquisition",
    "acquisition_scope",
    "cleanup_dir",
    "download_thumbnail",
    "BickProcessor",
    "ProcessingResult",
    "MediaTools",
    "CommandFailed",
    "CommandResult",
    "CommandRunner",
    "CommandTimeout",
]
