from .attempt_store import AttemptStore
from .catalog import CatalogReader
from .attempt_engine import AttemptEngine
from .proctoring import ProctoringRecorder
from .expiry_scheduler import ExpiryScheduler
from .availability import AvailabilityProjector

__all__ = ["AttemptStore", "CatalogReader", "AttemptEngine", "ProctoringRecorder",
           "ExpiryScheduler", "AvailabilityProjector"]
