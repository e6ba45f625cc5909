"""
Road Import Versioning Engine

Versioning, validation, diff, snapshot, publish and rollback of bulk
road-network imports against an authoritative road dataset.
"""

__version__ = "0.1.0"

from .converter import Ogr2OgrConverter, VectorConverter
from .diff import compute_road_diff
from .errors import (
    ConversionError,
    ConversionTimeoutError,
    EmptyImportError,
    ImportEngineError,
    InvalidScopeError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationRejectedError,
)
from .models import (
    DiffResult,
    ImportConfig,
    ImportJob,
    ImportVersion,
    LayerInfo,
    PublishResult,
    RollbackResult,
    ValidationResult,
)
from .road_store import PostGISRoadStore, RoadAssetStore
from .scope import parse_scope, parse_scope_strict
from .service import ImportVersionService
from .storage import ImportFileStore
from .validation import validate_features

__all__ = [
    "__version__",
    "ImportVersionService",
    "ImportFileStore",
    "Ogr2OgrConverter",
    "VectorConverter",
    "PostGISRoadStore",
    "RoadAssetStore",
    "compute_road_diff",
    "validate_features",
    "parse_scope",
    "parse_scope_strict",
    "ImportConfig",
    "ImportVersion",
    "ImportJob",
    "LayerInfo",
    "ValidationResult",
    "DiffResult",
    "PublishResult",
    "RollbackResult",
    "ImportEngineError",
    "NotFoundError",
    "InvalidStateError",
    "InvalidScopeError",
    "ConversionError",
    "ConversionTimeoutError",
    "EmptyImportError",
    "PersistenceError",
    "ValidationRejectedError",
]
