from .background import BackgroundRemovalResult, BackgroundRemover
from .backfill import LocationBackfill
from .blobs import BlobStore, LocalBlobStore, S3BlobStore, build_blob_store
from .geocoding import LocationLabels, ReverseGeocoder
from .ingestion import IngestionPipeline, IngestionResult, UploadedImage, UploadValidationError
from .places import PlaceCandidate, PlacesClient, build_place_link
from .updates import MemoryUpdater, normalize_tags
from .vision import DishIdentifier, Identification

__all__ = [
    "BackgroundRemovalResult",
    "BackgroundRemover",
    "BlobStore",
    "DishIdentifier",
    "Identification",
    "IngestionPipeline",
    "IngestionResult",
    "LocalBlobStore",
    "LocationBackfill",
    "LocationLabels",
    "MemoryUpdater",
    "PlaceCandidate",
    "PlacesClient",
    "ReverseGeocoder",
    "S3BlobStore",
    "UploadValidationError",
    "UploadedImage",
    "build_blob_store",
    "build_place_link",
    "normalize_tags",
]
