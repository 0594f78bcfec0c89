from app.models.asset import Asset, AssetKind, AssetMeta, AssetState, AssetTag, AssetUsage, AssetVariant
from app.models.job import JobState, JobType, ProcessingJob

__all__ = [
    "Asset",
    "AssetKind",
    "AssetMeta",
    "AssetState",
    "AssetTag",
    "AssetUsage",
    "AssetVariant",
    "JobState",
    "JobType",
    "ProcessingJob",
]
