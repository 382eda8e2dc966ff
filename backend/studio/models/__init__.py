from studio.db.base import Base  # noqa: F401
from studio.models.asset import (  # noqa: F401
    AnnotationRecord,
    AssetRecord,
    AssetTagRecord,
    DeliveryEventRecord,
    ProjectRecord,
)

__all__ = [
    "Base",
    "AnnotationRecord",
    "AssetRecord",
    "AssetTagRecord",
    "DeliveryEventRecord",
    "ProjectRecord",
]
