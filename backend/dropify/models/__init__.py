from dropify.db.base import Base  # noqa: F401
from dropify.models.owner import DiscountType, Owner  # noqa: F401
from dropify.models.drop import (  # noqa: F401
    GLOBAL_CLAIMANT_ID,
    Drop,
    DropKind,
    DropReservation,
    DropReservationStatus,
)
from dropify.models.redemption import Redemption  # noqa: F401

__all__ = [
    "Base",
    "DiscountType",
    "Owner",
    "GLOBAL_CLAIMANT_ID",
    "Drop",
    "DropKind",
    "DropReservation",
    "DropReservationStatus",
    "Redemption",
]
