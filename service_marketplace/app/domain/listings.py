"""
Listing creation rules.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from shared.errors import ValidationError


REQUIRED_FIELDS = ("title", "category", "price", "location", "sellerId")


def missing_fields(listing: Mapping[str, Any]) -> List[str]:
    """Required fields that are absent or falsy, in declaration order."""
    return [name for name in REQUIRED_FIELDS if not listing.get(name)]


def build_listing_document(payload: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Validate a create payload and stamp its creation time."""
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")

    missing = missing_fields(payload)
    if missing:
        raise ValidationError(
            f"Missing fields: {', '.join(missing)}",
            details={"missing": missing},
        )

    document = dict(payload)
    document["createdAt"] = now or datetime.now(timezone.utc)
    return document
