from typing import Dict, Iterable, List, Optional

from .models import Feature


def classify(features: Iterable[Feature]) -> Dict[Optional[str], List[Feature]]:
    """Group features by category.

    Buckets appear in order of first occurrence and keep input order.
    Features whose category is missing or not in any style table are
    bucketed under their literal value (``None`` when missing) so the
    caller decides how to render them.
    """
    grouped: Dict[Optional[str], List[Feature]] = {}
    for feature in features:
        grouped.setdefault(feature.category, []).append(feature)
    return grouped
