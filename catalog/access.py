from typing import List, Union

from .models import BasicView, Record
from .plans import PlanTier, parse_tier, policy_for


def project(record: Record, tier: Union[str, PlanTier, None]) -> BasicView:
    """
    Build the public view of a record for a plan tier.

    BASIC sees id/title, PRO and ULTRA add price, image, url and category,
    MEGA also gets the source listing page. Unknown tiers are served as BASIC.
    """
    plan = parse_tier(tier) or PlanTier.BASIC
    view_cls = policy_for(plan).view
    values = {
        "id": record.id,
        "title": record.title,
        "plan": plan.value,
        "display_price": record.display_price,
        "image_url": record.image_url,
        "url": record.natural_key,
        "category": record.category,
        "source_page": record.source_page,
    }
    return view_cls(**{name: values[name] for name in view_cls.model_fields})


def project_many(records: List[Record], tier: Union[str, PlanTier, None]) -> List[dict]:
    return [project(r, tier).model_dump() for r in records]
