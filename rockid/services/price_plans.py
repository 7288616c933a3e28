"""
Price table: product identifier -> tokens granted per purchase or renewal.
"""
import logging
from typing import Mapping, Optional

from rockid.core.config import settings

logger = logging.getLogger(__name__)


def tokens_for_product(product_id: Optional[str], table: Optional[Mapping[str, int]] = None) -> int:
    """Tokens granted for a product. Unknown or missing products grant 0."""
    plans = settings.PRODUCT_TOKENS if table is None else table
    if product_id and product_id in plans:
        return plans[product_id]

    logger.warning("Unknown product ID, granting 0 tokens", extra={"product_id": product_id})
    return 0
