"""
Merge & Dedup Engine for the shelfscan crawler.
Folds candidate records from every extraction pass into one
authoritative record per logical product.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from shelfscan.config import config
from shelfscan.layers.normalizer import parse_price
from shelfscan.models.product import ProductRecord, utc_now
from shelfscan.utils.logger import LayerLogger

# Fields an incoming pass may contribute. in_stock is excluded: it is
# never empty (defaults to True) so first-writer-wins always keeps it.
MERGEABLE_FIELDS = [
    "product_id",
    "product_url",
    "name",
    "price",
    "original_price",
    "unit_price",
    "currency",
    "brand",
    "size",
    "description",
    "image_url",
    "category",
    "store",
    "store_slug",
    "zipcode",
]

DECIMAL_FIELDS = {"price", "original_price"}

IDENTITY_FIELDS = ("product_id", "product_url", "name")


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def dedup_key(record: ProductRecord) -> Optional[str]:
    """First non-empty of product_id, product_url, name; None when the record has no identity."""
    for name in IDENTITY_FIELDS:
        value = getattr(record, name)
        if not is_empty(value):
            return str(value).strip()
    return None


class MergeEngine:
    """
    Field-level precedence between an existing record and an incoming pass.

    An incoming non-empty value replaces the existing one only when:
    - the existing value is empty
    - the field is store and the existing store is the generic placeholder
    - the field is price and the existing price is None or zero
    Otherwise the first writer wins.
    """

    def __init__(
        self,
        placeholder_store: str = config.GENERIC_STORE_NAME,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.placeholder_store = placeholder_store
        self.clock = clock
        self.logger = LayerLogger("merge_engine")

    def merge_into(
        self,
        existing: ProductRecord,
        incoming: Union[ProductRecord, Dict[str, Any]],
        method: Optional[str] = None,
    ) -> bool:
        """
        Merge incoming values into existing in place.

        Args:
            existing: Record already in the result set
            incoming: Full record or partial field dict from a later pass
            method: Extraction method stamped on the record when it changes

        Returns:
            True if any field changed
        """
        if isinstance(incoming, ProductRecord):
            data = incoming.model_dump(include=set(MERGEABLE_FIELDS))
        else:
            data = incoming

        changed = []
        for name in MERGEABLE_FIELDS:
            new_value = self._coerce(name, data.get(name))
            if new_value is None:
                continue
            current = getattr(existing, name)
            if current == new_value:
                continue
            if self._should_overwrite(name, current, new_value):
                setattr(existing, name, new_value)
                changed.append(name)

        if not changed:
            return False

        if method:
            existing.detail_extraction_method = method
        existing.enriched_at = self.clock()

        self.logger.log_action(
            "merge",
            "completed",
            key=dedup_key(existing),
            fields_updated=changed,
            method=method,
        )
        return True

    def _should_overwrite(self, name: str, current: Any, new_value: Any) -> bool:
        if name == "store":
            if new_value == self.placeholder_store:
                return is_empty(current)
            return is_empty(current) or current == self.placeholder_store
        if name == "price":
            return current is None or current == 0
        return is_empty(current)

    def _coerce(self, name: str, value: Any) -> Any:
        if is_empty(value):
            return None
        if name in DECIMAL_FIELDS:
            return value if isinstance(value, Decimal) else parse_price(value)
        return str(value).strip()


class ResultSet:
    """
    Ordered, deduplicated collection of records for one run.

    Records sharing a dedup key are merged into the first one seen;
    records without any identity are kept as-is (best effort).
    """

    def __init__(self, engine: Optional[MergeEngine] = None):
        self.engine = engine or MergeEngine()
        self._by_key: Dict[str, ProductRecord] = {}
        self._records: List[ProductRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ProductRecord]:
        return iter(self._records)

    def add(self, record: ProductRecord, method: Optional[str] = None) -> bool:
        """
        Add a record, merging it into an existing one with the same key.

        Returns:
            True if the record was new to the set
        """
        key = dedup_key(record)
        if key is None:
            self._records.append(record)
            return True

        existing = self._by_key.get(key)
        if existing is None:
            self._by_key[key] = record
            self._records.append(record)
            return True

        self.engine.merge_into(existing, record, method)
        return False

    def records(self) -> List[ProductRecord]:
        return list(self._records)

    def extraction_methods(self) -> List[str]:
        """Every extraction method observed, including enrichment stamps."""
        methods = {r.extraction_method.value for r in self._records}
        methods.update(r.detail_extraction_method for r in self._records if r.detail_extraction_method)
        return sorted(methods)
