"""
Unit tests for the merge and dedup engine
"""
from datetime import datetime, timezone
from decimal import Decimal

from shelfscan.layers.merge import MergeEngine, ResultSet, dedup_key
from shelfscan.models.product import ProductRecord

FIXED_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def engine():
    return MergeEngine(placeholder_store="Generic", clock=lambda: FIXED_TIME)


class TestDedupKey:
    """Test suite for identity keys"""

    def test_priority_order(self):
        assert dedup_key(ProductRecord(product_id="1", product_url="u", name="n")) == "1"
        assert dedup_key(ProductRecord(product_url="u", name="n")) == "u"
        assert dedup_key(ProductRecord(name="n")) == "n"
        assert dedup_key(ProductRecord()) is None

    def test_key_stable_across_merges(self):
        record = ProductRecord(product_id="1", name="Milk")
        key = dedup_key(record)
        engine().merge_into(record, {"product_url": "https://x/p/1", "brand": "Clover"})
        assert dedup_key(record) == key


class TestMergeEngine:
    """Test suite for field precedence"""

    def test_fills_empty_fields_and_stamps(self):
        record = ProductRecord(product_id="1", name="Milk", store="Generic")
        changed = engine().merge_into(
            record,
            {"price": "$2.50", "brand": "Acme", "store": "Acme"},
            "detail_enrichment",
        )
        assert changed is True
        assert record.price == Decimal("2.50")
        assert record.brand == "Acme"
        assert record.store == "Acme"
        assert record.detail_extraction_method == "detail_enrichment"
        assert record.enriched_at == FIXED_TIME

    def test_first_writer_wins(self):
        record = ProductRecord(product_id="1", name="Milk", brand="Clover", price=Decimal("3.00"))
        changed = engine().merge_into(record, {"name": "Other", "brand": "Acme", "price": "9.99"})
        assert changed is False
        assert record.name == "Milk"
        assert record.brand == "Clover"
        assert record.price == Decimal("3.00")

    def test_zero_price_is_replaced(self):
        record = ProductRecord(product_id="1", price=Decimal("0"))
        assert engine().merge_into(record, {"price": "1.25"}) is True
        assert record.price == Decimal("1.25")

    def test_placeholder_never_overwrites_real_store(self):
        record = ProductRecord(product_id="1", store="Acme")
        assert engine().merge_into(record, {"store": "Generic"}) is False
        assert record.store == "Acme"

    def test_real_store_not_overwritten_by_other_real_store(self):
        record = ProductRecord(product_id="1", store="Acme")
        engine().merge_into(record, {"store": "Costco"})
        assert record.store == "Acme"

    def test_idempotent(self):
        record = ProductRecord(product_id="1", name="Milk", store="Generic")
        incoming = {"price": "2.50", "brand": "Acme", "store": "Acme"}
        merger = engine()
        assert merger.merge_into(record, incoming, "detail_enrichment") is True
        snapshot = record.model_dump()
        assert merger.merge_into(record, incoming, "detail_enrichment") is False
        assert record.model_dump() == snapshot

    def test_no_stamp_without_change(self):
        record = ProductRecord(product_id="1", brand="Acme")
        engine().merge_into(record, {"brand": "Acme"}, "detail_enrichment")
        assert record.detail_extraction_method is None
        assert record.enriched_at is None

    def test_in_stock_not_merged(self):
        record = ProductRecord(product_id="1", in_stock=True)
        engine().merge_into(record, ProductRecord(product_id="1", in_stock=False))
        assert record.in_stock is True

    def test_listing_duplicate_merges_without_method(self):
        record = ProductRecord(product_id="1", name="Milk")
        engine().merge_into(record, ProductRecord(product_id="1", brand="Acme"))
        assert record.brand == "Acme"
        assert record.detail_extraction_method is None
        assert record.enriched_at == FIXED_TIME


class TestResultSet:
    """Test suite for the ordered keyed collection"""

    def test_duplicates_merged(self):
        results = ResultSet(engine())
        assert results.add(ProductRecord(product_id="1", name="Milk")) is True
        assert results.add(ProductRecord(product_id="1", price=Decimal("2"))) is False
        assert len(results) == 1
        assert [(r.name, r.price) for r in results] == [("Milk", Decimal("2"))]

    def test_keyless_records_kept(self):
        results = ResultSet(engine())
        results.add(ProductRecord())
        results.add(ProductRecord())
        assert len(results) == 2

    def test_order_preserved(self):
        results = ResultSet(engine())
        for pid in ("3", "1", "2"):
            results.add(ProductRecord(product_id=pid))
        assert [r.product_id for r in results] == ["3", "1", "2"]

    def test_extraction_methods(self):
        results = ResultSet(engine())
        record = ProductRecord(product_id="1")
        results.add(record)
        engine().merge_into(record, {"brand": "Acme"}, "detail_enrichment")
        assert results.extraction_methods() == ["detail_enrichment", "graph_state"]


class TestStorePrecedence:
    """Test suite for placeholder store handling in both directions"""

    def test_real_store_replaces_placeholder(self):
        record = ProductRecord(product_id="1", store="Generic")
        engine().merge_into(record, ProductRecord(product_id="1", store="Acme Market"), "detail_enrichment")
        assert record.store == "Acme Market"

    def test_placeholder_leaves_real_store(self):
        record = ProductRecord(product_id="1", store="Acme Market")
        engine().merge_into(record, ProductRecord(product_id="1", store="Generic"), "detail_enrichment")
        assert record.store == "Acme Market"
