"""Service-plan index builder: dedup, fallback naming, ordering, determinism."""

import itertools

from m365_license_engine.catalog import CatalogRow, build_index
from m365_license_engine.catalog.index import index_to_document
from m365_license_engine.config import UNKNOWN_PRODUCT

from conftest import PLAN_EXCHANGE, PLAN_SFB, PLAN_TEAMS


def _items(index):
    return index_to_document(index)["Items"]


def test_entries_per_plan(sample_index):
    assert len(sample_index) == 3
    assert sample_index.rows_processed == 6

    exchange = sample_index[PLAN_EXCHANGE]
    assert exchange.service_plan_names == ["EXCHANGE_S_STANDARD"]
    assert [p.product_display_name for p in exchange.products] == ["Product X", "Product Y", "Product Z"]
    assert sample_index[PLAN_SFB].product_count == 1


def test_lookup_ignores_case(sample_index):
    assert PLAN_TEAMS.upper() in sample_index
    assert sample_index.get(PLAN_TEAMS.upper()).service_plan_id == PLAN_TEAMS


def test_build_is_independent_of_row_order(catalog_rows):
    expected = _items(build_index(catalog_rows))

    for perm in itertools.permutations(catalog_rows):
        assert _items(build_index(perm)) == expected


def test_duplicate_products_collapse_case_insensitively():
    rows = [
        CatalogRow(product_display_name="Office 365 E3", string_id="ENTERPRISEPACK", service_plan_id="p1"),
        CatalogRow(product_display_name="OFFICE 365 E3", string_id="OTHER", service_plan_id="P1"),
        CatalogRow(product_display_name="Office 365 E3", string_id="ENTERPRISEPACK", service_plan_id="p1"),
    ]

    index = build_index(rows)

    assert len(index) == 1
    entry = index["p1"]
    assert entry.product_count == 1
    # First-seen reference wins
    assert entry.products[0].string_id == "ENTERPRISEPACK"


def test_plan_names_are_merged_and_sorted():
    rows = [
        CatalogRow(product_display_name="A", service_plan_id="p1", service_plan_name="ZETA"),
        CatalogRow(product_display_name="B", service_plan_id="p1", service_plan_name="ALPHA"),
        CatalogRow(product_display_name="C", service_plan_id="p1", service_plan_name="ZETA"),
    ]

    assert build_index(rows)["p1"].service_plan_names == ["ALPHA", "ZETA"]


def test_product_name_fallbacks():
    rows = [
        CatalogRow(string_id="STRING_ONLY", service_plan_id="p1"),
        CatalogRow(service_plan_id="p1"),
    ]

    names = [p.product_display_name for p in build_index(rows)["p1"].products]

    assert names == ["STRING_ONLY", UNKNOWN_PRODUCT]


def test_rows_without_plan_id_are_skipped_but_counted():
    rows = [
        CatalogRow(product_display_name="A", service_plan_id=None),
        CatalogRow(product_display_name="A", service_plan_id="   "),
        CatalogRow(product_display_name="A", service_plan_id="p1"),
    ]

    index = build_index(rows)

    assert len(index) == 1
    assert index.rows_processed == 3


def test_sorted_entries_by_product_count_then_id(sample_index):
    order = [e.service_plan_id for e in sample_index.sorted_entries()]

    assert order == [PLAN_EXCHANGE, PLAN_TEAMS, PLAN_SFB]
    assert [e.service_plan_id for e in sample_index.top_plans(1)] == [PLAN_EXCHANGE]


def test_sorted_entries_tie_broken_by_id():
    rows = [
        CatalogRow(product_display_name="A", service_plan_id="bbb"),
        CatalogRow(product_display_name="A", service_plan_id="aaa"),
    ]

    assert [e.service_plan_id for e in build_index(rows).sorted_entries()] == ["aaa", "bbb"]
