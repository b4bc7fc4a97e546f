"""Shared fixtures: a small licensing catalog and the index built from it."""

import sys
from pathlib import Path

import pytest


def ensure_root_on_path() -> None:
    root = Path(__file__).resolve().parent.parent
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


ensure_root_on_path()

from m365_license_engine.catalog import CatalogRow, build_index  # noqa: E402

PLAN_EXCHANGE = "9aaf7827-d63c-4b61-89c3-182f06f82e5c"
PLAN_TEAMS = "57ff2da0-773e-42df-b2af-ffb7a2317929"
PLAN_SFB = "0feaeb32-d00e-4d66-bd5a-43b5b83db82c"

CATALOG_HEADER = (
    "Product_Display_Name,String_Id,GUID,Service_Plan_Name,Service_Plan_Id,"
    "Service_Plans_Included_Friendly_Names"
)


def row(product, plan_id, plan_name, string_id=None, guid=None):
    return CatalogRow(
        product_display_name=product,
        string_id=string_id,
        sku_guid=guid,
        service_plan_id=plan_id,
        service_plan_name=plan_name,
    )


@pytest.fixture
def catalog_rows():
    """X has Exchange+Teams, Y has Exchange, Z has all three."""
    return [
        row("Product X", PLAN_EXCHANGE, "EXCHANGE_S_STANDARD", "PROD_X", "guid-x"),
        row("Product X", PLAN_TEAMS, "TEAMS1", "PROD_X", "guid-x"),
        row("Product Y", PLAN_EXCHANGE, "EXCHANGE_S_STANDARD", "PROD_Y", "guid-y"),
        row("Product Z", PLAN_EXCHANGE, "EXCHANGE_S_STANDARD", "PROD_Z", "guid-z"),
        row("Product Z", PLAN_TEAMS, "TEAMS1", "PROD_Z", "guid-z"),
        row("Product Z", PLAN_SFB, "MCOSTANDARD", "PROD_Z", "guid-z"),
    ]


@pytest.fixture
def sample_index(catalog_rows):
    return build_index(catalog_rows, source_file="catalog.csv")


@pytest.fixture
def catalog_csv_text():
    lines = [
        CATALOG_HEADER,
        f"Product X,PROD_X,guid-x,EXCHANGE_S_STANDARD,{PLAN_EXCHANGE},Exchange Online",
        f"Product X,PROD_X,guid-x,TEAMS1,{PLAN_TEAMS},Microsoft Teams",
        f"Product Y,PROD_Y,guid-y,EXCHANGE_S_STANDARD,{PLAN_EXCHANGE},Exchange Online",
        f"Product Z,PROD_Z,guid-z,EXCHANGE_S_STANDARD,{PLAN_EXCHANGE},Exchange Online",
        f"Product Z,PROD_Z,guid-z,TEAMS1,{PLAN_TEAMS},Microsoft Teams",
        f"Product Z,PROD_Z,guid-z,MCOSTANDARD,{PLAN_SFB},Skype for Business",
    ]
    return "\n".join(lines) + "\n"


@pytest.fixture
def catalog_csv(tmp_path, catalog_csv_text):
    path = tmp_path / "licensing_catalog.csv"
    path.write_text(catalog_csv_text, encoding="utf-8-sig")
    return path
