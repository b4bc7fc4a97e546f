"""Catalog CSV header and record normalization."""

import pytest

from m365_license_engine.catalog import CatalogFormatError, normalize_header, normalize_record, read_catalog
from m365_license_engine.config import UNKNOWN_PRODUCT


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Service_Plan_Id", "Service_Plan_Id"),
        ("  Service Plan Id  ", "Service_Plan_Id"),
        ("\ufeffProduct_Display_Name", "Product_Display_Name"),
        ("Service Plans Included (Friendly Names)", "Service_Plans_Included_Friendly_Names"),
        ("String   Id", "String_Id"),
    ],
)
def test_normalize_header(raw, expected):
    assert normalize_header(raw) == expected


def test_normalize_record_trims_values_and_blanks_become_none():
    record = {
        "Product_Display_Name": "  Office 365 E3 ",
        "String_Id": "",
        "Service Plan Id": " abc ",
        "Unrelated": "ignored",
        None: ["overflow"],
    }

    r = normalize_record(record)

    assert r.product_display_name == "Office 365 E3"
    assert r.string_id is None
    assert r.service_plan_id == "abc"
    assert r.service_plan_name is None


def test_resolved_product_name_falls_back_to_string_id_then_unknown():
    assert normalize_record({"String_Id": "ENTERPRISEPACK"}).resolved_product_name == "ENTERPRISEPACK"
    assert normalize_record({"Service_Plan_Id": "x"}).resolved_product_name == UNKNOWN_PRODUCT


def test_read_catalog_handles_bom_header(catalog_csv):
    rows = read_catalog(catalog_csv)

    assert len(rows) == 6
    assert rows[0].product_display_name == "Product X"
    assert rows[0].service_plans_included_friendly_names == "Exchange Online"


def test_read_catalog_missing_plan_id_column(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("Product_Display_Name,String_Id\nA,B\n", encoding="utf-8")

    with pytest.raises(CatalogFormatError, match="Service_Plan_Id"):
        read_catalog(path)


def test_read_catalog_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_catalog(tmp_path / "absent.csv")
