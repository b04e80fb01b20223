from __future__ import annotations

import unittest

from app.jurisdictions import CONDUENT_COLUMN_ALIASES, FIS_COLUMN_ALIASES
from app.mappers.schema_mapper import SchemaMapper, lookup_field, normalize_header


class TestSchemaMapper(unittest.TestCase):
    def setUp(self) -> None:
        self.mapper = SchemaMapper(FIS_COLUMN_ALIASES)

    def test_exact_headers_resolve_in_alias_order(self) -> None:
        headers = ["Product UPC", "UPC", "Description", "Category", "Package Size"]

        resolution = self.mapper.resolve_mapping(headers)

        self.assertEqual(resolution.field_to_source["upc"], "UPC")
        self.assertEqual(resolution.field_to_source["description"], "Description")
        self.assertEqual(resolution.field_to_source["size"], "Package Size")
        self.assertEqual(resolution.match_strategies["upc"], "exact")
        self.assertEqual(resolution.missing_required, ())

    def test_normalized_headers_match_when_exact_fails(self) -> None:
        headers = ["upc_code", "FOOD-CATEGORY", "effective date "]

        resolution = self.mapper.resolve_mapping(headers)

        self.assertEqual(resolution.field_to_source["upc"], "upc_code")
        self.assertEqual(resolution.field_to_source["category"], "FOOD-CATEGORY")
        self.assertEqual(resolution.field_to_source["effective_date"], "effective date ")
        self.assertEqual(resolution.match_strategies["upc"], "normalized")

    def test_a_header_is_used_once(self) -> None:
        mapper = SchemaMapper({"category": ("Category",), "subcategory": ("Category", "Sub")})

        resolution = mapper.resolve_mapping(["Category"])

        self.assertEqual(resolution.field_to_source, {"category": "Category"})

    def test_missing_upc_column_reported(self) -> None:
        resolution = self.mapper.resolve_mapping(["Description", "Category"])
        self.assertEqual(resolution.missing_required, ("upc",))

    def test_processor_specific_aliases(self) -> None:
        mapper = SchemaMapper(CONDUENT_COLUMN_ALIASES)

        resolution = mapper.resolve_mapping(["UPC/PLU", "Item Description", "Food Category", "Unit Size"])

        self.assertEqual(resolution.field_to_source["upc"], "UPC/PLU")
        self.assertEqual(resolution.field_to_source["description"], "Item Description")
        self.assertEqual(resolution.field_to_source["size"], "Unit Size")

    def test_map_row_projects_logical_fields(self) -> None:
        resolution = self.mapper.resolve_mapping(["UPC", "Category", "Brand"])

        mapped = self.mapper.map_row(
            raw_row={"UPC": "036000291452", "Category": "Milk", "Brand": None},
            mapping=resolution,
        )

        self.assertEqual(mapped, {"upc": "036000291452", "category": "Milk", "brand": None})

    def test_map_row_without_mapping_uses_per_row_lookup(self) -> None:
        mapped = self.mapper.map_row(raw_row={"upc code": "036000291452"})
        self.assertEqual(mapped["upc"], "036000291452")
        self.assertIsNone(mapped["category"])

    def test_unknown_logical_fields_ignored(self) -> None:
        mapper = SchemaMapper({"upc": ("UPC",), "price": ("Price",)})
        self.assertEqual(set(mapper.aliases), {"upc"})


class TestLookupField(unittest.TestCase):
    def test_skips_blank_values(self) -> None:
        row = {"Description": "  ", "Product": "Whole milk"}
        self.assertEqual(lookup_field(row, ("Description", "Product")), "Whole milk")

    def test_falls_back_to_normalized_keys(self) -> None:
        self.assertEqual(lookup_field({"brand_name": "Kix"}, ("Brand Name",)), "Kix")

    def test_returns_none_when_absent(self) -> None:
        self.assertIsNone(lookup_field({"Other": 1}, ("Brand",)))

    def test_normalize_header(self) -> None:
        self.assertEqual(normalize_header(" UPC/PLU "), "upcplu")


if __name__ == "__main__":
    unittest.main()
