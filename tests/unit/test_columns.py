from __future__ import annotations

from project_import.excel.columns import (
    COLUMN_MAPPING,
    TEMPLATE_EXAMPLE_ROW,
    TEMPLATE_HEADERS,
    map_headers,
)


def test_map_headers_drops_unknown_columns():
    assert map_headers(["ID", " Title ", "Comentarios", 5, None]) == ["external_id", "title", None, None, None]


def test_map_headers_custom_mapping():
    assert map_headers(["A", "B"], {"A": "a"}) == ["a", None]


def test_template_layout_matches_mapping():
    assert TEMPLATE_HEADERS == list(COLUMN_MAPPING)
    assert len(TEMPLATE_EXAMPLE_ROW) == len(TEMPLATE_HEADERS)
    assert len(set(COLUMN_MAPPING.values())) == len(COLUMN_MAPPING)

