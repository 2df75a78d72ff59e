"""Property-based tests for content hashing and row categorization."""

from __future__ import annotations

from typing import Any

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from tablesync.gateway.base import Row
from tablesync.services.diff_service import categorize, content_hash

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_SCALAR = st.none() | st.booleans() | st.integers() | st.text(max_size=8)
_JSON = st.recursive(
    _SCALAR,
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=5), children, max_size=4),
    max_leaves=20,
)
_ROW_ID = st.text(alphabet="abcdef0123456789", min_size=1, max_size=3)


def _reorder(value: Any, draw: st.DrawFn) -> Any:
    if isinstance(value, dict):
        keys = draw(st.permutations(list(value)))
        return {key: _reorder(value[key], draw) for key in keys}
    if isinstance(value, list):
        return [_reorder(item, draw) for item in value]
    return value


@st.composite
def _value_and_reordered(draw: st.DrawFn) -> tuple[Any, Any]:
    value = draw(_JSON)
    return value, _reorder(value, draw)


class TestContentHashProperties:
    @PROPERTY_SETTINGS
    @given(value=_JSON)
    def test_hash_is_deterministic(self, value: Any) -> None:
        assert content_hash(value) == content_hash(value)

    @PROPERTY_SETTINGS
    @given(pair=_value_and_reordered())
    def test_key_order_is_irrelevant(self, pair: tuple[Any, Any]) -> None:
        value, reordered = pair
        assert content_hash(value) == content_hash(reordered)


class TestCategorizeProperties:
    @PROPERTY_SETTINGS
    @given(
        source=st.dictionaries(_ROW_ID, _JSON, max_size=8),
        existing=st.dictionaries(_ROW_ID, _JSON, max_size=8),
    )
    def test_partitions_source_rows(
        self, source: dict[str, Any], existing: dict[str, Any]
    ) -> None:
        rows = [Row(id=row_id, data=data) for row_id, data in source.items()]
        result = categorize(rows, existing)

        assert len(result.to_create) + len(result.to_update) + result.skipped_count == len(rows)
        assert all(row.id not in existing for row in result.to_create)
        assert all(row.id in existing for row in result.to_update)

    @PROPERTY_SETTINGS
    @given(source=st.dictionaries(_ROW_ID, _JSON, max_size=8))
    def test_syncing_against_itself_skips_everything(self, source: dict[str, Any]) -> None:
        rows = [Row(id=row_id, data=data) for row_id, data in source.items()]
        result = categorize(rows, dict(source))

        assert result.skipped_count == len(rows)
