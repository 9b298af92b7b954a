"""Tests for namespace merging."""

import pytest

from nodeflow.namespace import Contribution, merge_outputs, slugify, snapshot


def test_slugify():
    assert slugify("Send Email") == "send_email"
    assert slugify("  Fetch   Order\tData ") == "fetch_order_data"


def test_output_is_stored_under_id_slug_and_spread_keys():
    merged = merge_outputs(
        {"trigger": {"amount": 5}},
        [Contribution("node-1", "Fetch Order", {"order": {"id": 7}})],
    )
    assert merged["node-1"] == {"order": {"id": 7}}
    assert merged["fetch_order"] == {"order": {"id": 7}}
    assert merged["order"] == {"id": 7}
    assert merged["trigger"] == {"amount": 5}


def test_later_contribution_wins_and_spread_shadows_ids():
    merged = merge_outputs(
        {},
        [
            Contribution("a", "First", {"value": 1, "b": "from-a"}),
            Contribution("b", "Second", {"value": 2}),
        ],
    )
    assert merged["value"] == 2
    # node b's id key is written after node a spread its "b" key
    assert merged["b"] == {"value": 2}


def test_reserved_keys_are_not_spread():
    merged = merge_outputs(
        {}, [Contribution("cond", "Check", {"conditionMet": True, "__branch": "true"})]
    )
    assert merged["cond"]["__branch"] == "true"
    assert "__branch" not in merged
    assert merged["conditionMet"] is True


def test_unspread_contribution_only_uses_id_and_slug():
    merged = merge_outputs(
        {}, [Contribution("f", "Failing Step", {"message": "boom"}, spread=False)]
    )
    assert merged == {"f": {"message": "boom"}, "failing_step": {"message": "boom"}}


def test_extra_entries_are_written_first():
    merged = merge_outputs(
        {"error": "old"},
        [Contribution("n", "N", {"error": "from-node"})],
        extra={"error": "injected"},
    )
    assert merged["error"] == "from-node"


def test_merge_returns_a_new_mapping():
    namespace = {"trigger": {}}
    merge_outputs(namespace, [Contribution("n", "N", {"x": 1})])
    assert namespace == {"trigger": {}}


def test_snapshot_is_read_only():
    view = snapshot({"a": 1})
    with pytest.raises(TypeError):
        view["a"] = 2
