import pytest

from nodeflow.definitions import load_workflow_file, workflow_from_dict


def test_connection_spellings_are_equivalent():
    wf = workflow_from_dict(
        {
            "id": "wf",
            "userId": "u-9",
            "nodes": [{"id": "a", "type": "MANUAL_TRIGGER"}, {"id": "b", "type": "SET_FIELDS"}],
            "connections": [
                {"from": "a", "to": "b"},
                {"id": "c2", "fromNodeId": "a", "toNodeId": "b", "fromOutput": "true"},
                {"from_node_id": "a", "to_node_id": "b", "to_input": "extra"},
            ],
        }
    )

    assert wf.name == "wf"
    assert wf.user_id == "u-9"
    assert wf.node("b").name == "b"
    assert [(c.from_node_id, c.from_output, c.to_node_id, c.to_input) for c in wf.connections] == [
        ("a", "main", "b", "main"),
        ("a", "true", "b", "main"),
        ("a", "main", "b", "extra"),
    ]
    assert wf.connections[1].id == "c2"
    assert all(c.workflow_id == "wf" for c in wf.connections)


def test_missing_id_is_rejected():
    with pytest.raises(ValueError):
        workflow_from_dict({"nodes": []})


def test_load_json_file(tmp_path):
    path = tmp_path / "wf.json"
    path.write_text('{"id": "json-wf", "nodes": [{"id": "t", "type": "WEBHOOK", "data": {"k": 1}}]}')

    wf = load_workflow_file(path)
    assert wf.id == "json-wf"
    assert wf.nodes[0].data == {"k": 1}


def test_non_mapping_file_is_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_workflow_file(path)
