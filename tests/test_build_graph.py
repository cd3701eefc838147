from timeline_engine.core.config.settings import merged_settings
from timeline_engine.core.graph.build_graph import (
    build_graph,
    normalize_status,
    work_items_from_records,
)
from timeline_engine.core.io.contracts import ItemRecord, LinkRecord
from timeline_engine.core.model import DependencyType


def _items(*ids, duration=1.0):
    items, _ = work_items_from_records([ItemRecord(id=i, title=i, estimated_duration_days=duration) for i in ids])
    return items


def _codes(graph):
    return [w.code for w in graph.warnings]


def test_normalize_status():
    assert normalize_status(None) == "open"
    assert normalize_status("Submitted") == "open"
    assert normalize_status("In Progress") == "in-progress"
    assert normalize_status("in_review") == "in-progress"
    assert normalize_status("Fixed") == "done"
    assert normalize_status("Won't fix") == "done"
    assert normalize_status("Parked") == "other"


def test_normalize_status_rejects_negated_done_words():
    assert normalize_status("Incomplete") == "open"
    assert normalize_status("Unresolved") == "open"
    assert normalize_status("not done") == "open"
    assert normalize_status("Non-complete") == "open"
    assert normalize_status("Reopened") == "open"
    assert normalize_status("Closed") == "done"
    assert normalize_status("Completed") == "done"
    assert normalize_status("Renewed") == "other"


def test_work_items_defaults_and_duplicates():
    items, warnings = work_items_from_records(
        [
            ItemRecord(id="A", title="a"),
            ItemRecord(id="B", title="b", estimated_duration_days=-2),
            ItemRecord(id="A", title="again"),
        ],
        merged_settings({"default_duration_days": 2.0}),
    )
    assert [(it.id, it.estimated_duration_days) for it in items] == [("A", 2.0), ("B", 2.0)]
    assert items[0].title == "a"
    assert [w.code for w in warnings] == ["W_INVALID_DURATION", "W_DUPLICATE_ITEM"]


def test_build_graph_adjacency_both_directions():
    graph = build_graph(
        _items("A", "B", "C"),
        [LinkRecord("A", "B", "FS"), LinkRecord("A", "C", "SS", lag_days=2)],
    )
    assert graph.node_ids == ["A", "B", "C"]
    assert [d.target_id for d in graph.successors["A"]] == ["B", "C"]
    assert [d.source_id for d in graph.predecessors["C"]] == ["A"]
    assert graph.predecessors["C"][0].lag_days == 2.0
    assert graph.warnings == []


def test_reversed_labels_swap_endpoints():
    graph = build_graph(
        _items("A", "B", "P", "K"),
        [
            LinkRecord("B", "A", "depends on"),
            LinkRecord("K", "P", "subtask of"),
        ],
    )
    by_type = {d.type: d for d in graph.dependencies}
    dep = by_type[DependencyType.DEPENDS_ON]
    assert (dep.source_id, dep.target_id) == ("A", "B")
    sub = by_type[DependencyType.SUBTASK]
    assert (sub.source_id, sub.target_id) == ("P", "K")


def test_missing_label_uses_configured_default():
    graph = build_graph(_items("A", "B"), [LinkRecord("A", "B")], merged_settings({"default_link_type": "SS"}))
    assert graph.dependencies[0].type is DependencyType.SS


def test_problem_links_are_dropped_with_warnings():
    graph = build_graph(
        _items("A", "B"),
        [
            LinkRecord("A", "B", "FS"),
            LinkRecord("A", "B", "finish-to-start"),
            LinkRecord("A", "GHOST", "FS"),
            LinkRecord("A", "A", "FS"),
            LinkRecord("B", "A", "mystery"),
        ],
    )
    assert _codes(graph) == [
        "W_DUPLICATE_EDGE",
        "W_DANGLING_REFERENCE",
        "W_SELF_LOOP",
        "W_UNKNOWN_LINK_TYPE",
    ]
    assert [(d.source_id, d.target_id, d.type) for d in graph.dependencies] == [
        ("A", "B", DependencyType.FS),
        ("B", "A", DependencyType.RELATED),
    ]
    # unknown types never schedule
    assert graph.scheduling_successors("B") == []


def test_same_pair_different_types_are_kept():
    graph = build_graph(_items("A", "B"), [LinkRecord("A", "B", "FS"), LinkRecord("A", "B", "relates to")])
    assert len(graph.dependencies) == 2
    assert len(graph.scheduling_successors("A")) == 1


def test_soft_constraint_is_preserved():
    graph = build_graph(_items("A", "B"), [LinkRecord("A", "B", "FS", constraint="soft")])
    assert graph.dependencies[0].constraint == "soft"
