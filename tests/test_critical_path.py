import pytest

from timeline_engine.core.graph.build_graph import build_graph, work_items_from_records
from timeline_engine.core.graph.cycles import detect_cycles
from timeline_engine.core.io.contracts import ItemRecord, LinkRecord
from timeline_engine.core.model import DependencyType
from timeline_engine.core.schedule.critical_path import compute_critical_path


def _graph(durations, links):
    items, _ = work_items_from_records(
        [ItemRecord(id=i, title=i, estimated_duration_days=d) for i, d in durations.items()]
    )
    return build_graph(items, [LinkRecord(*link) for link in links])


def _cpm(durations, links):
    graph = _graph(durations, links)
    return compute_critical_path(graph, detect_cycles(graph))


def test_linear_chain():
    cp = _cpm({"A": 3, "B": 2, "C": 4}, [("A", "B", "FS"), ("B", "C", "FS")])
    assert cp.path == ["A", "B", "C"]
    assert cp.total_duration_days == 9
    assert cp.slack == {"A": 0, "B": 0, "C": 0}
    assert all(cp.is_critical.values())
    assert cp.schedule["C"].earliest_start == 5
    assert cp.schedule["C"].earliest_finish == 9


def test_parallel_branch_gets_slack():
    cp = _cpm(
        {"A": 2, "B": 5, "C": 1, "D": 2},
        [("A", "B", "FS"), ("A", "C", "FS"), ("B", "D", "FS"), ("C", "D", "FS")],
    )
    assert cp.path == ["A", "B", "D"]
    assert cp.total_duration_days == 9
    assert cp.slack["C"] == 4
    assert cp.is_critical["C"] is False
    assert cp.schedule["C"].latest_start == 6


def test_removing_a_non_critical_edge_keeps_the_total():
    cp = _cpm(
        {"A": 2, "B": 5, "C": 1, "D": 2},
        [("A", "B", "FS"), ("B", "D", "FS"), ("C", "D", "FS")],
    )
    assert cp.total_duration_days == 9
    assert cp.path == ["A", "B", "D"]
    assert cp.slack["C"] == 6


def test_fs_lag_extends_the_path():
    cp = _cpm({"A": 2, "B": 2}, [("A", "B", "FS", 3)])
    assert cp.total_duration_days == 7
    assert cp.schedule["B"].earliest_start == 5


def test_start_to_start():
    cp = _cpm({"A": 4, "B": 2}, [("A", "B", "SS", 1)])
    assert cp.schedule["B"].earliest_start == 1
    assert cp.total_duration_days == 4
    assert cp.path == ["A"]
    assert cp.slack["B"] == 1


def test_finish_to_finish():
    cp = _cpm({"A": 4, "B": 2}, [("A", "B", "FF")])
    assert cp.schedule["B"].earliest_start == 2
    assert cp.schedule["B"].earliest_finish == 4
    assert cp.slack == {"A": 0, "B": 0}
    assert cp.path == ["A", "B"]


def test_start_to_finish_is_floored_at_zero():
    cp = _cpm({"A": 3, "B": 2}, [("A", "B", "SF", 1)])
    # ES(B) >= ES(A) + 1 - d(B) = -1, floored at 0
    assert cp.schedule["B"].earliest_start == 0
    assert cp.total_duration_days == 3


def test_blocks_and_depends_on_schedule_as_finish_to_start():
    cp = _cpm({"A": 1, "B": 2, "C": 3}, [("A", "B", "blocks"), ("C", "B", "depends on")])
    assert cp.path == ["A", "B", "C"]
    assert cp.total_duration_days == 6


def test_non_scheduling_links_give_empty_result():
    cp = _cpm({"A": 1, "B": 1}, [("A", "B", "relates to")])
    assert cp.path == []
    assert cp.total_duration_days == 0
    assert cp.slack == {}


def test_empty_graph():
    cp = _cpm({}, [])
    assert cp.path == [] and cp.total_duration_days == 0 and cp.slack == {}


def test_cyclic_nodes_are_excluded():
    cp = _cpm(
        {"A": 1, "B": 1, "C": 2, "D": 3},
        [("A", "B", "FS"), ("B", "A", "FS"), ("C", "D", "FS"), ("B", "C", "FS")],
    )
    assert cp.excluded == ["A", "B"]
    assert cp.path == ["C", "D"]
    assert cp.total_duration_days == 5
    assert "A" not in cp.slack


def test_only_cycles_gives_empty_result():
    cp = _cpm({"A": 1, "B": 1}, [("A", "B", "FS"), ("B", "A", "FS")])
    assert cp.path == []
    assert cp.excluded == ["A", "B"]


def test_tie_break_prefers_lexicographically_smallest_path():
    cp = _cpm(
        {"S": 1, "P": 2, "Q": 2, "E": 1},
        [("S", "Q", "FS"), ("S", "P", "FS"), ("Q", "E", "FS"), ("P", "E", "FS")],
    )
    assert cp.path == ["S", "P", "E"]
    assert cp.is_critical["Q"] is True


@pytest.mark.parametrize("order", [0, 1])
def test_result_does_not_depend_on_link_order(order):
    links = [("A", "B", "FS"), ("A", "C", "FS"), ("B", "D", "FS"), ("C", "D", "FS")]
    if order:
        links = list(reversed(links))
    cp = _cpm({"A": 1, "B": 2, "C": 2, "D": 1}, links)
    assert cp.path == ["A", "B", "D"]
    assert cp.total_duration_days == 4


def _binds(dep, src, tgt):
    kind = dep.type.scheduling_kind
    if kind is DependencyType.SS:
        return abs(tgt.earliest_start - (src.earliest_start + dep.lag_days)) < 1e-9
    if kind is DependencyType.FF:
        return abs(tgt.earliest_finish - (src.earliest_finish + dep.lag_days)) < 1e-9
    if kind is DependencyType.SF:
        return abs(tgt.earliest_finish - (src.earliest_start + dep.lag_days)) < 1e-9
    return abs(tgt.earliest_start - (src.earliest_finish + dep.lag_days)) < 1e-9


def _on_full_length_path(graph, cp, nid):
    sched = cp.schedule

    def reaches_start(n):
        if sched[n].earliest_start == 0:
            return True
        return any(
            d.type.is_scheduling and d.source_id in sched and _binds(d, sched[d.source_id], sched[n])
            and reaches_start(d.source_id)
            for d in graph.predecessors.get(n, [])
        )

    def reaches_end(n):
        if abs(sched[n].earliest_finish - cp.total_duration_days) < 1e-9:
            return True
        return any(
            d.type.is_scheduling and d.target_id in sched and _binds(d, sched[n], sched[d.target_id])
            and reaches_end(d.target_id)
            for d in graph.successors.get(n, [])
        )

    return reaches_start(nid) and reaches_end(nid)


@pytest.mark.parametrize(
    "durations,links,slack,path,total",
    [
        (
            {"A": 3, "B": 2, "C": 4, "D": 1},
            [("A", "B", "SS", 1), ("A", "C", "FS"), ("B", "D", "FF"), ("C", "D", "SF", 2)],
            {"A": 0, "B": 4, "C": 0, "D": 2},
            ["A", "C"],
            7,
        ),
        (
            {"A": 2, "B": 5, "C": 1, "D": 3},
            [("A", "B", "FF", 1), ("B", "C", "SF"), ("A", "D", "SS"), ("D", "C", "FS")],
            {"A": 1, "B": 0, "C": 1, "D": 1},
            ["B"],
            5,
        ),
        (
            {"A": 4, "B": 4, "C": 2},
            [("A", "B", "SS"), ("A", "C", "FF"), ("B", "C", "FF", 1)],
            {"A": 0, "B": 0, "C": 0},
            ["A", "B", "C"],
            5,
        ),
    ],
)
def test_zero_slack_nodes_lie_on_a_full_length_path(durations, links, slack, path, total):
    graph = _graph(durations, links)
    cp = compute_critical_path(graph, detect_cycles(graph))

    assert cp.slack == slack
    assert cp.path == path
    assert cp.total_duration_days == total
    assert all(s >= 0 for s in cp.slack.values())
    for nid, s in cp.slack.items():
        if s == 0:
            assert _on_full_length_path(graph, cp, nid)
