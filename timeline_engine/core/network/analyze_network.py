from __future__ import annotations

import logging
import math

import networkx as nx

from timeline_engine.core.config.settings import DEFAULT_SETTINGS, EngineSettings, HealthWeights
from timeline_engine.core.model import Bottleneck, Cluster, CycleReport, Graph, NetworkAnalysis

logger = logging.getLogger(__name__)

EPS_HEADROOM = 1e-9


def analyze_network(
    graph: Graph,
    cycles: CycleReport,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> NetworkAnalysis:
    """Topology metrics over every edge type: density, degrees, bottlenecks, clusters, health."""
    digraph = to_networkx(graph)
    n = digraph.number_of_nodes()
    pair_count = digraph.number_of_edges()  # distinct ordered pairs

    density = pair_count / (n * (n - 1)) if n > 1 else 0.0
    density = min(1.0, density)

    in_deg = {nid: 0 for nid in graph.items_by_id}
    out_deg = {nid: 0 for nid in graph.items_by_id}
    for dep in graph.dependencies:
        out_deg[dep.source_id] += 1
        in_deg[dep.target_id] += 1
    average_degree = (2 * len(graph.dependencies) / n) if n else 0.0

    bottlenecks = find_bottlenecks(in_deg, out_deg, settings)
    clusters, clusters_truncated = find_clusters(digraph, settings.max_reported_clusters)

    score = health_score(
        node_count=n,
        cycle_count=len(cycles.cycles),
        bottleneck_count=len(bottlenecks),
        density=density,
        weights=settings.health,
    )

    logger.info(
        "Network: %d nodes, %d edges, density %.4f, %d bottlenecks, %d clusters, health %.4f",
        n,
        len(graph.dependencies),
        density,
        len(bottlenecks),
        len(clusters),
        score,
    )

    return NetworkAnalysis(
        node_count=n,
        edge_count=len(graph.dependencies),
        density=round(density, 6),
        average_degree=round(average_degree, 4),
        bottlenecks=bottlenecks,
        clusters=clusters,
        circular_dependencies=[list(c) for c in cycles.cycles],
        health_score=score,
        health_rating=health_rating(score),
        truncated=cycles.truncated or clusters_truncated,
        clusters_truncated=clusters_truncated,
    )


def to_networkx(graph: Graph) -> nx.DiGraph:
    g = nx.DiGraph()
    for nid in graph.node_ids:
        g.add_node(nid)
    for dep in graph.dependencies:
        # Parallel edges of different types collapse onto one ordered pair.
        g.add_edge(dep.source_id, dep.target_id)
    return g


def find_bottlenecks(
    in_deg: dict[str, int],
    out_deg: dict[str, int],
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> list[Bottleneck]:
    """Rank nodes by in+out degree; keep the top slice above the degree threshold."""
    n = len(in_deg)
    if n == 0:
        return []
    mean = sum(in_deg[k] + out_deg[k] for k in in_deg) / n
    limit = max(settings.bottleneck_min_count, math.ceil(settings.bottleneck_fraction * n))

    candidates = [
        Bottleneck(id=k, in_degree=in_deg[k], out_degree=out_deg[k])
        for k in in_deg
        if in_deg[k] + out_deg[k] >= settings.bottleneck_min_degree
        and in_deg[k] + out_deg[k] > mean
    ]
    candidates.sort(key=lambda b: (-b.degree, b.id))
    return candidates[:limit]


def find_clusters(digraph: nx.DiGraph, max_clusters: int = 100) -> tuple[list[Cluster], bool]:
    """Weakly connected components with >= 2 nodes, largest first."""
    clusters: list[Cluster] = []
    for component in nx.weakly_connected_components(digraph):
        if len(component) < 2:
            continue
        ids = sorted(component)
        size = len(ids)
        internal = digraph.subgraph(ids).number_of_edges()
        cohesion = internal / (size * (size - 1))
        clusters.append(Cluster(ids=ids, cohesion=round(cohesion, 6)))

    clusters.sort(key=lambda c: (-len(c.ids), c.ids[0]))
    truncated = len(clusters) > max_clusters
    return clusters[:max_clusters], truncated


def health_score(
    *,
    node_count: int,
    cycle_count: int,
    bottleneck_count: int,
    density: float,
    weights: HealthWeights = HealthWeights(),
) -> float:
    """Composite in [0, 1]: start at 1.0 and subtract weighted penalties.

    - cycles: cycle_count / node_count (capped at 1)
    - bottlenecks: share of bottleneck nodes above the expected baseline
    - density: distance outside the ideal band, relative to the band edge
    """
    if node_count == 0:
        return 1.0

    cycle_penalty = min(1.0, cycle_count / node_count)

    ratio = bottleneck_count / node_count
    excess = max(0.0, ratio - weights.bottleneck_baseline)
    headroom = max(EPS_HEADROOM, 1.0 - weights.bottleneck_baseline)
    bottleneck_penalty = min(1.0, excess / headroom)

    density_penalty = 0.0
    if node_count > 1:
        lo, hi = weights.ideal_density_min, weights.ideal_density_max
        if density < lo and lo > 0:
            density_penalty = (lo - density) / lo
        elif density > hi and hi < 1.0:
            density_penalty = (density - hi) / (1.0 - hi)
        density_penalty = min(1.0, density_penalty)

    score = (
        1.0
        - weights.cycle * cycle_penalty
        - weights.bottleneck * bottleneck_penalty
        - weights.density * density_penalty
    )
    return round(min(1.0, max(0.0, score)), 4)


def health_rating(score: float) -> str:
    if score >= 0.8:
        return "Excellent"
    if score >= 0.6:
        return "Good"
    if score >= 0.4:
        return "Fair"
    return "Poor"
