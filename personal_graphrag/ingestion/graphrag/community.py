"""Hierarchical Louvain community detection over the entity graph."""

import logging
import random
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

import networkx as nx

from personal_graphrag.models import GraphEntity, GraphRelationship

logger = logging.getLogger(__name__)

# (node, target community label, modularity gain)
MoveCallback = Callable[[str, str, float], None]


@dataclass
class CommunityDetectionConfig:
    """Louvain parameters."""

    resolution: float = 1.0
    min_improvement: float = 0.001
    max_iterations: int = 100
    max_depth: int = 2
    min_community_size: int = 2
    refine: bool = True  # split communities that are not connected
    random_seed: int | None = None


@dataclass
class DetectedCommunity:
    """Community produced by detection; level 0 is the finest."""

    id: str
    level: int
    entity_ids: frozenset[str]
    modularity: float = 0.0
    parent_community_id: str | None = None
    child_community_ids: list[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.entity_ids)


@dataclass
class CommunityDetectionResult:
    """Communities of every level plus hierarchy bookkeeping."""

    levels: list[list[DetectedCommunity]] = field(default_factory=list)
    entity_to_community: dict[str, str] = field(default_factory=dict)
    overall_modularity: float = 0.0

    @property
    def communities(self) -> list[DetectedCommunity]:
        return [c for level in self.levels for c in level]

    @property
    def hierarchy_depth(self) -> int:
        return len(self.levels)

    def get_level(self, level: int) -> list[DetectedCommunity]:
        if 0 <= level < len(self.levels):
            return list(self.levels[level])
        return []


class LouvainCommunityDetector:
    """Detect communities by greedy modularity optimisation.

    Each level runs a local moving phase, refines the partition so that
    every community is connected (as Leiden does), keeps communities of at
    least ``min_community_size`` entities, then aggregates them into the
    nodes of the next, coarser level. The graph of every level is an undirected
    weighted ``networkx.Graph``; parallel relationships sum their weights.
    """

    def __init__(
        self,
        config: CommunityDetectionConfig | None = None,
        on_move: MoveCallback | None = None,
    ):
        """Initialize detector.

        Args:
            config: Louvain parameters
            on_move: Called for every accepted local move, useful for tracing
        """
        self.config = config or CommunityDetectionConfig()
        self.on_move = on_move

    def detect_communities(
        self,
        entities: list[GraphEntity],
        relationships: list[GraphRelationship],
    ) -> CommunityDetectionResult:
        """Run hierarchical detection.

        Args:
            entities: Graph nodes
            relationships: Edges; those with an endpoint outside ``entities``
                are ignored, the rest are treated as undirected

        Returns:
            Result with levels ordered finest first
        """
        result = CommunityDetectionResult()
        if not entities:
            return result

        cfg = self.config
        rng = random.Random(cfg.random_seed)

        graph = build_entity_graph(entities, relationships)
        mapping: Mapping[str, frozenset[str]] = MappingProxyType(
            {node: frozenset([node]) for node in graph}
        )

        for level in range(cfg.max_depth):
            assignment = self._local_phase(graph, rng)
            if cfg.refine:
                assignment = refine_partition(graph, assignment)

            groups: dict[str, list[str]] = defaultdict(list)
            for node, label in assignment.items():
                groups[label].append(node)

            if level == 0:
                result.overall_modularity = _partition_modularity(
                    graph, groups.values(), cfg.resolution
                )

            communities = self._extract_communities(graph, groups, mapping, level)
            kept = {
                label: c for label, c in communities.items() if c.size >= cfg.min_community_size
            }
            survivors = list(kept.values())

            if not survivors:
                logger.debug(f"Level {level}: no community reached the minimum size")
                break

            if level > 0:
                _link_levels(result.levels[-1], survivors)
            result.levels.append(survivors)

            if len(groups) == graph.number_of_nodes() or len(groups) <= 1 or len(survivors) <= 1:
                break

            graph, mapping = _aggregate(graph, assignment, kept)

        for level_communities in result.levels:
            for community in level_communities:
                for entity_id in community.entity_ids:
                    result.entity_to_community.setdefault(entity_id, community.id)

        logger.info(
            f"Detected {len(result.communities)} communities across "
            f"{result.hierarchy_depth} levels (modularity={result.overall_modularity:.4f})"
        )
        return result

    def _local_phase(self, graph: nx.Graph, rng: random.Random) -> dict[str, str]:
        """Move nodes between neighbouring communities until no move helps."""
        cfg = self.config
        degree = dict(graph.degree(weight="weight"))
        m2 = sum(degree.values())
        community = {node: node for node in graph}
        if m2 == 0:
            return community

        sigma_tot = dict(degree)
        nodes = sorted(graph)

        for _ in range(cfg.max_iterations):
            order = list(nodes)
            rng.shuffle(order)
            moved = False

            for node in order:
                own = community[node]
                ki = degree[node]

                links: dict[str, float] = defaultdict(float)
                for neighbour, data in graph[node].items():
                    if neighbour != node:
                        links[community[neighbour]] += data["weight"]

                sigma_tot[own] -= ki

                def gain(target: str) -> float:
                    return links.get(target, 0.0) / m2 - (
                        cfg.resolution * sigma_tot[target] * ki / (m2 * m2)
                    )

                baseline = max(0.0, gain(own))
                best_target, best_gain = own, baseline
                for target in sorted(links):
                    if target == own:
                        continue
                    candidate = gain(target)
                    if candidate > best_gain:
                        best_target, best_gain = target, candidate

                if best_target != own and best_gain > baseline + cfg.min_improvement:
                    community[node] = best_target
                    sigma_tot[best_target] += ki
                    moved = True
                    if self.on_move is not None:
                        self.on_move(node, best_target, best_gain)
                else:
                    sigma_tot[own] += ki

            if not moved:
                break

        return community

    def _extract_communities(
        self,
        graph: nx.Graph,
        groups: dict[str, list[str]],
        mapping: Mapping[str, frozenset[str]],
        level: int,
    ) -> dict[str, DetectedCommunity]:
        """Community per local-phase label, numbered by smallest member node."""
        ordered = sorted(groups, key=lambda label: min(groups[label]))
        communities = {}
        for index, label in enumerate(ordered):
            members = groups[label]
            entity_ids = frozenset().union(*(mapping[node] for node in members))
            communities[label] = DetectedCommunity(
                id=f"community_{level}_{index}",
                level=level,
                entity_ids=entity_ids,
                modularity=_community_modularity(graph, members, self.config.resolution),
            )
        return communities


def build_entity_graph(
    entities: list[GraphEntity],
    relationships: list[GraphRelationship],
) -> nx.Graph:
    """Undirected weighted graph of the entities; dangling edges are dropped."""
    graph = nx.Graph()
    graph.add_nodes_from(entity.id for entity in entities)
    for rel in relationships:
        if rel.source_id not in graph or rel.target_id not in graph:
            continue
        if graph.has_edge(rel.source_id, rel.target_id):
            graph[rel.source_id][rel.target_id]["weight"] += rel.weight
        else:
            graph.add_edge(rel.source_id, rel.target_id, weight=rel.weight)
    return graph


def _disconnected(graph: nx.Graph, assignment: dict[str, str]):
    """(label, pieces) for each community that is not connected, largest piece first."""
    groups: dict[str, list[str]] = defaultdict(list)
    for node, label in assignment.items():
        groups[label].append(node)
    for label in sorted(groups):
        members = groups[label]
        if len(members) < 2:
            continue
        pieces = sorted(
            nx.connected_components(graph.subgraph(members)),
            key=lambda piece: (-len(piece), min(piece)),
        )
        if len(pieces) > 1:
            yield label, pieces


def refine_partition(graph: nx.Graph, assignment: dict[str, str]) -> dict[str, str]:
    """Make every community a connected subgraph.

    The largest connected piece of a community keeps its label. Each smaller
    piece joins the neighbouring community it shares the most edge weight
    with. A piece left disconnected after that, because it has no
    neighbours or its neighbour moved too, becomes a community of its own.
    """
    refined = dict(assignment)
    moved = 0
    for _, pieces in list(_disconnected(graph, refined)):
        for piece in pieces[1:]:
            links: dict[str, float] = defaultdict(float)
            for node in piece:
                for neighbour, data in graph[node].items():
                    if neighbour not in piece:
                        links[refined[neighbour]] += data["weight"]
            if links:
                target = max(sorted(links), key=links.get)
                for node in piece:
                    refined[node] = target
                moved += 1

    for label, pieces in list(_disconnected(graph, refined)):
        for index, piece in enumerate(pieces[1:], start=1):
            for node in piece:
                refined[node] = f"{label}#{index}"
            moved += 1

    if moved:
        logger.debug(f"Refinement reassigned {moved} disconnected pieces")
    return refined


def _community_modularity(graph: nx.Graph, members: list[str], resolution: float) -> float:
    m = graph.size(weight="weight")
    if m == 0:
        return 0.0
    sigma_in = graph.subgraph(members).size(weight="weight")
    sigma_tot = sum(degree for _, degree in graph.degree(members, weight="weight"))
    return sigma_in / m - resolution * (sigma_tot / (2 * m)) ** 2


def _partition_modularity(graph: nx.Graph, groups, resolution: float) -> float:
    if graph.size(weight="weight") == 0:
        return 0.0
    return nx.community.modularity(
        graph, [set(members) for members in groups], weight="weight", resolution=resolution
    )


def _aggregate(
    graph: nx.Graph,
    assignment: dict[str, str],
    survivors: dict[str, DetectedCommunity],
) -> tuple[nx.Graph, Mapping[str, frozenset[str]]]:
    """Collapse surviving communities into nodes of the next level.

    ``survivors`` is keyed by local-phase label. Intra-community edges and
    edges touching dropped communities disappear.
    """
    aggregated = nx.Graph()
    aggregated.add_nodes_from(c.id for c in survivors.values())
    for node, neighbour, weight in graph.edges(data="weight"):
        source = survivors.get(assignment[node])
        target = survivors.get(assignment[neighbour])
        if source is None or target is None or source.id == target.id:
            continue
        if aggregated.has_edge(source.id, target.id):
            aggregated[source.id][target.id]["weight"] += weight
        else:
            aggregated.add_edge(source.id, target.id, weight=weight)

    mapping = MappingProxyType({c.id: c.entity_ids for c in survivors.values()})
    return aggregated, mapping


def _link_levels(children: list[DetectedCommunity], parents: list[DetectedCommunity]) -> None:
    for parent in parents:
        for child in children:
            if child.entity_ids <= parent.entity_ids:
                parent.child_community_ids.append(child.id)
                child.parent_community_id = parent.id
