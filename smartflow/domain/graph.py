import math
import networkx as nx
from typing import Dict, Any, List, Tuple

class RoadNetwork:
    def __init__(self):
        self.graph = nx.DiGraph()

    def add_intersection(self, intersection_id: str, pos: Tuple[float, float]):
        self.graph.add_node(intersection_id, pos=pos, type="intersection")

    def remove_intersection(self, intersection_id: str):
        if intersection_id in self.graph:
            self.graph.remove_node(intersection_id)

    def add_road(self, u: str, v: str, length: float = None, lanes: int = 1, geometry: Any = None):
        if length is None:
            length = self.distance(u, v)
        self.graph.add_edge(u, v, length=length, lanes=lanes, geometry=geometry)

    def connect(self, u: str, v: str):
        """Adds a two-way road between two intersections."""
        self.add_road(u, v)
        self.add_road(v, u)

    def get_edge_data(self, u: str, v: str) -> Dict[str, Any]:
        return self.graph.get_edge_data(u, v)

    def get_node_pos(self, u: str) -> Tuple[float, float]:
        return self.graph.nodes[u].get('pos', (0.0, 0.0))

    def set_node_pos(self, u: str, pos: Tuple[float, float]):
        if u in self.graph:
            self.graph.nodes[u]['pos'] = pos

    def neighbors(self, u: str) -> List[str]:
        if u not in self.graph:
            return []
        return list(self.graph.successors(u))

    def edges(self) -> List[Tuple[str, str]]:
        return list(self.graph.edges())

    def distance(self, u: str, v: str) -> float:
        ux, uy = self.get_node_pos(u)
        vx, vy = self.get_node_pos(v)
        return math.hypot(vx - ux, vy - uy)

    def clear(self):
        self.graph.clear()

    def __contains__(self, u: str) -> bool:
        return u in self.graph

    def __len__(self) -> int:
        return self.graph.number_of_nodes()
