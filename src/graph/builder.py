"""Graph of objects and the collations they depend on."""
import logging
from typing import Any, Dict, Iterable, List, Optional

import networkx as nx
from networkx.readwrite import json_graph

from src.config import GRAPH_CONFIG, OBJECT_COLORS
from src.db.models import CollationDescriptor, ObjectDependencies, ObjectType

logger = logging.getLogger(__name__)


def collation_node_id(oid: int) -> str:
    return f"collation:{oid}"


def object_node_id(dep: ObjectDependencies) -> str:
    return f"{dep.obj.obj_type.value}:{dep.obj.qualified_name}"


class DependencyGraphBuilder:
    """Builds and visualizes object -> collation dependency graphs."""

    def __init__(self):
        """Initialize graph builder."""
        self.graph = nx.DiGraph()
        self.pos = None

    def build_graph(self, results: Iterable[ObjectDependencies],
                    collations: Iterable[CollationDescriptor] = ()) -> nx.DiGraph:
        """Build graph from scan results.

        Args:
            results: resolved objects; failed ones are kept as isolated nodes
            collations: optional descriptors used to label collation nodes

        Returns:
            The built graph
        """
        self.graph.clear()
        self.pos = None
        described = {coll.oid: coll for coll in collations}

        for dep in results:
            source_id = object_node_id(dep)
            self.graph.add_node(source_id,
                                obj_type=dep.obj.obj_type.value,
                                oid=dep.obj.oid,
                                label=dep.obj.qualified_name,
                                error=dep.error)

            for oid in dep.collations:
                target_id = collation_node_id(oid)
                if not self.graph.has_node(target_id):
                    coll = described.get(oid)
                    self.graph.add_node(target_id,
                                        obj_type=ObjectType.COLLATION.value,
                                        oid=oid,
                                        label=coll.name if coll else str(oid),
                                        version_mismatch=coll.version_mismatch if coll else False)
                self.graph.add_edge(source_id, target_id, relationship_type='depends_on')

        logger.debug("Graph has %d nodes and %d edges",
                     self.graph.number_of_nodes(), self.graph.number_of_edges())
        return self.graph

    def affected_objects(self, collation_oid: int) -> List[str]:
        """Objects whose behavior depends on the collation."""
        node_id = collation_node_id(collation_oid)
        if not self.graph.has_node(node_id):
            return []
        return sorted(self.graph.predecessors(node_id))

    def get_object_details(self, node_id: str) -> Optional[Dict[str, Any]]:
        """Get details of a specific node.

        Args:
            node_id: ID of the node to get details for

        Returns:
            Dictionary with node details, None for an unknown node
        """
        if not self.graph.has_node(node_id):
            return None
        attrs = self.graph.nodes[node_id]
        return {
            'id': node_id,
            'type': attrs['obj_type'],
            'label': attrs['label'],
            'incoming': sorted(self.graph.predecessors(node_id)),
            'outgoing': sorted(self.graph.successors(node_id)),
        }

    def to_json(self) -> Dict[str, Any]:
        """Node-link representation for the web client."""
        return json_graph.node_link_data(self.graph)

    def visualize(self, highlight_node: str = None):
        """Visualize the graph.

        Args:
            highlight_node: Node to highlight (optional)

        Returns:
            matplotlib figure
        """
        import matplotlib
        matplotlib.use('Agg')
        import matplotlib.pyplot as plt

        if self.pos is None:
            self.pos = nx.spring_layout(self.graph, seed=42)

        fig = plt.figure(figsize=(GRAPH_CONFIG['width'] / 100, GRAPH_CONFIG['height'] / 100))

        node_colors = []
        for node, attrs in self.graph.nodes(data=True):
            color = OBJECT_COLORS.get(attrs.get('obj_type'), 'lightblue')
            if highlight_node and node == highlight_node:
                color = 'red'
            elif attrs.get('version_mismatch'):
                color = 'orange'
            node_colors.append(color)

        nx.draw_networkx_nodes(self.graph, self.pos,
                               node_color=node_colors,
                               node_size=GRAPH_CONFIG['node_size'])
        nx.draw_networkx_edges(self.graph, self.pos,
                               edge_color='gray',
                               arrows=True,
                               arrowsize=GRAPH_CONFIG['arrow_size'])
        nx.draw_networkx_labels(self.graph, self.pos,
                                labels=nx.get_node_attributes(self.graph, 'label'),
                                font_size=GRAPH_CONFIG['font_size'])

        plt.title("Collation dependencies")
        plt.axis('off')
        plt.tight_layout()
        return fig

    def save(self, filename: str, highlight_node: str = None):
        """Render the graph into an image file."""
        import matplotlib.pyplot as plt

        fig = self.visualize(highlight_node)
        fig.savefig(filename)
        plt.close(fig)
