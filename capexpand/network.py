"""
This module contains the NetworkGraph: the nodes and assets of one period.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import numpy as np

from .components import Asset
from .core import PlausibilityError
from .elements import Edge, Node
from .structure import Interface

logger = logging.getLogger('capexpand')


class NetworkGraph(Interface):
    """
    The nodes and assets of one period.

    Edges are discovered through ``Asset.edges()`` and always returned sorted by ``label_full``,
    so every traversal of the graph is independent of the order nodes and assets were given in.

    Args:
        nodes: The balance nodes.
        assets: The assets connecting the nodes.
    """

    def __init__(self, nodes: Iterable[Node] = (), assets: Iterable[Asset] = ()):
        self.nodes: dict[str, Node] = {}
        self.assets: dict[str, Asset] = {}
        for node in nodes:
            self._add(self.nodes, node)
        for asset in assets:
            self._add(self.assets, asset)
        self._plausibility_checks()

    def _add(self, container: dict, element: Node | Asset) -> None:
        if element.label in self.nodes or element.label in self.assets:
            raise PlausibilityError(f'Label "{element.label}" is used more than once in the network')
        container[element.label] = element

    @property
    def edges(self) -> list[Edge]:
        return sorted(
            (edge for asset in self.assets.values() for edge in asset.edges()), key=lambda edge: edge.label_full
        )

    def edge(self, label_full: str) -> Edge:
        for edge in self.edges:
            if edge.label_full == label_full:
                return edge
        raise KeyError(f'No edge "{label_full}" in the network')

    def inflows(self, node: Node | str) -> list[Edge]:
        label = node if isinstance(node, str) else node.label
        return [edge for edge in self.edges if edge.end == label]

    def outflows(self, node: Node | str) -> list[Edge]:
        label = node if isinstance(node, str) else node.label
        return [edge for edge in self.edges if edge.start == label]

    def _plausibility_checks(self) -> None:
        for asset in self.assets.values():
            for edge in asset.edges():
                for endpoint in (edge.start, edge.end):
                    if endpoint not in self.nodes and endpoint != asset.label:
                        raise PlausibilityError(
                            f'Edge "{edge.label_full}" connects to "{endpoint}", '
                            f'which is neither a node of the network nor its asset'
                        )
        connected = {endpoint for edge in self.edges for endpoint in (edge.start, edge.end)}
        for node in self.nodes.values():
            if node.label in connected or node.allows_non_served:
                continue
            if np.any(np.asarray(node.demand, dtype=float) > 0):
                raise PlausibilityError(f'Node "{node.label}" has a demand, but nothing can supply it')
            logger.warning(f'Node "{node.label}" is not connected to any edge')

    def __repr__(self) -> str:
        return f'NetworkGraph(nodes={list(self.nodes)}, assets={list(self.assets)})'
