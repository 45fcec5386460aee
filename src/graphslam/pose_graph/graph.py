"""Pose graph container."""

from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Type

import numpy as np
import numpy.typing as npt

from .edge import Edge, EdgeType
from .node import PoseNode
from .pose import Pose, SE2Pose

# A path is a sequence of (edge, traversed_forward) pairs
Path = List[Tuple[Edge, bool]]


@dataclass(frozen=True, eq=False)
class GraphSnapshot:
    """Immutable copy of the graph handed to observers.

    Arrays are copies with the write flag cleared, so a snapshot can be passed to
    another thread without sharing any engine-owned state.
    """

    step: int
    node_ids: Tuple[int, ...]
    poses: npt.NDArray[np.float64]  # (N, vector size) minimal pose vectors
    positions: npt.NDArray[np.float64]  # (N, dim)
    edges: Tuple[Tuple[int, int, EdgeType], ...]
    root_id: Optional[int]
    pose_type: str

    @property
    def num_nodes(self) -> int:
        return len(self.node_ids)

    @property
    def num_edges(self) -> int:
        return len(self.edges)

    def loop_closures(self) -> Tuple[Tuple[int, int], ...]:
        """Node pairs joined by loop-closure edges."""
        return tuple((i, j) for i, j, kind in self.edges if kind is EdgeType.LOOP_CLOSURE)


class PoseGraph:
    """Nodes (pose estimates) connected by relative-pose measurements.

    Invariants maintained by this class:

    * node ids are ``0..N-1`` with no gaps, assigned in insertion order;
    * every edge references two existing nodes;
    * after :meth:`initialize` exactly one node, the root, is fixed.
    """

    def __init__(self, pose_type: Type[Pose] = SE2Pose) -> None:
        """Initialize an empty pose graph.

        Args:
            pose_type: Pose class used by all nodes and edges (SE2Pose or SE3Pose).
        """
        self.pose_type = pose_type
        self.nodes: Dict[int, PoseNode] = {}
        self.edges: List[Edge] = []
        self.root: Optional[int] = None
        self._adjacency: Dict[int, List[Edge]] = {}

    def initialize(
        self, pose: Optional[Pose] = None, timestamp: Optional[float] = None
    ) -> PoseNode:
        """Create the fixed root node.

        Args:
            pose: Root pose (identity if omitted).
            timestamp: Optional root timestamp.

        Returns:
            The root node.
        """
        if self.nodes:
            raise ValueError("Pose graph is already initialized")
        root = self._insert_node(pose or self.pose_type.identity(), timestamp, fixed=True)
        self.root = root.id
        return root

    def add_node(self, pose: Pose, timestamp: Optional[float] = None) -> PoseNode:
        """Add a (non-fixed) node to the graph.

        Args:
            pose: Initial pose estimate.
            timestamp: Timestamp of the pose.

        Returns:
            The created node, with the next free id.
        """
        if self.root is None:
            raise ValueError("Pose graph must be initialized with a root node first")
        return self._insert_node(pose, timestamp, fixed=False)

    def _insert_node(self, pose: Pose, timestamp: Optional[float], fixed: bool) -> PoseNode:
        if not isinstance(pose, self.pose_type):
            raise ValueError(f"Expected a {self.pose_type.__name__}, got {type(pose).__name__}")
        node = PoseNode(id=len(self.nodes), pose=pose.copy(), fixed=fixed, timestamp=timestamp)
        self.nodes[node.id] = node
        self._adjacency[node.id] = []
        return node

    def add_edge(self, edge: Edge) -> None:
        """Add an edge between two existing nodes.

        Args:
            edge: The constraint to add.
        """
        for node_id in (edge.from_node_id, edge.to_node_id):
            if node_id not in self.nodes:
                raise ValueError(f"Edge references unknown node {node_id}")
        if not isinstance(edge.relative_pose, self.pose_type):
            raise ValueError(
                f"Edge measurement must be a {self.pose_type.__name__}, "
                f"got {type(edge.relative_pose).__name__}"
            )
        self.edges.append(edge)
        self._adjacency[edge.from_node_id].append(edge)
        self._adjacency[edge.to_node_id].append(edge)

    def remove_edge(self, edge: Edge) -> None:
        """Remove a loop-closure edge that turned out to be inconsistent.

        Args:
            edge: A loop-closure edge currently in the graph.
        """
        if edge.edge_type is not EdgeType.LOOP_CLOSURE:
            raise ValueError("Only loop-closure edges can be removed")
        self.edges.remove(edge)
        self._adjacency[edge.from_node_id].remove(edge)
        self._adjacency[edge.to_node_id].remove(edge)

    def get_node(self, node_id: int) -> Optional[PoseNode]:
        """Get a node by id, or None if it does not exist."""
        return self.nodes.get(node_id)

    def get_pose(self, node_id: int) -> Optional[Pose]:
        """Get the current estimate of a node, or None if it does not exist."""
        node = self.nodes.get(node_id)
        return node.pose if node is not None else None

    def get_all_poses(self) -> Dict[int, Pose]:
        """Get all current pose estimates.

        Returns:
            Dictionary mapping node ids to poses.
        """
        return {node_id: node.pose for node_id, node in self.nodes.items()}

    def set_pose(self, node_id: int, pose: Pose) -> None:
        """Overwrite the estimate of a non-fixed node."""
        node = self.nodes[node_id]
        if node.fixed:
            raise ValueError(f"Node {node_id} is fixed")
        node.pose = pose

    @property
    def last_node(self) -> Optional[PoseNode]:
        """Most recently added node."""
        if not self.nodes:
            return None
        return self.nodes[len(self.nodes) - 1]

    def edges_of_kind(self, kind: EdgeType) -> List[Edge]:
        """All edges of the given type, in insertion order."""
        return [edge for edge in self.edges if edge.edge_type is kind]

    def incident_edges(self, node_id: int) -> List[Edge]:
        """Edges touching ``node_id``."""
        return list(self._adjacency.get(node_id, []))

    def neighbours(self, node_id: int) -> List[int]:
        """Ids of nodes sharing an edge with ``node_id``."""
        return sorted({edge.other(node_id) for edge in self._adjacency.get(node_id, [])})

    def find_path(
        self,
        start: int,
        goal: int,
        kinds: Optional[Iterable[EdgeType]] = None,
    ) -> Optional[Path]:
        """Find a shortest (fewest edges) path between two nodes.

        Uses a breadth-first search driven by an explicit queue, so the search depth
        is not bounded by the interpreter's recursion limit.

        Args:
            start: Source node id.
            goal: Target node id.
            kinds: Edge types allowed on the path (all types if None).

        Returns:
            List of ``(edge, forward)`` pairs from ``start`` to ``goal``, an empty list
            if ``start == goal``, or None if the nodes are not connected.
        """
        if start not in self.nodes or goal not in self.nodes:
            raise ValueError(f"Unknown node in path query ({start}, {goal})")
        if start == goal:
            return []

        allowed = None if kinds is None else set(kinds)
        parents: Dict[int, Tuple[int, Edge]] = {}
        visited = {start}
        queue = deque([start])

        while queue:
            current = queue.popleft()
            for edge in self._adjacency[current]:
                if allowed is not None and edge.edge_type not in allowed:
                    continue
                nxt = edge.other(current)
                if nxt in visited:
                    continue
                visited.add(nxt)
                parents[nxt] = (current, edge)
                if nxt == goal:
                    return self._unwind(parents, start, goal)
                queue.append(nxt)

        return None

    @staticmethod
    def _unwind(parents: Dict[int, Tuple[int, Edge]], start: int, goal: int) -> Path:
        path: Path = []
        node = goal
        while node != start:
            previous, edge = parents[node]
            path.append((edge, edge.from_node_id == previous))
            node = previous
        path.reverse()
        return path

    def compose_path(self, path: Path) -> Tuple[Pose, npt.NDArray[np.float64]]:
        """Chain the measurements along a path.

        Args:
            path: Output of :meth:`find_path`.

        Returns:
            Tuple of (relative pose of the path end in the path start frame,
            first-order covariance as the sum of the edge covariances).
        """
        relative = self.pose_type.identity()
        covariance = np.zeros((self.pose_type.dof, self.pose_type.dof))
        for edge, forward in path:
            step = edge.relative_pose if forward else edge.relative_pose.inverse()
            relative = relative.compose(step)
            covariance += edge.covariance
        return relative, covariance

    def total_error(self, poses: Optional[Dict[int, Pose]] = None) -> float:
        """Sum of squared Mahalanobis residuals over all edges.

        Args:
            poses: Optional pose estimates to evaluate instead of the current ones.

        Returns:
            Total weighted error.
        """
        estimates = poses if poses is not None else self.get_all_poses()
        return float(
            sum(
                edge.weighted_error(estimates[edge.from_node_id], estimates[edge.to_node_id])
                for edge in self.edges
            )
        )

    def snapshot(self, step: int = 0) -> GraphSnapshot:
        """Create an immutable copy of the current graph state.

        Args:
            step: Sequence number of the snapshot.

        Returns:
            A read-only GraphSnapshot.
        """
        node_ids = tuple(sorted(self.nodes))
        dim = self.pose_type.dim
        if node_ids:
            poses = np.array([self.nodes[i].pose.vector() for i in node_ids])
            positions = np.array([self.nodes[i].pose.translation for i in node_ids])
        else:
            poses = np.zeros((0, self.pose_type.identity().vector().size))
            positions = np.zeros((0, dim))
        poses.setflags(write=False)
        positions.setflags(write=False)

        return GraphSnapshot(
            step=step,
            node_ids=node_ids,
            poses=poses,
            positions=positions,
            edges=tuple((e.from_node_id, e.to_node_id, e.edge_type) for e in self.edges),
            root_id=self.root,
            pose_type="se2" if self.pose_type is SE2Pose else "se3",
        )

    def clear(self) -> None:
        """Remove all nodes and edges (the graph must be re-initialized)."""
        self.nodes.clear()
        self.edges.clear()
        self._adjacency.clear()
        self.root = None

    def num_edges(self) -> int:
        """Number of edges in the graph."""
        return len(self.edges)

    def __len__(self) -> int:
        return len(self.nodes)
