"""Plotting functions for 2D pose graph and trajectory visualization."""

import logging
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt
from matplotlib.axes import Axes
from matplotlib.collections import LineCollection
from matplotlib.figure import Figure

from ..pose_graph import EdgeType, GraphSnapshot, PoseGraph

logger = logging.getLogger(__name__)

EDGE_COLORS = {
    EdgeType.ODOMETRY: "gray",
    EdgeType.ALIGNMENT: "tab:blue",
    EdgeType.LOOP_CLOSURE: "tab:red",
}


def _new_axes(ax: Optional[Axes], figsize: tuple) -> tuple:
    if ax is not None:
        return ax.figure, ax
    return plt.subplots(figsize=figsize)


def _finish(ax: Axes, title: str, legend: bool) -> None:
    ax.set_xlabel("X (m)")
    ax.set_ylabel("Y (m)")
    ax.set_title(title)
    if legend:
        ax.legend(loc="best")
    ax.grid(True)
    ax.set_aspect("equal")


def plot_trajectory(
    positions: npt.NDArray[np.float64],
    title: str = "Trajectory",
    show: bool = True,
    ax: Optional[Axes] = None,
) -> Figure:
    """Plot a 2D trajectory.

    Args:
        positions: Nx2 (or Nx3, projected on the ground plane) array of positions.
        title: Plot title.
        show: Whether to display the plot.
        ax: Axes to draw into (a new figure if omitted).

    Returns:
        Matplotlib figure.
    """
    fig, ax = _new_axes(ax, (10, 8))

    x = positions[:, 0]
    y = positions[:, 1]
    points = np.array([x, y]).T.reshape(-1, 1, 2)
    segments = np.concatenate([points[:-1], points[1:]], axis=1)
    lc = LineCollection(segments, cmap="rainbow", linewidth=2)
    lc.set_array(np.linspace(1, 0, len(segments)))

    ax.add_collection(lc)
    ax.autoscale()
    _finish(ax, title, legend=False)

    if show:
        plt.show()

    return fig


def plot_snapshot(
    snapshot: GraphSnapshot,
    show_edges: bool = True,
    show_orientation: bool = True,
    title: Optional[str] = None,
    show: bool = True,
    ax: Optional[Axes] = None,
    ground_truth: Optional[npt.NDArray[np.float64]] = None,
) -> Figure:
    """Plot a graph snapshot on the ground plane.

    Args:
        snapshot: Snapshot to draw.
        show_edges: Whether to draw edges, colored by edge type.
        show_orientation: Whether to show heading arrows.
        title: Plot title (defaults to the snapshot step).
        show: Whether to display the plot.
        ax: Axes to draw into (a new figure if omitted).
        ground_truth: Optional Nx2 reference positions drawn underneath.

    Returns:
        Matplotlib figure.
    """
    fig, ax = _new_axes(ax, (12, 9))
    title = title or f"Pose Graph (step {snapshot.step})"

    if snapshot.num_nodes == 0:
        logger.info("No poses to plot")
        return fig

    positions = snapshot.positions[:, :2]
    # Heading is the last element of the minimal pose vector for both pose types
    yaws = snapshot.poses[:, -1]
    row = {node_id: k for k, node_id in enumerate(snapshot.node_ids)}

    if ground_truth is not None and len(ground_truth) > 0:
        ax.plot(ground_truth[:, 0], ground_truth[:, 1], "k--", linewidth=1, label="Ground truth")

    if show_edges:
        for kind, color in EDGE_COLORS.items():
            segments = [
                [positions[row[i]], positions[row[j]]] for i, j, k in snapshot.edges if k is kind
            ]
            if segments:
                lines = LineCollection(
                    segments, colors=color, linewidths=1, alpha=0.7, label=kind.value
                )
                ax.add_collection(lines)

    ax.scatter(positions[:, 0], positions[:, 1], c="b", s=20, label="Poses", zorder=5)

    # Calculate appropriate arrow length based on trajectory scale
    trajectory_scale = max(np.ptp(positions[:, 0]), np.ptp(positions[:, 1]))
    arrow_length = trajectory_scale * 0.02  # 2% of trajectory scale

    if show_orientation and arrow_length > 0:
        for pos, yaw in zip(positions, yaws):
            ax.arrow(
                pos[0],
                pos[1],
                arrow_length * np.cos(yaw),
                arrow_length * np.sin(yaw),
                head_width=arrow_length * 0.3,
                head_length=arrow_length * 0.2,
                fc="blue",
                ec="blue",
                alpha=0.6,
            )

    # Mark start and end
    ax.scatter(positions[0, 0], positions[0, 1], c="g", s=100, label="Start", zorder=10)
    if len(positions) > 1:
        ax.scatter(positions[-1, 0], positions[-1, 1], c="r", s=100, label="End", zorder=10)

    ax.autoscale()
    _finish(ax, title, legend=True)

    if show:
        plt.show()

    return fig


def plot_pose_graph(
    graph: PoseGraph,
    show_edges: bool = True,
    show_orientation: bool = True,
    title: str = "Pose Graph",
    show: bool = True,
    ax: Optional[Axes] = None,
) -> Figure:
    """Plot the current estimates of a pose graph.

    Args:
        graph: The pose graph to visualize.
        show_edges: Whether to draw edges between poses.
        show_orientation: Whether to show heading arrows.
        title: Plot title.
        show: Whether to display the plot.
        ax: Axes to draw into (a new figure if omitted).

    Returns:
        Matplotlib figure.
    """
    return plot_snapshot(
        graph.snapshot(),
        show_edges=show_edges,
        show_orientation=show_orientation,
        title=title,
        show=show,
        ax=ax,
    )
