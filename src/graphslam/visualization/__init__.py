"""Visualization utilities for pose graphs and trajectories."""

from .plotter import plot_pose_graph, plot_snapshot, plot_trajectory
from .sink import MatplotlibRenderer, ThreadedVisualizer, VisualizationSink

__all__ = [
    "MatplotlibRenderer",
    "ThreadedVisualizer",
    "VisualizationSink",
    "plot_pose_graph",
    "plot_snapshot",
    "plot_trajectory",
]
