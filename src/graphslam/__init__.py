"""graphslam - Incremental pose-graph SLAM.

A Python library that builds and continuously refines a pose graph from a stream of
robot motion increments and range observations, with pluggable node and edge
registration deciders, pairwise-consistent loop closure and a sparse
Levenberg-Marquardt back end.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
