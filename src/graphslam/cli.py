"""Command-line application ``graphslam-engine``."""

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence

import matplotlib.pyplot as plt

from .deciders import EDGE_DECIDERS, NODE_DECIDERS
from .engine import GraphSlamEngine, GroundTruth
from .exceptions import GraphSlamError
from .pose_graph import OPTIMIZERS, POSE_TYPES
from .utils.config import GraphSlamConfig, load_config, parse_args
from .utils.io import load_ground_truth, load_records, save_node_poses, save_statistics
from .visualization import MatplotlibRenderer, ThreadedVisualizer, plot_snapshot

logger = logging.getLogger(__name__)

NODE_DECIDER_DESCRIPTIONS: Dict[str, str] = {
    "fixed_intervals": "Add a node when the robot moved or turned more than fixed thresholds; "
    "connect it with the composed odometry.",
    "alignment_criteria": "Fixed thresholds on odometry or observation alignment; connect the "
    "node with an alignment edge, falling back to odometry.",
    "empty": "Never add nodes.",
}

EDGE_DECIDER_DESCRIPTIONS: Dict[str, str] = {
    "alignment_criteria": "Align each new observation with the previous node's observation.",
    "loop_closer": "Consecutive alignment plus loop closure over spatial partitions with "
    "pairwise consistency checks.",
    "empty": "Never add edges.",
}

OPTIMIZER_DESCRIPTIONS: Dict[str, str] = {
    "levenberg_marquardt": "Sparse Levenberg-Marquardt over the block normal equations.",
    "gtsam": "GTSAM Levenberg-Marquardt (requires the gtsam extra).",
}


def _print_table(title: str, descriptions: Dict[str, str], available: Sequence[str]) -> None:
    print(f"{title}:")
    for name, description in descriptions.items():
        marker = "" if name in available else " (not installed)"
        print(f"  {name:<20} {description}{marker}")


def _build_config(args) -> GraphSlamConfig:
    config = load_config(args.config) if args.config else GraphSlamConfig()
    if args.node_reg:
        config.engine.node_decider = args.node_reg
    if args.edge_reg:
        config.engine.edge_decider = args.edge_reg
    if args.optimizer:
        config.engine.optimizer = args.optimizer
    if args.pose_type:
        config.engine.pose_type = args.pose_type
    if args.disable_visuals:
        config.engine.visualize = False
    return config.validate()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the engine over a records file.

    Args:
        argv: Command-line arguments (``sys.argv[1:]`` if omitted).

    Returns:
        Process exit code.
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    listed = False
    if args.list_node_regs or args.list_regs:
        _print_table("Node registration deciders", NODE_DECIDER_DESCRIPTIONS, list(NODE_DECIDERS))
        listed = True
    if args.list_edge_regs or args.list_regs:
        _print_table("Edge registration deciders", EDGE_DECIDER_DESCRIPTIONS, list(EDGE_DECIDERS))
        listed = True
    if args.list_optimizers:
        _print_table("Optimizers", OPTIMIZER_DESCRIPTIONS, list(OPTIMIZERS))
        listed = True
    if listed:
        return 0

    if not args.records:
        logger.error("No records file given (use --records)")
        return 2

    try:
        config = _build_config(args)
        pose_type = POSE_TYPES[config.engine.pose_type]
        records = load_records(Path(args.records), pose_type)
        ground_truth: Optional[GroundTruth] = None
        if args.ground_truth:
            ground_truth = load_ground_truth(Path(args.ground_truth))

        output_dir = Path(args.output_dir) if args.output_dir else None
        visualizer = None
        if config.engine.visualize and output_dir is not None:
            visualizer = ThreadedVisualizer(MatplotlibRenderer(output_dir / "frames"))

        engine = GraphSlamEngine(config, visualizer=visualizer, ground_truth=ground_truth)
        result = engine.run(records, progress=args.progress)
    except (GraphSlamError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1

    summary = result.statistics.summary()
    logger.info(
        "Nodes: %d, edges: %d, loop closures: %d",
        summary["nodes"],
        summary["edges"],
        summary["loop_closures"],
    )

    if output_dir is not None:
        save_node_poses(result.graph, output_dir / "poses.txt")
        save_statistics(result.statistics, output_dir)
        if config.engine.visualize:
            fig = plot_snapshot(result.graph.snapshot(step=summary["records"]), show=False)
            fig.savefig(output_dir / "graph.png")
            plt.close(fig)
        logger.info("Results written to %s", output_dir)

    return 0
