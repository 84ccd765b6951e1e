"""pvtrend viewer — DearPyGui-based live trend plotter."""

from __future__ import annotations

import argparse
import logging
import sys

logger = logging.getLogger(__name__)


def launch() -> None:
    """Entry point for ``pvtrend-viewer`` console script."""
    parser = argparse.ArgumentParser(
        prog="pvtrend-viewer",
        description="pvtrend live trend viewer",
    )
    parser.add_argument("pvs", nargs="*", metavar="PV", help="PVs to plot")
    parser.add_argument("--simulate", action="store_true",
                        help="Use the built-in simulated backend")
    parser.add_argument("--url", help="Archiver retrieval base URL")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--live", action="store_true",
                        help="Enter live mode immediately")
    args = parser.parse_args()

    try:
        import dearpygui.dearpygui  # noqa: F401
    except ImportError:
        print("Error: dearpygui is required for the viewer.\n"
              "Install with: pip install 'pvtrend[viewer]'",
              file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(level=logging.INFO,
                        format="%(name)s: %(message)s")

    from ..backend import ArchiverBackend, SimulatedBackend
    from ..config import load_config
    from ..controller import TrendController
    from .app import ViewerApp

    config = load_config(args.config)
    if args.url:
        config.base_url = args.url
    if args.simulate:
        backend = SimulatedBackend(max_pending=config.max_pending_batches)
    else:
        backend = ArchiverBackend(config.base_url, config.timeout_s,
                                  max_pending=config.max_pending_batches)
    controller = TrendController(backend, config=config)
    for name in args.pvs:
        try:
            controller.add_pv(name)
        except ValueError as e:
            logger.warning("skipping %s: %s", name, e)

    app = ViewerApp(controller)
    app.setup()

    if args.pvs:
        controller.refresh()
        if args.live:
            controller.enable_live()

    app.run()
