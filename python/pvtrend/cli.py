"""pvtrend command-line tool."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime, timezone

from .backend import ArchiverBackend, SimulatedBackend
from .config import EngineConfig, load_config
from .controller import TrendController
from .interval import estimate_update_interval
from .model import DataPoint, LiveMode

logger = logging.getLogger(__name__)


def _format_time(ms: float) -> str:
    dt = datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _format_point(name: str, point: DataPoint, precision: int | None = None) -> str:
    value = f"{point.value:.{precision}f}" if precision is not None else f"{point.value:g}"
    return f"[{_format_time(point.timestamp)}] {name}: {value}"


def _parse_time(text: str) -> float:
    """ISO-8601 timestamp (``Z`` suffix allowed) to ms since epoch."""
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000.0


def _load(args: argparse.Namespace) -> EngineConfig:
    config = load_config(args.config)
    if args.url:
        config.base_url = args.url
    if args.timeout is not None:
        config.timeout_s = args.timeout
    return config


def _make_controller(args: argparse.Namespace) -> TrendController:
    config = _load(args)
    if args.simulate:
        backend = SimulatedBackend(max_pending=config.max_pending_batches)
    else:
        backend = ArchiverBackend(config.base_url, config.timeout_s,
                                  max_pending=config.max_pending_batches)
    return TrendController(backend, config=config)


def _add_pvs(ctl: TrendController, names: list[str]) -> bool:
    for name in names:
        try:
            ctl.add_pv(name)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return False
    return True


def cmd_history(args: argparse.Namespace) -> int:
    """Print the historical points of one or more PVs."""
    ctl = _make_controller(args)
    end = _parse_time(args.end) if args.end else ctl.now()
    if args.start:
        start = _parse_time(args.start)
    else:
        start = end - args.last * 1000.0
    if not _add_pvs(ctl, args.pvs):
        return 1
    ctl.set_time_range(start, end)
    if not ctl.refresh():
        print(f"Error: {ctl.last_error}", file=sys.stderr)
        return 1

    for frame in ctl.series_frames():
        meta = frame.meta
        print(f"# {meta.name} [{meta.egu}] axis={meta.axis_id} points={len(frame.data)}")
        for p in frame.data:
            print(_format_point(meta.name, p, meta.precision))
    return 0


def cmd_estimate(args: argparse.Namespace) -> int:
    """Print the live update interval estimated from recent history."""
    ctl = _make_controller(args)
    if not _add_pvs(ctl, args.pvs):
        return 1
    end = ctl.now()
    ctl.set_time_range(end - args.last * 1000.0, end)
    if not ctl.refresh():
        print(f"Error: {ctl.last_error}", file=sys.stderr)
        return 1
    for pv in ctl.pvs:
        own = estimate_update_interval([pv.points])
        print(f"{pv.name:40s} {len(pv.points):6d} points  {own:6d} ms")
    print(f"interval: {estimate_update_interval(pv.points for pv in ctl.pvs)} ms")
    return 0


def cmd_live(args: argparse.Namespace) -> int:
    """Stream reconciled live points to stdout."""
    ctl = _make_controller(args)
    if not _add_pvs(ctl, args.pvs):
        return 1
    end = ctl.now()
    ctl.set_time_range(end - args.duration * 1000.0, end)
    ctl.refresh()

    if not ctl.enable_live(LiveMode(args.mode)):
        print(f"Error: {ctl.last_error}", file=sys.stderr)
        return 1
    print(f"live: {ctl.live.mode.value}, interval {ctl.live.update_interval_ms} ms",
          file=sys.stderr)

    last_seen = {pv.name: pv.points[-1].timestamp if pv.points else None
                 for pv in ctl.pvs}
    ticks = 0
    try:
        while ctl.is_live:
            if ctl.tick():
                ticks += 1
                for pv in ctl.pvs:
                    prev = last_seen.get(pv.name)
                    for p in pv.points:
                        if prev is None or p.timestamp > prev:
                            prec = pv.metadata.precision if pv.metadata else None
                            print(_format_point(pv.name, p, prec))
                    if pv.points:
                        last_seen[pv.name] = pv.points[-1].timestamp
                if args.ticks and ticks >= args.ticks:
                    break
            else:
                time.sleep(0.05)
    except KeyboardInterrupt:
        pass
    finally:
        ctl.close()

    if ctl.last_error:
        print(f"Error: {ctl.last_error}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pvtrend", description="PV trending tool")
    parser.add_argument("--url", help="Archiver retrieval base URL")
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--simulate", action="store_true",
                        help="Use the built-in simulated backend")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # history
    p_hist = sub.add_parser("history", help="Print historical data")
    p_hist.add_argument("pvs", nargs="+", metavar="PV")
    p_hist.add_argument("--start", help="Start time (ISO-8601)")
    p_hist.add_argument("--end", help="End time (ISO-8601, default now)")
    p_hist.add_argument("--last", type=float, default=3600.0,
                        help="Span in seconds when --start is not given")

    # estimate
    p_est = sub.add_parser("estimate", help="Estimate the live update interval")
    p_est.add_argument("pvs", nargs="+", metavar="PV")
    p_est.add_argument("--last", type=float, default=3600.0,
                       help="History span in seconds to estimate from")

    # live
    p_live = sub.add_parser("live", help="Stream live updates")
    p_live.add_argument("pvs", nargs="+", metavar="PV")
    p_live.add_argument("--mode", choices=[m.value for m in LiveMode],
                        default=LiveMode.ROLLING.value)
    p_live.add_argument("--duration", type=float, default=600.0,
                        help="Window length in seconds")
    p_live.add_argument("--ticks", type=int, default=0,
                        help="Stop after N updates (0 = until interrupted)")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(name)s: %(message)s")

    if args.command == "history":
        return cmd_history(args)
    elif args.command == "estimate":
        return cmd_estimate(args)
    elif args.command == "live":
        return cmd_live(args)
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
