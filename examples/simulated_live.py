#!/usr/bin/env python3
"""Trend two simulated PVs in rolling live mode and print each update.

No archiver needed:
    python examples/simulated_live.py
"""

import time

from pvtrend import SimulatedBackend, TrendController, LiveMode

backend = SimulatedBackend(units={"DEMO:TEMP": "degC", "DEMO:PRESSURE": "Torr"})
ctl = TrendController(backend)
ctl.add_pv("DEMO:TEMP")
ctl.add_pv("DEMO:PRESSURE")

now = ctl.now()
ctl.set_time_range(now - 60_000, now)
ctl.refresh()
for axis in ctl.axis_list():
    print(f"axis {axis.id} ({axis.egu}, {axis.position.value}): {axis.member_pvs}")

if not ctl.enable_live(LiveMode.ROLLING):
    raise SystemExit(ctl.last_error)

try:
    while ctl.is_live:
        if ctl.tick():
            for pv in ctl.pvs:
                p = pv.last_point
                print(f"{pv.name}={p.value:.3f} ({len(pv.points)} points)")
        else:
            time.sleep(0.1)
except KeyboardInterrupt:
    pass
finally:
    ctl.close()
