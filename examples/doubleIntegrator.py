#!/usr/bin/env python3
import logging

import numpy as np
from rich.logging import RichHandler

from pmpflows import console
from pmpflows.flow import buildFlow
from pmpflows.ocp import OptimalControlModel

logger = logging.getLogger("pmpflows")
logger.addHandler(RichHandler(show_time=False, show_path=False, enable_link_path=False))
logger.setLevel(logging.DEBUG)

t0, tf = 0.0, 1.0
x0 = [-1.0, 0.0]

# Energy minimization: the extremal control is the second costate
energy = OptimalControlModel(
    2,
    1,
    dynamics=lambda x, u: [x[1], u],
    lagrange=lambda x, u: 0.5 * u**2,
)
f = buildFlow(energy, lambda x, p: p[1])

xf, pf = f(t0, x0, [12.0, 6.0], tf)
console.print(f"Energy minimization: x(tf) = {xf}, p(tf) = {pf}")

sol = f((t0, tf), x0, [12.0, 6.0], saveat=np.linspace(t0, tf, 11)).solution()
console.print(f"  objective = {sol.objective:.6f}")
for t in sol.timeGrid:
    console.print(f"  t = {t:.1f}, x = {sol.state(t)}, u = {sol.control(t)}")

# Time minimization: bang-bang control switching when p[1] vanishes
timeOptimal = OptimalControlModel(
    2,
    1,
    dynamics=lambda x, u: [x[1], u],
    lagrange=lambda x, u: 1.0,
)
fPlus = buildFlow(timeOptimal, lambda x, p: 1.0)
fMinus = buildFlow(timeOptimal, lambda x, p: -1.0)
bangBang = fPlus * (1.0, fMinus)

sol = bangBang((0.0, 2.0), x0, [1.0, 1.0]).solution()
console.print(f"Time minimization: x(tf) = {sol.state(2.0)}, objective = {sol.objective:.6f}")
console.print(f"  u(0.5) = {sol.control(0.5)}, u(1.5) = {sol.control(1.5)}")
