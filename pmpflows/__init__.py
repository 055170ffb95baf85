"""
pmpflows Package
"""

# ------------------------------------------------------------------------------
# Nice outputs via rich
from rich.console import Console

console = Console()

# ------------------------------------------------------------------------------
# Double precision for automatic differentiation via jax
import jax

jax.config.update("jax_enable_x64", True)

# ------------------------------------------------------------------------------
# Import meta
__all__ = [
    "concatenation",
    "exceptions",
    "flow",
    "functions",
    "hamiltonian",
    "ocp",
    "ocpflow",
    "propagate",
    "util",
]
