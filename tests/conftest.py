"""
Pytest Configuration
"""
import logging

import numpy as np
import pytest
from rich.logging import RichHandler

from pmpflows.functions import Hamiltonian


def energyHamiltonian():
    """
    Hamiltonian of the energy-minimal double integrator with u = p[1]
    """
    return Hamiltonian(lambda x, p: p[0] * x[1] + p[1] * p[1] - 0.5 * p[1] ** 2)


def energyState(t, a=-1.0, b=0.0, c=12.0, d=6.0):
    """
    Closed-form state and costate of the energy-minimal double integrator
    """
    x = np.array([a + b * t + 0.5 * d * t**2 - c * t**3 / 6, b + d * t - 0.5 * c * t**2])
    p = np.array([c, d - c * t])
    return x, p


@pytest.fixture
def doubleIntegrator():
    """(t0, tf, x0, p0) for the energy-minimal double integrator"""
    return 0.0, 1.0, np.array([-1.0, 0.0]), np.array([12.0, 6.0])


@pytest.fixture(scope="session", autouse=True)
def logger():
    """
    Configure the logger for unit test output
    """
    logger = logging.getLogger("pmpflows")
    logger.handlers.clear()
    logger.addHandler(RichHandler(show_time=False, enable_link_path=False))
    logger.setLevel(logging.INFO)
    logger.propagate = True
    return logger.name
