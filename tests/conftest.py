from __future__ import annotations

import os
import random

import numpy as np
import pytest

from tiny_opgraph.utils.config import config as opgraph_config

DEFAULT_SEED = int(os.getenv("TINY_OPGRAPH_SEED", "1234"))


def pytest_configure(config) -> None:  # pylint: disable=unused-argument
    random.seed(DEFAULT_SEED)
    np.random.seed(DEFAULT_SEED)

    try:
        import torch

        torch.manual_seed(DEFAULT_SEED)
    except ModuleNotFoundError:
        pass


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(DEFAULT_SEED)


@pytest.fixture
def debug_plans():
    """Validate every plan compiled inside the test."""
    previous = opgraph_config.debug
    opgraph_config.debug = True
    yield
    opgraph_config.debug = previous
