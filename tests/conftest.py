from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for the top-level splopt_* modules
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from splopt_instances import paper_example_problem, small_example_problem  # noqa: E402
from splopt_core import Competition, Customer, Firm, SPLProblemDescription  # noqa: E402


class ScriptedRng:
    """Stands in for numpy's Generator with pre-recorded draws."""

    def __init__(self, randoms=(), integers=()):
        self._randoms = list(randoms)
        self._integers = list(integers)

    def random(self):
        return self._randoms.pop(0)

    def integers(self, high):
        value = self._integers.pop(0)
        assert 0 <= value < high
        return value


@pytest.fixture
def paper_problem():
    return paper_example_problem()


@pytest.fixture
def small_problem():
    return small_example_problem()


@pytest.fixture
def scripted_rng():
    return ScriptedRng


@pytest.fixture
def inverted_problem():
    """Product 1 costs more per unit (5) than any segment will pay (2)."""
    return SPLProblemDescription(
        Customer(q=[1], wtp=[[0.0, 2.0]]),
        Firm(cv=[0.0, 5.0], cf=[0.0, 1.0], ca=[1.0], a=[[False], [True]]),
        Competition(w=[0.0]),
    )
