"""
SPLOPT Problem Instances
Ready-made product line problems for experiments and tests

Three providers populate an SPLProblemDescription:
- PAPER:  the two-segment worked example (5 products, 4 assets)
- SMALL:  a three-segment example (5 products, 6 assets)
- RANDOM: a randomized instance scaled by a price level

Random instances:
-----------------
- Market size per segment: uniform integer in [1, 1000]
- Willingness to pay: price_level * U(0,1), 0 for the outside option
- Competitor utility: price_level * U(0,1), 0 for the first segment
- Variable cost: U(0,1) * price_level / 10, fixed cost: U(0,1) * price_level * 100
- Asset incidence: fair coin per product/asset pair
- Asset cost: U(0,1) * price_level * 10
"""

import numpy as np
from typing import Optional
from enum import IntEnum

from splopt_core import (
    Customer, Firm, Competition, SPLProblemDescription
)


class ProblemSelection(IntEnum):
    """Available problem instance providers."""
    PAPER = 1
    SMALL = 2
    RANDOM = 3


# =============================================================================
# FIXED EXAMPLES
# =============================================================================

def paper_example_problem() -> SPLProblemDescription:
    """Two segments, five products (incl. outside option), four assets."""
    customer = Customer(
        q=[23, 60],
        wtp=[[0.0, 18.0, 7.0, 25.0, 30.0],
             [0.0, 7.0, 4.0, 30.0, 32.0]]
    )

    # Best competing offer per segment
    competition = Competition(w=[5.0, 0.0])

    firm = Firm(
        cv=[0.0, 1.0, 1.0, 1.0, 1.0],
        cf=[0.0, 35.0, 30.0, 45.0, 70.0],
        ca=[300.0, 400.0, 100.0, 1000.0],
        a=[[False, False, False, False],
           [True, False, False, True],
           [False, False, True, True],
           [True, True, False, True],
           [True, True, True, True]]
    )

    return SPLProblemDescription(customer, firm, competition, price_steps=100)


def small_example_problem() -> SPLProblemDescription:
    """Three segments, five products, six assets, no competition."""
    customer = Customer(
        q=[10, 30, 50],
        wtp=[[0.0, 1.0, 3.0, 4.0, 5.0],
             [0.0, 4.0, 1.0, 2.0, 1.0],
             [0.0, 2.0, 2.3, 4.5, 2.3]]
    )

    competition = Competition(w=[0.0, 0.0, 0.0])

    firm = Firm(
        cv=[0.0, 0.1, 0.4, 0.5, 0.01],
        cf=[0.0, 5.0, 6.0, 1.0, 2.0],
        ca=[4.0, 3.0, 2.0, 4.0, 5.0, 7.0],
        a=[[True, False, True, True, True, False],
           [False, True, False, False, True, False],
           [True, True, False, False, False, False],
           [False, False, False, False, False, True],
           [False, False, False, False, False, False]]
    )

    return SPLProblemDescription(customer, firm, competition, price_steps=100)


# =============================================================================
# RANDOM INSTANCES
# =============================================================================

def random_problem(
    num_segments: int,
    num_products: int,
    num_assets: int,
    price_level: float = 100.0,
    price_steps: int = 100,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None
) -> SPLProblemDescription:
    """
    Generate a random product line problem.

    Args:
        num_segments: Number of customer segments
        num_products: Number of products, including the outside option 0
        num_assets: Number of reusable assets
        price_level: Scale of willingness to pay; costs are derived from it
        price_steps: Divisor of the price range used by price moves
        seed: Seed for a fresh generator (ignored if rng is given)
        rng: Generator to draw from

    Returns:
        SPLProblemDescription with consistent dimensions
    """
    if num_segments < 1:
        raise ValueError(f"num_segments must be at least 1, got {num_segments}")
    if num_products < 2:
        raise ValueError(f"num_products must include the outside option and one product, got {num_products}")
    if num_assets < 1:
        raise ValueError(f"num_assets must be at least 1, got {num_assets}")
    if price_level <= 0:
        raise ValueError(f"price_level must be positive, got {price_level}")

    if rng is None:
        rng = np.random.default_rng(seed)

    fix_cost_level = 100 * price_level
    var_cost_level = price_level / 10
    asset_cost_level = fix_cost_level / 10

    # At least one unit is sold in every segment
    q = rng.integers(1, 1001, size=num_segments)

    wtp = price_level * rng.random((num_segments, num_products))
    wtp[:, 0] = 0.0

    w = price_level * rng.random(num_segments)
    w[0] = 0.0

    cv = rng.random(num_products) * var_cost_level
    cf = rng.random(num_products) * fix_cost_level
    cv[0] = 0.0
    cf[0] = 0.0

    a = rng.random((num_products, num_assets)) < 0.5
    ca = asset_cost_level * rng.random(num_assets)

    return SPLProblemDescription(
        Customer(q=q, wtp=wtp),
        Firm(cv=cv, cf=cf, ca=ca, a=a),
        Competition(w=w),
        price_steps=price_steps
    )


def build_problem(
    selection: ProblemSelection,
    num_segments: int = 5,
    num_products: int = 20,
    num_assets: int = 30,
    price_level: float = 100.0,
    price_steps: int = 100,
    seed: Optional[int] = None
) -> SPLProblemDescription:
    """Build the problem named by selection; sizes only apply to RANDOM."""
    if selection == ProblemSelection.PAPER:
        return paper_example_problem()
    elif selection == ProblemSelection.SMALL:
        return small_example_problem()
    elif selection == ProblemSelection.RANDOM:
        return random_problem(
            num_segments, num_products, num_assets,
            price_level=price_level, price_steps=price_steps, seed=seed
        )
    else:
        raise ValueError(f"Unknown problem selection: {selection}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def describe_problem(problem: SPLProblemDescription) -> str:
    """Generate a summary description of a problem instance."""
    lines = []
    lines.append("=" * 60)
    lines.append("SPLOPT PROBLEM SUMMARY")
    lines.append("=" * 60)

    lines.append(f"\n[Dimensions]")
    lines.append(f"  Segments: {problem.num_segments}")
    lines.append(f"  Products: {problem.num_products} (incl. outside option)")
    lines.append(f"  Assets: {problem.num_assets}")
    lines.append(f"  Price steps: {problem.price_steps}")

    lines.append(f"\n[Segments]")
    for i in range(problem.num_segments):
        lines.append(
            f"  Seg{i}: q={problem.customer.q[i]}, w={problem.competition.w[i]:.2f}, "
            f"wtp={np.round(problem.customer.wtp[i], 2).tolist()}"
        )

    lines.append(f"\n[Products]")
    for j in range(problem.num_products):
        assets = np.flatnonzero(problem.firm.a[j]).tolist()
        lines.append(
            f"  P{j}: cv={problem.firm.cv[j]:.2f}, cf={problem.firm.cf[j]:.2f}, "
            f"price in [{problem.lower_bound(j):.2f}, {problem.upper_bound(j):.2f}], "
            f"assets={assets}"
        )

    lines.append(f"\n[Asset Costs]")
    lines.append(f"  {np.round(problem.firm.ca, 2).tolist()}")

    lines.append("=" * 60)

    return "\n".join(lines)
