"""
SPLOPT: Software Product Line Portfolio Optimizer
Core Module - Version 1.0

Decides which product each customer segment is assigned to and what price
each product carries, so that the product line earns the highest profit
while segments are not lost to competitors. The search is a simulated
annealing with domain-aware neighbor moves and a feasibility-penalized
objective.

Model:
- Segments i with market size q[i] and willingness-to-pay wtp[i][j]
- Products j (product 0 is the outside option, always priced at 0)
- Assets k shared between products; an asset is paid for once if any
  produced product needs it
- Competitor baseline utility w[i] per segment

Profit = contribution margin - fixed production cost - asset cost
"""

import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Callable
from enum import IntEnum
from abc import ABC, abstractmethod
import math
import time


# =============================================================================
# CONSTANTS
# =============================================================================

class CoolingScheduleType(IntEnum):
    """Built-in annealing temperature schedules."""
    LINEAR = 1         # t0 - (t0 - tn) * i / n
    EXPONENTIAL = 2    # t0 * alpha^i
    HYPERBOLIC = 3     # a / (i + 1) + b, hitting t0 at i=0 and tn at i=n


class OptimizerState(IntEnum):
    """Lifecycle of an annealing run."""
    INIT = 0
    RUNNING = 1
    CONVERGED = 2
    EXHAUSTED = 3


class ObjectiveSign(IntEnum):
    """Optimization direction of a declared objective."""
    MIN = -1
    MAX = 1


# =============================================================================
# PROBLEM DESCRIPTION
# =============================================================================

def _frozen(values, dtype) -> np.ndarray:
    arr = np.array(values, dtype=dtype)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Customer:
    """Customer side of the problem: segment sizes and willingness to pay."""
    q: np.ndarray      # Shape: (S,), market size per segment
    wtp: np.ndarray    # Shape: (S, P), wtp[i][0] == 0 (outside option)

    def __post_init__(self):
        object.__setattr__(self, 'q', _frozen(self.q, np.int64))
        wtp = np.array(self.wtp, dtype=np.float64)
        if wtp.ndim != 2:
            raise ValueError(f"Willingness-to-pay must be a segment x product matrix, got shape {wtp.shape}")
        object.__setattr__(self, 'wtp', _frozen(wtp, np.float64))
        if len(self.q) != wtp.shape[0]:
            raise ValueError(
                f"Market sizes given for {len(self.q)} segments but willingness to pay "
                f"for {wtp.shape[0]} segments"
            )
        if wtp.shape[1] > 0 and (wtp[:, 0] != 0).any():
            raise ValueError(
                f"Willingness to pay for the outside option (product 0) must be 0, got {wtp[:, 0].tolist()}"
            )

    @property
    def num_segments(self) -> int:
        return self.wtp.shape[0]


@dataclass(frozen=True, eq=False)
class Firm:
    """Firm side of the problem: product costs and the product/asset structure."""
    cv: np.ndarray     # Shape: (P,), variable (unit) cost per product
    cf: np.ndarray     # Shape: (P,), fixed production cost per product
    ca: np.ndarray     # Shape: (K,), cost per asset
    a: np.ndarray      # Shape: (P, K), a[j][k] is True if product j needs asset k

    def __post_init__(self):
        object.__setattr__(self, 'cv', _frozen(self.cv, np.float64))
        object.__setattr__(self, 'cf', _frozen(self.cf, np.float64))
        object.__setattr__(self, 'ca', _frozen(self.ca, np.float64))

        if len(self.cv) != len(self.cf):
            raise ValueError(
                f"Variable and fixed cost vectors differ in length ({len(self.cv)} vs "
                f"{len(self.cf)}); each product owns exactly one of each"
            )
        if len(self.a) != len(self.cf):
            raise ValueError(
                f"Asset incidence lists {len(self.a)} products but cost vectors list {len(self.cf)}"
            )
        for j, row in enumerate(self.a):
            if len(row) != len(self.ca):
                raise ValueError(
                    f"Product {j} references {len(row)} assets but {len(self.ca)} asset costs are given"
                )
        incidence = np.array(self.a, dtype=bool).reshape(len(self.cf), len(self.ca))
        object.__setattr__(self, 'a', _frozen(incidence, bool))

    @property
    def num_products(self) -> int:
        return len(self.cv)

    @property
    def num_assets(self) -> int:
        return len(self.ca)


@dataclass(frozen=True, eq=False)
class Competition:
    """Best utility a competitor offers to each segment."""
    w: np.ndarray      # Shape: (S,)

    def __post_init__(self):
        object.__setattr__(self, 'w', _frozen(self.w, np.float64))


@dataclass(frozen=True, eq=False)
class SPLProblemDescription:
    """
    Constant data of one product line optimization problem.

    Built once per run and shared read-only by every candidate, move and
    evaluator. Inconsistent dimensions raise ValueError at construction.
    """
    customer: Customer
    firm: Firm
    competition: Competition
    price_steps: int = 100

    def __post_init__(self):
        if self.customer.num_segments <= 0:
            raise ValueError("At least one customer segment is needed to bound product prices")
        if self.customer.wtp.shape[1] != self.firm.num_products:
            raise ValueError(
                f"Willingness to pay covers {self.customer.wtp.shape[1]} products but the firm "
                f"offers {self.firm.num_products}"
            )
        if len(self.competition.w) != self.customer.num_segments:
            raise ValueError(
                f"Competitor utility given for {len(self.competition.w)} segments, expected "
                f"{self.customer.num_segments}"
            )
        if int(self.price_steps) < 1:
            raise ValueError(f"price_steps must be a positive integer, got {self.price_steps}")

    @property
    def num_segments(self) -> int:
        return self.customer.num_segments

    @property
    def num_products(self) -> int:
        return self.firm.num_products

    @property
    def num_assets(self) -> int:
        return self.firm.num_assets

    def lower_bound(self, j: int) -> float:
        """Lowest admissible price of product j (its variable cost)."""
        return float(self.firm.cv[j])

    def upper_bound(self, j: int) -> float:
        """Highest admissible price of product j (highest WTP over segments)."""
        return float(self.customer.wtp[:, j].max())

    def price_range(self, j: int) -> float:
        return self.upper_bound(j) - self.lower_bound(j)

    def price_step(self, j: int) -> float:
        return self.price_range(j) / self.price_steps

    def lower_bounds(self) -> np.ndarray:
        return self.firm.cv.copy()

    def upper_bounds(self) -> np.ndarray:
        return self.customer.wtp.max(axis=0)


# =============================================================================
# CANDIDATE SOLUTION
# =============================================================================

@dataclass
class AssetImportance:
    """Profit left over when every assignment depending on an asset is dropped."""
    asset: int
    profit: float


def normalize_prices(problem: SPLProblemDescription, p: np.ndarray) -> np.ndarray:
    """Clip a price vector into the product bounds (in place) and pin p[0] to 0."""
    np.minimum(np.maximum(p, problem.lower_bounds(), out=p), problem.upper_bounds(), out=p)
    p[0] = 0.0
    return p


@dataclass(eq=False)
class CandidateSolution:
    """
    A point in the search space: segment/product assignment x and prices p.

    Produced products (y) and required assets (r) are derived from x on
    demand and never stored.
    """
    x: np.ndarray                       # Shape: (S, P), one True per row
    p: np.ndarray                       # Shape: (P,), p[0] == 0
    problem: SPLProblemDescription = field(repr=False)

    @classmethod
    def initialize_random(
        cls,
        problem: SPLProblemDescription,
        rng: np.random.Generator
    ) -> 'CandidateSolution':
        """One uniformly chosen product per segment and uniform in-bound prices."""
        S, P = problem.num_segments, problem.num_products

        chosen = rng.integers(P, size=S)
        x = np.zeros((S, P), dtype=bool)
        x[np.arange(S), chosen] = True

        lower, upper = problem.lower_bounds(), problem.upper_bounds()
        p = lower + rng.random(P) * (upper - lower)
        normalize_prices(problem, p)

        return cls(x=x, p=p, problem=problem)

    @classmethod
    def from_assignment(
        cls,
        problem: SPLProblemDescription,
        products: List[int],
        prices: List[float]
    ) -> 'CandidateSolution':
        """Build a candidate from per-segment product indices and a price vector."""
        if len(products) != problem.num_segments:
            raise ValueError(
                f"Expected one product per segment ({problem.num_segments}), got {len(products)}"
            )
        if len(prices) != problem.num_products:
            raise ValueError(
                f"Expected {problem.num_products} prices, got {len(prices)}"
            )
        x = np.zeros((problem.num_segments, problem.num_products), dtype=bool)
        x[np.arange(problem.num_segments), np.asarray(products, dtype=np.int64)] = True
        p = np.array(prices, dtype=np.float64)
        p[0] = 0.0
        return cls(x=x, p=p, problem=problem)

    def copy(self) -> 'CandidateSolution':
        return CandidateSolution(x=self.x.copy(), p=self.p.copy(), problem=self.problem)

    # ---- derived quantities ----

    def produced_products(self) -> np.ndarray:
        return self._produced(self.x)

    def required_assets(self) -> np.ndarray:
        return self._required(self.x)

    def assigned_products(self) -> np.ndarray:
        """Index of the product each segment is assigned to."""
        return self.x.argmax(axis=1)

    def net_utilities(self) -> np.ndarray:
        """Net utility wtp[i][j] - p[j] of every product for every segment."""
        return self.problem.customer.wtp - self.p[np.newaxis, :]

    # ---- profit model ----

    def contribution_margin(self) -> float:
        return self._contribution_margin(self.x)

    def fixed_production_cost(self) -> float:
        return self._fixed_production_cost(self.x)

    def asset_cost(self) -> float:
        return self._asset_cost(self.x)

    def profit(self) -> float:
        return self._profit(self.x)

    def asset_importance(self) -> List[AssetImportance]:
        """
        Rank assets by how much profit depends on them.

        For every asset k the profit is recomputed with all assignments to
        products that need k removed. The smaller the remaining profit, the
        more important the asset; the list is sorted ascending.
        """
        incidence = self.problem.firm.a
        ranking = []
        for k in range(self.problem.num_assets):
            x_without = self.x & ~incidence[:, k][np.newaxis, :]
            ranking.append(AssetImportance(asset=k, profit=self._profit(x_without)))
        ranking.sort(key=lambda item: item.profit)
        return ranking

    # ---- helpers over an arbitrary assignment matrix ----

    def _produced(self, x: np.ndarray) -> np.ndarray:
        return x.any(axis=0)

    def _required(self, x: np.ndarray) -> np.ndarray:
        y = self._produced(x)
        return (self.problem.firm.a & y[:, np.newaxis]).any(axis=0)

    def _contribution_margin(self, x: np.ndarray) -> float:
        unit_margin = self.p - self.problem.firm.cv
        per_cell = self.problem.customer.q[:, np.newaxis] * unit_margin[np.newaxis, :]
        return float(per_cell[x].sum())

    def _fixed_production_cost(self, x: np.ndarray) -> float:
        return float(self.problem.firm.cf[self._produced(x)].sum())

    def _asset_cost(self, x: np.ndarray) -> float:
        return float(self.problem.firm.ca[self._required(x)].sum())

    def _profit(self, x: np.ndarray) -> float:
        return (self._contribution_margin(x)
                - self._fixed_production_cost(x)
                - self._asset_cost(x))


# =============================================================================
# SEARCH INTERFACES
# =============================================================================

class Initializer(ABC):
    """Creates the starting candidate of a search."""

    @abstractmethod
    def create(self, problem: SPLProblemDescription, rng: np.random.Generator) -> CandidateSolution:
        ...


class Move(ABC):
    """Perturbs a candidate in place."""

    @abstractmethod
    def neighbor(self, candidate: CandidateSolution, rng: np.random.Generator) -> None:
        ...


class Objective(ABC):
    """Maps a candidate to a scalar fitness."""

    @abstractmethod
    def evaluate(self, candidate: CandidateSolution) -> float:
        ...


class Optimizer(ABC):
    """Runs a search over candidates of one problem."""

    @abstractmethod
    def run(self, progress_callback: Optional[Callable[[int, float], None]] = None) -> 'OptimizationResult':
        ...


class RandomInitializer(Initializer):
    def create(self, problem: SPLProblemDescription, rng: np.random.Generator) -> CandidateSolution:
        return CandidateSolution.initialize_random(problem, rng)


# =============================================================================
# NEIGHBOR GENERATION
# =============================================================================

class NeighborGenerator(Move):
    """
    Domain-aware neighborhood for the product line problem.

    Half of the moves reassign a segment, the other half raise one price by
    a random fraction of its price step. Both keep every segment assigned to
    exactly one product and every price within its bounds.
    """

    def __init__(self, problem: SPLProblemDescription):
        self.problem = problem

    def neighbor(self, candidate: CandidateSolution, rng: np.random.Generator) -> None:
        if rng.random() < 0.5:
            self.assignment_move(candidate, rng)
        else:
            self.price_move(candidate, rng)

    def price_move(self, candidate: CandidateSolution, rng: np.random.Generator) -> None:
        r = int(rng.integers(self.problem.num_products))

        value = 0.0
        if r != 0:  # product 0 stays at price 0
            value = candidate.p[r] + rng.random() * self.problem.price_step(r)

        # Overshooting the ceiling wraps back to the floor
        if value > self.problem.upper_bound(r):
            value = self.problem.lower_bound(r)
        candidate.p[r] = value

        normalize_prices(self.problem, candidate.p)

    def assignment_move(self, candidate: CandidateSolution, rng: np.random.Generator) -> None:
        i = int(rng.integers(self.problem.num_segments))
        change = int(rng.integers(self.problem.num_products))

        candidate.x[i, :] = False
        candidate.x[i, change] = True


# =============================================================================
# OBJECTIVE EVALUATION
# =============================================================================

@dataclass(frozen=True)
class ObjectiveDeclaration:
    name: str
    sign: ObjectiveSign


@dataclass
class FeasibilityReport:
    """Feasibility counts, profit and fitness of one candidate."""
    competitor_loss: int
    suboptimal_assignment: int
    profit: float
    fitness: float

    @property
    def violations(self) -> int:
        return self.competitor_loss + self.suboptimal_assignment

    @property
    def feasible(self) -> bool:
        return self.violations == 0


class ObjectiveEvaluator(Objective):
    """Profit objective, penalized for segments lost or served sub-optimally."""

    objective = ObjectiveDeclaration(name="profit", sign=ObjectiveSign.MAX)

    def __init__(self, problem: SPLProblemDescription):
        self.problem = problem

    def objectives(self) -> List[ObjectiveDeclaration]:
        return [self.objective]

    def _assigned_utility(self, candidate: CandidateSolution) -> np.ndarray:
        # Rows are one-hot, so summing over the row picks the assigned product
        return np.where(candidate.x, candidate.net_utilities(), 0.0).sum(axis=1)

    def competitor_loss(self, candidate: CandidateSolution) -> int:
        """Segments whose assigned product is worth less to them than the competitor's offer."""
        assigned = self._assigned_utility(candidate)
        return int((assigned < self.problem.competition.w).sum())

    def suboptimal_assignment(self, candidate: CandidateSolution) -> int:
        """Segments for which another produced product would give strictly more utility."""
        assigned = self._assigned_utility(candidate)
        produced = candidate.produced_products()
        better = (candidate.net_utilities() > assigned[:, np.newaxis]) & produced[np.newaxis, :]
        return int(better.any(axis=1).sum())

    def feasibility(self, candidate: CandidateSolution) -> FeasibilityReport:
        lost = self.competitor_loss(candidate)
        suboptimal = self.suboptimal_assignment(candidate)
        profit = candidate.profit()

        if lost == 0 and suboptimal == 0:
            fitness = profit
        elif profit >= 0.0:
            fitness = math.sqrt(profit) / (lost + suboptimal)
        else:
            fitness = 0.0

        return FeasibilityReport(
            competitor_loss=lost,
            suboptimal_assignment=suboptimal,
            profit=profit,
            fitness=fitness
        )

    def evaluate(self, candidate: CandidateSolution) -> float:
        return self.feasibility(candidate).fitness


# =============================================================================
# COOLING SCHEDULES
# =============================================================================

CoolingSchedule = Callable[[int, int], float]


def linear_cooling(initial_temperature: float, final_temperature: float) -> CoolingSchedule:
    def temperature(i: int, n: int) -> float:
        return initial_temperature - (initial_temperature - final_temperature) * i / n
    return temperature


def exponential_cooling(initial_temperature: float, alpha: float) -> CoolingSchedule:
    def temperature(i: int, n: int) -> float:
        return initial_temperature * alpha ** i
    return temperature


def hyperbolic_cooling(initial_temperature: float, final_temperature: float) -> CoolingSchedule:
    def temperature(i: int, n: int) -> float:
        a = (initial_temperature - final_temperature) * (n + 1) / n
        b = initial_temperature - a
        return a / (i + 1) + b
    return temperature


# =============================================================================
# ANNEALING PARAMETERS & RESULTS
# =============================================================================

@dataclass
class AnnealingParams:
    """Simulated annealing parameters."""
    iterations: int = 1000
    delta: float = 0.01               # Relative improvement counted as "small"
    change_iterations: int = 1000     # Patience window for small improvements

    # Cooling
    cooling: CoolingScheduleType = CoolingScheduleType.LINEAR
    initial_temperature: float = 10.0
    final_temperature: float = 0.01
    alpha: float = 0.995              # Only used by EXPONENTIAL

    # Random seed
    seed: Optional[int] = None

    def __post_init__(self):
        if self.iterations < 1:
            raise ValueError(f"iterations must be at least 1, got {self.iterations}")
        if self.change_iterations < 1:
            raise ValueError(f"change_iterations must be at least 1, got {self.change_iterations}")
        if self.delta < 0:
            raise ValueError(f"delta must be non-negative, got {self.delta}")
        if self.initial_temperature <= 0:
            raise ValueError(f"initial_temperature must be positive, got {self.initial_temperature}")

    def cooling_schedule(self) -> CoolingSchedule:
        if self.cooling == CoolingScheduleType.LINEAR:
            return linear_cooling(self.initial_temperature, self.final_temperature)
        elif self.cooling == CoolingScheduleType.EXPONENTIAL:
            return exponential_cooling(self.initial_temperature, self.alpha)
        elif self.cooling == CoolingScheduleType.HYPERBOLIC:
            return hyperbolic_cooling(self.initial_temperature, self.final_temperature)
        else:
            raise ValueError(f"Unknown cooling schedule: {self.cooling}")


@dataclass
class OptimizationResult:
    """Results from one annealing run."""
    best: CandidateSolution
    best_fitness: float
    current: CandidateSolution
    current_fitness: float
    state: OptimizerState
    iterations: int
    profit: float
    produced_products: np.ndarray
    required_assets: np.ndarray
    asset_importance: List[AssetImportance]
    feasibility: Optional[FeasibilityReport] = None
    fitness_history: Optional[List[float]] = None
    accepted: int = 0
    rejected: int = 0
    objective_name: str = "profit"

    # Computation time
    elapsed_seconds: float = 0.0


# =============================================================================
# SIMULATED ANNEALING OPTIMIZER
# =============================================================================

class SPLSimulatedAnnealing(Optimizer):
    """
    Simulated annealing with an adaptive stopping rule.

    A candidate at least as good as the current one (fitness not larger) is
    always taken; a worse one is taken with the Metropolis probability
    exp((f(x) - f(y)) / T). Every unconditional acceptance measures the
    relative improvement; after change_iterations consecutive improvements
    smaller than delta the run stops as converged.

    Note: the loop drives fitness downwards although the profit objective is
    declared as a maximization. The best-known candidate is kept in the
    declared direction (highest fitness seen).
    """

    def __init__(
        self,
        problem: SPLProblemDescription,
        params: AnnealingParams,
        initializer: Optional[Initializer] = None,
        move: Optional[Move] = None,
        objective: Optional[Objective] = None,
        cooling_schedule: Optional[CoolingSchedule] = None,
        rng: Optional[np.random.Generator] = None
    ):
        self.problem = problem
        self.params = params
        self.initializer = initializer or RandomInitializer()
        self.move = move or NeighborGenerator(problem)
        self.objective = objective or ObjectiveEvaluator(problem)
        self.cooling_schedule = cooling_schedule or params.cooling_schedule()
        self.rng = rng if rng is not None else np.random.default_rng(params.seed)

        self.state = OptimizerState.INIT
        self.iteration = 0
        self.convergence_counter = params.change_iterations

    def acceptance_probability(self, fx: float, fy: float, iteration: int) -> float:
        """Metropolis probability of moving from fitness fx to a worse fy."""
        temperature = self.cooling_schedule(iteration, self.params.iterations)
        if temperature <= 0:
            return 0.0
        return math.exp((fx - fy) / temperature)

    def accepts_worse(self, fx: float, fy: float, iteration: int) -> bool:
        return self.rng.random() < self.acceptance_probability(fx, fy, iteration)

    def _objective_name(self) -> str:
        if hasattr(self.objective, "objectives"):
            return self.objective.objectives()[0].name
        return type(self.objective).__name__

    def _update_convergence(self, fx: float, fy: float) -> None:
        epsilon = (fx - fy) / abs(fx) if fx != 0.0 else 1.0
        if epsilon < self.params.delta:
            self.convergence_counter -= 1
        else:
            self.convergence_counter = self.params.change_iterations

    def run(
        self,
        progress_callback: Optional[Callable[[int, float], None]] = None
    ) -> OptimizationResult:
        """Run the annealing loop until convergence or the iteration budget."""
        start_time = time.time()

        # INIT
        self.state = OptimizerState.INIT
        self.convergence_counter = self.params.change_iterations
        x = self.initializer.create(self.problem, self.rng)
        fx = self.objective.evaluate(x)

        best, best_fitness = x.copy(), fx
        history = [fx]
        accepted = 0
        rejected = 0

        self.state = OptimizerState.RUNNING
        i = 1
        while i < self.params.iterations and self.convergence_counter > 0:
            y = x.copy()
            self.move.neighbor(y, self.rng)
            fy = self.objective.evaluate(y)

            if fy > best_fitness:
                best, best_fitness = y.copy(), fy

            if fy <= fx:
                switch = True
                self._update_convergence(fx, fy)
            else:
                switch = self.accepts_worse(fx, fy, i)

            if switch:
                x, fx = y, fy
                accepted += 1
            else:
                rejected += 1

            history.append(fx)
            if progress_callback:
                progress_callback(i, fx)

            i += 1

        self.iteration = i - 1
        if self.convergence_counter <= 0:
            self.state = OptimizerState.CONVERGED
        else:
            self.state = OptimizerState.EXHAUSTED

        elapsed = time.time() - start_time

        report = None
        if isinstance(self.objective, ObjectiveEvaluator):
            report = self.objective.feasibility(best)

        return OptimizationResult(
            best=best,
            best_fitness=best_fitness,
            current=x,
            current_fitness=fx,
            state=self.state,
            iterations=self.iteration,
            profit=best.profit(),
            produced_products=best.produced_products(),
            required_assets=best.required_assets(),
            asset_importance=best.asset_importance(),
            feasibility=report,
            fitness_history=history,
            accepted=accepted,
            rejected=rejected,
            objective_name=self._objective_name(),
            elapsed_seconds=elapsed
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def run_spl_annealing(
    problem: SPLProblemDescription,
    params: AnnealingParams,
    rng: Optional[np.random.Generator] = None,
    progress_callback: Optional[Callable[[int, float], None]] = None
) -> OptimizationResult:
    """Convenience function to run the product line annealing."""
    optimizer = SPLSimulatedAnnealing(problem, params, rng=rng)
    return optimizer.run(progress_callback)
