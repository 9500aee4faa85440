"""
SPLOPT Main Orchestrator
Builds a problem instance, runs the annealing and prepares the reports

This module provides a clean entry point for running the complete pipeline:
1. Build the problem instance (paper example, small example or random)
2. Run one or more independently seeded annealing runs (multi-start)
3. Keep the run with the highest best fitness
4. Export results as tables and CSV

Reports:
- Assignment table: one row per segment, one column per product, plus a
  price row (the layout of the original solution viewer)
- Asset importance: assets ranked by the profit left without them
- Product summary: price, bounds, segments served and margin per product
"""

import numpy as np
import pandas as pd
from typing import List, Optional, Callable
from dataclasses import dataclass
import time

from splopt_core import (
    CoolingScheduleType, AnnealingParams, OptimizationResult,
    SPLProblemDescription, SPLSimulatedAnnealing
)
from splopt_instances import ProblemSelection, build_problem, describe_problem


# =============================================================================
# MULTI-START
# =============================================================================

def run_multi_start(
    problem: SPLProblemDescription,
    params: AnnealingParams,
    num_starts: int = 1,
    progress_callback: Optional[Callable[[str], None]] = None
) -> List[OptimizationResult]:
    """
    Run num_starts independent annealing runs on one problem.

    Each run draws from its own child stream spawned from params.seed, so
    the whole batch is reproducible and runs never share random state.
    """
    if num_starts < 1:
        raise ValueError(f"num_starts must be at least 1, got {num_starts}")

    streams = np.random.SeedSequence(params.seed).spawn(num_starts)

    results = []
    for start, stream in enumerate(streams):
        if progress_callback:
            progress_callback(f"Start {start + 1}/{num_starts}...")

        optimizer = SPLSimulatedAnnealing(problem, params, rng=np.random.default_rng(stream))
        result = optimizer.run()
        results.append(result)

        if progress_callback:
            progress_callback(
                f"Start {start + 1}: {result.state.name} after {result.iterations} iterations, "
                f"best fitness {result.best_fitness:.2f}"
            )

    return results


def select_best_run(results: List[OptimizationResult]) -> OptimizationResult:
    """Run with the highest best fitness; the first one wins ties."""
    if not results:
        raise ValueError("No optimization results to choose from")
    best = results[0]
    for result in results[1:]:
        if result.best_fitness > best.best_fitness:
            best = result
    return best


# =============================================================================
# REPORTING TABLES
# =============================================================================

def assignment_table(result: OptimizationResult) -> pd.DataFrame:
    """Segment x product assignment of the best candidate with a price row."""
    candidate = result.best
    columns = [f"P{j}" for j in range(candidate.problem.num_products)]

    df = pd.DataFrame(candidate.x.astype(int), columns=columns)
    df.insert(0, 'segment', [f"Seg{i}" for i in range(candidate.problem.num_segments)])

    price_row = pd.DataFrame([['Price'] + candidate.p.tolist()], columns=['segment'] + columns)
    return pd.concat([df, price_row], ignore_index=True)


def asset_importance_table(result: OptimizationResult) -> pd.DataFrame:
    """Assets ordered by importance (lowest remaining profit first)."""
    problem = result.best.problem
    rows = []
    for rank, item in enumerate(result.asset_importance):
        rows.append({
            'rank': rank + 1,
            'asset': item.asset,
            'profit_without_asset': item.profit,
            'profit_loss': result.profit - item.profit,
            'asset_cost': problem.firm.ca[item.asset],
            'required': bool(result.required_assets[item.asset]),
        })
    return pd.DataFrame(rows, columns=[
        'rank', 'asset', 'profit_without_asset', 'profit_loss', 'asset_cost', 'required'
    ])


def product_summary_table(result: OptimizationResult) -> pd.DataFrame:
    """Price, bounds and demand per product of the best candidate."""
    candidate = result.best
    problem = candidate.problem
    served = candidate.x.sum(axis=0)
    units = (candidate.x * problem.customer.q[:, np.newaxis]).sum(axis=0)

    rows = []
    for j in range(problem.num_products):
        rows.append({
            'product': f"P{j}",
            'produced': bool(result.produced_products[j]),
            'price': candidate.p[j],
            'lower_bound': problem.lower_bound(j),
            'upper_bound': problem.upper_bound(j),
            'segments_served': int(served[j]),
            'units': int(units[j]),
            'contribution': float(units[j] * (candidate.p[j] - problem.firm.cv[j])),
            'fixed_cost': problem.firm.cf[j] if result.produced_products[j] else 0.0,
        })
    return pd.DataFrame(rows)


def export_assignment_csv(result: OptimizationResult) -> str:
    return assignment_table(result).to_csv(index=False)


def export_asset_importance_csv(result: OptimizationResult) -> str:
    return asset_importance_table(result).to_csv(index=False)


def export_product_summary_csv(result: OptimizationResult) -> str:
    return product_summary_table(result).to_csv(index=False)


def export_multi_start_csv(results: List[OptimizationResult]) -> str:
    """One row per annealing run of a multi-start batch."""
    rows = []
    for start, result in enumerate(results):
        rows.append({
            'start': start + 1,
            'state': result.state.name,
            'iterations': result.iterations,
            'best_fitness': round(result.best_fitness, 4),
            'profit': round(result.profit, 4),
            'accepted': result.accepted,
            'rejected': result.rejected,
            'time_seconds': round(result.elapsed_seconds, 3),
        })
    df = pd.DataFrame(rows)
    return df.to_csv(index=False)


# =============================================================================
# MAIN PIPELINE ORCHESTRATOR
# =============================================================================

@dataclass
class SPLPipelineConfig:
    """Configuration for the full SPLOPT pipeline."""
    # Problem instance
    problem_selection: ProblemSelection = ProblemSelection.PAPER
    num_segments: int = 5
    num_products: int = 20
    num_assets: int = 30
    price_level: float = 100.0
    price_steps: int = 100

    # Annealing settings
    iterations: int = 10000
    delta: float = 0.01
    change_iterations: int = 1000
    cooling: CoolingScheduleType = CoolingScheduleType.LINEAR
    initial_temperature: float = 10.0
    final_temperature: float = 0.01
    alpha: float = 0.995

    # Multi-start
    num_starts: int = 1

    # Random seed
    seed: int = 42

    def __post_init__(self):
        if self.num_starts < 1:
            raise ValueError(f"num_starts must be at least 1, got {self.num_starts}")

    def annealing_params(self) -> AnnealingParams:
        return AnnealingParams(
            iterations=self.iterations,
            delta=self.delta,
            change_iterations=self.change_iterations,
            cooling=self.cooling,
            initial_temperature=self.initial_temperature,
            final_temperature=self.final_temperature,
            alpha=self.alpha,
            seed=self.seed
        )


@dataclass
class SPLPipelineResult:
    """Complete results from the SPLOPT pipeline."""
    problem: SPLProblemDescription
    optimization_result: OptimizationResult
    runs: List[OptimizationResult]

    # Exports
    assignment_csv: str
    asset_importance_csv: str
    product_summary_csv: str
    runs_csv: str

    # Timing
    total_elapsed_seconds: float = 0.0


def run_spl_pipeline(
    config: SPLPipelineConfig,
    progress_callback: Optional[Callable[[str], None]] = None
) -> SPLPipelineResult:
    """
    Run the complete SPLOPT pipeline.

    Steps:
    1. Build the problem instance
    2. Run the annealing (once per start)
    3. Pick the best run
    4. Generate export CSVs
    """
    start_time = time.time()

    # Step 1: Problem instance
    if progress_callback:
        progress_callback(f"Building {config.problem_selection.name} problem...")

    problem = build_problem(
        config.problem_selection,
        num_segments=config.num_segments,
        num_products=config.num_products,
        num_assets=config.num_assets,
        price_level=config.price_level,
        price_steps=config.price_steps,
        seed=config.seed
    )

    # Step 2: Annealing
    if progress_callback:
        progress_callback("Running simulated annealing...")

    runs = run_multi_start(
        problem, config.annealing_params(), config.num_starts,
        progress_callback=progress_callback
    )

    # Step 3: Best run
    best = select_best_run(runs)

    # Step 4: Exports
    if progress_callback:
        progress_callback("Generating export files...")

    total_elapsed = time.time() - start_time

    return SPLPipelineResult(
        problem=problem,
        optimization_result=best,
        runs=runs,
        assignment_csv=export_assignment_csv(best),
        asset_importance_csv=export_asset_importance_csv(best),
        product_summary_csv=export_product_summary_csv(best),
        runs_csv=export_multi_start_csv(runs),
        total_elapsed_seconds=total_elapsed
    )


# =============================================================================
# COMMAND LINE INTERFACE
# =============================================================================

def print_results(result: SPLPipelineResult):
    """Print summary of pipeline results."""
    opt = result.optimization_result

    print("\n" + "=" * 60)
    print("SPLOPT PIPELINE RESULTS")
    print("=" * 60)

    print(f"\n[Problem]")
    print(f"  Segments: {result.problem.num_segments}")
    print(f"  Products: {result.problem.num_products}")
    print(f"  Assets: {result.problem.num_assets}")

    print(f"\n[Optimization Results]")
    print(f"  Objective: {opt.objective_name}")
    print(f"  Termination: {opt.state.name}")
    print(f"  Iterations: {opt.iterations}")
    print(f"  Best fitness: {opt.best_fitness:,.2f}")
    print(f"  Profit: ${opt.profit:,.2f}")
    if opt.feasibility is not None:
        print(f"  Segments lost to competitors: {opt.feasibility.competitor_loss}")
        print(f"  Sub-optimally served segments: {opt.feasibility.suboptimal_assignment}")
    print(f"  Accepted/rejected moves: {opt.accepted}/{opt.rejected}")
    print(f"  Time: {opt.elapsed_seconds:.2f}s")

    print(f"\n[Best Product Line]")
    print(f"  Produced: {np.flatnonzero(opt.produced_products).tolist()}")
    print(f"  Required assets: {np.flatnonzero(opt.required_assets).tolist()}")
    print(assignment_table(opt).to_string(index=False))

    print(f"\n[Asset Importance]")
    for item in opt.asset_importance:
        print(f"  Asset {item.asset}: profit without it {item.profit:,.2f}")

    if len(result.runs) > 1:
        print(f"\n[Multi-Start]")
        print("-" * 60)
        for start, run in enumerate(result.runs):
            print(f"  Start {start + 1}: {run.state.name}, best fitness {run.best_fitness:,.2f}")

    print(f"\n[Total Pipeline Time: {result.total_elapsed_seconds:.2f}s]")
    print("=" * 60)


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    print("SPLOPT Main Orchestrator v1.0")
    print("=" * 60)

    config = SPLPipelineConfig(
        problem_selection=ProblemSelection.PAPER,
        iterations=10000,
        delta=0.01,
        change_iterations=1000,
        cooling=CoolingScheduleType.LINEAR,
        num_starts=3,
        seed=42
    )

    result = run_spl_pipeline(
        config,
        progress_callback=lambda msg: print(f"  {msg}")
    )

    print(describe_problem(result.problem))
    print_results(result)

    with open("assignment.csv", "w") as f:
        f.write(result.assignment_csv)
    print("\nSaved: assignment.csv")

    with open("asset_importance.csv", "w") as f:
        f.write(result.asset_importance_csv)
    print("Saved: asset_importance.csv")

    with open("product_summary.csv", "w") as f:
        f.write(result.product_summary_csv)
    print("Saved: product_summary.csv")

    with open("runs.csv", "w") as f:
        f.write(result.runs_csv)
    print("Saved: runs.csv")

    print("\nPipeline complete!")
