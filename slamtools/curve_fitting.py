"""Fitting y = exp(a x^2 + b x + c) to noisy samples by nonlinear least squares."""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)

_LM_TAU = 1e-5
_LM_MAX_TRIES = 10


@dataclass
class FitResult:
    """Outcome of a fit.

    ``cost`` is the sum of squared residuals at ``params``; ``history`` holds
    the cost seen at each accepted iteration.
    """

    params: np.ndarray
    cost: float
    iterations: int
    history: list[float] = field(default_factory=list)
    stop_reason: str = "max_iterations"


def _params(params) -> np.ndarray:
    arr = np.array(params, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"expected three parameters, got shape {arr.shape}")
    return arr


def model(params, x) -> np.ndarray:
    """Evaluate exp(a x^2 + b x + c)."""
    a, b, c = _params(params)
    x = np.asarray(x, dtype=float)
    return np.exp(a * x * x + b * x + c)


def generate_data(n=100, a=1.0, b=2.0, c=1.0, sigma=1.0, seed=None):
    """Samples at x = i / 100 with Gaussian noise of standard deviation sigma**2."""
    if n < 0:
        raise ValueError("number of samples must not be negative")
    rng = np.random.default_rng(seed)
    x = np.arange(n) / 100.0
    y = model((a, b, c), x) + rng.normal(0.0, sigma * sigma, size=n)
    return x, y


def _check_data(x_data, y_data, sigma) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(x_data, dtype=float).reshape(-1)
    y = np.asarray(y_data, dtype=float).reshape(-1)
    if x.shape != y.shape:
        raise ValueError("x and y data must have the same length")
    if x.size == 0:
        raise ValueError("no data to fit")
    if sigma <= 0:
        raise ValueError("sigma must be positive")
    return x, y


def _linearize(params: np.ndarray, x: np.ndarray, y: np.ndarray):
    f = model(params, x)
    error = y - f
    jacobian = -np.column_stack([x * x * f, x * f, f])
    return error, jacobian


def _solve(h: np.ndarray, g: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.solve(h, g)
    except np.linalg.LinAlgError:
        return np.full_like(g, np.nan)


def _cost(params, x, y) -> float:
    e = y - model(params, x)
    return float(e @ e)


def gauss_newton(x_data, y_data, initial=INITIAL_PARAMS, iterations=100, sigma=1.0) -> FitResult:
    """Plain Gauss-Newton; stops when the step is not finite or the cost stops falling."""
    x, y = _check_data(x_data, y_data, sigma)
    params = _params(initial).copy()
    weight = 1.0 / (sigma * sigma)
    history: list[float] = []
    last_cost = 0.0
    reason = "max_iterations"
    for iteration in range(iterations):
        error, jac = _linearize(params, x, y)
        h = weight * (jac.T @ jac)
        g = -weight * (jac.T @ error)
        cost = float(error @ error)
        dx = _solve(h, g)
        if not np.all(np.isfinite(dx)):
            reason = "nan"
            break
        if iteration > 0 and cost >= last_cost:
            reason = "cost_increased"
            break
        params += dx
        last_cost = cost
        history.append(cost)
    return FitResult(
        params=params,
        cost=_cost(params, x, y),
        iterations=len(history),
        history=history,
        stop_reason=reason,
    )


def levenberg_marquardt(
    x_data, y_data, initial=INITIAL_PARAMS, iterations=50, sigma=1.0
) -> FitResult:
    """Levenberg-Marquardt with a trust-region style damping update."""
    x, y = _check_data(x_data, y_data, sigma)
    params = _params(initial).copy()
    weight = 1.0 / (sigma * sigma)
    error, jac = _linearize(params, x, y)
    chi2 = weight * float(error @ error)
    lam = _LM_TAU * float(np.max(np.diag(weight * (jac.T @ jac))))
    nu = 2.0
    history: list[float] = []
    reason = "max_iterations"
    for _ in range(iterations):
        error, jac = _linearize(params, x, y)
        h = weight * (jac.T @ jac)
        g = weight * (jac.T @ error)
        accepted = False
        dx = np.zeros(3)
        for _ in range(_LM_MAX_TRIES):
            dx = _solve(h + lam * np.eye(3), -g)
            if np.all(np.isfinite(dx)):
                candidate = params + dx
                chi2_new = weight * _cost(candidate, x, y)
                scale = float(dx @ (lam * dx - g)) + 1e-3
                rho = (chi2 - chi2_new) / scale
                if np.isfinite(chi2_new) and rho > 0:
                    params = candidate
                    chi2 = chi2_new
                    alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, 2.0 / 3.0)
                    lam *= max(1.0 / 3.0, alpha)
                    nu = 2.0
                    accepted = True
                    break
            lam *= nu
            nu *= 2.0
        if not accepted:
            reason = "no_improvement"
            break
        history.append(chi2)
        if np.linalg.norm(dx) < 1e-12 * (np.linalg.norm(params) + 1e-12):
            reason = "converged"
            break
    return FitResult(
        params=params,
        cost=_cost(params, x, y),
        iterations=len(history),
        history=history,
        stop_reason=reason,
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="curve-fitting",
        description="Fit y = exp(a x^2 + b x + c) to generated noisy data.",
    )
    parser.add_argument(
        "--method", choices=("gauss-newton", "levenberg-marquardt"), default="gauss-newton"
    )
    parser.add_argument("--iterations", type=int, default=None)
    parser.add_argument("-n", "--samples", type=int, default=100)
    parser.add_argument("--sigma", type=float, default=1.0)
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args(argv)

    x, y = generate_data(args.samples, *TRUE_PARAMS, sigma=args.sigma, seed=args.seed)
    start = time.perf_counter()
    try:
        if args.method == "gauss-newton":
            result = gauss_newton(
                x, y, INITIAL_PARAMS, args.iterations or 100, args.sigma
            )
        else:
            result = levenberg_marquardt(
                x, y, INITIAL_PARAMS, args.iterations or 50, args.sigma
            )
    except ValueError as exc:
        print(f"error: {exc}")
        return 1
    elapsed = time.perf_counter() - start

    for cost in result.history:
        print(f"total cost: {cost:g}")
    if result.stop_reason == "nan":
        print("result is nan!")
    elif result.stop_reason == "cost_increased":
        print("cost stopped decreasing, break.")
    print(f"solve time cost = {elapsed:g} seconds. ")
    a, b, c = result.params
    print(f"estimated abc = {a:g}, {b:g}, {c:g}")
    return 0