"""
Coordinate-ascent updates for variational Bayesian variable selection (linear regression).

This module implements the single-sweep update of the fully-factorized variational
approximation to the posterior of a linear regression model with spike-and-slab priors.
Each predictor j carries a posterior inclusion probability alpha[j] and a posterior mean
mu[j] (given inclusion); the fitted values Xr = X @ (alpha * mu) are maintained
incrementally, one column at a time. It also provides the sufficient-statistic helpers,
a dict-based interface for parameters/statistics/state, a concurrent driver for independent
candidate states, and the VarBVS wrapper class.
"""
from __future__ import annotations
import logging
import numpy as np
from joblib import Parallel, delayed
from scipy.linalg.blas import daxpy, ddot
from typing import Optional, Dict, Any, List, Sequence, Tuple, Union

from .errors import InvalidParameter, DimensionMismatch, IndexOutOfRange

logger = logging.getLogger(__name__)

# Utility linear algebra helpers

def compute_Xb(X: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Compute X @ b.

    Parameters
    ----------
    X : ndarray (n, p)
    b : ndarray (p,)
    Returns
    -------
    ndarray (n,) result of matrix-vector product.
    """
    return X @ b

def compute_Xty(X: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Compute X.T @ y cross-product vector."""
    return X.T @ y

def diagsq(X: np.ndarray, a: Optional[np.ndarray] = None) -> np.ndarray:
    """Diagonal of X.T @ diag(a) @ X, i.e. sum_i a[i] * X[i, j]**2 for each column j.

    With a=None every row has weight one and the result is the column sums of squares.
    """
    X = np.asarray(X, float)
    if a is None:
        return np.sum(X**2, axis=0)
    return (X**2).T @ np.asarray(a, float)

def sigmoid(x: float) -> float:
    """Logistic function 1 / (1 + exp(-x)).

    For negative x the equivalent form exp(x) / (1 + exp(x)) is used, so the exponential
    is never evaluated at a positive argument and the result saturates to 0 or 1 instead
    of overflowing.
    """
    x = float(x)
    if x >= 0:
        return float(1.0 / (1.0 + np.exp(-x)))
    z = np.exp(x)
    return float(z / (1.0 + z))

def posterior_variance(sigma: float, sa: float, d: np.ndarray) -> np.ndarray:
    """Variance of the slab coefficient given inclusion, s = sa*sigma / (sa*d + 1)."""
    return sa * sigma / (sa * np.asarray(d, float) + 1)

# Input validation shared by the update passes

def _check_positive(name: str, value: float) -> float:
    value = float(value)
    if not (np.isfinite(value) and value > 0):
        raise InvalidParameter(f"{name} must be a finite positive number, got {value}")
    return value

def _check_design(X: np.ndarray) -> np.ndarray:
    """Return X as a float64 array without copying one that already is."""
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise DimensionMismatch(f"X must be a 2D array, got {X.ndim} dimension(s)")
    return X

def _column_major(X: np.ndarray) -> np.ndarray:
    """Column-major copy of X for long-lived storage, so that each column is contiguous."""
    return np.asfortranarray(_check_design(X))

def _check_vector(name: str, v, size: int, dim: str) -> np.ndarray:
    arr = np.asarray(v, dtype=np.float64)
    if arr.ndim != 1 or arr.shape[0] != size:
        raise DimensionMismatch(f"{name} must be a vector of length {dim}={size}, got shape {arr.shape}")
    return arr

def _check_state_vector(name: str, v, size: int, dim: str) -> np.ndarray:
    if not isinstance(v, np.ndarray) or v.dtype != np.float64 or not v.flags.writeable:
        raise TypeError(f"{name} must be a writable float64 ndarray so it can be updated in place")
    if v.ndim != 1 or v.shape[0] != size:
        raise DimensionMismatch(f"{name} must be a vector of length {dim}={size}, got shape {v.shape}")
    return v

def _check_distinct(alpha: np.ndarray, mu: np.ndarray, Xr: np.ndarray) -> None:
    named = (("alpha", alpha), ("mu", mu), ("Xr", Xr))
    for a in range(3):
        for b in range(a + 1, 3):
            if np.may_share_memory(named[a][1], named[b][1]):
                raise ValueError(f"{named[a][0]} and {named[b][0]} must not share memory")

def _check_order(i, p: int) -> np.ndarray:
    idx = np.asarray(i)
    if idx.size == 0:
        return np.zeros(0, dtype=np.intp)
    if idx.ndim != 1:
        raise DimensionMismatch(f"order must be a 1D sequence of indices, got shape {idx.shape}")
    if not np.issubdtype(idx.dtype, np.integer):
        raise IndexOutOfRange(f"order must contain integer indices, got dtype {idx.dtype}")
    bad = (idx < 0) | (idx >= p)
    if np.any(bad):
        raise IndexOutOfRange(f"order entry {int(idx[bad][0])} is outside [0, {p})")
    return idx.astype(np.intp)

# Coordinate update pass

def _prepare_norm(X, sigma, sa, logodds, xy, d, alpha, mu, Xr, i) -> Tuple:
    sigma = _check_positive("sigma", sigma)
    sa = _check_positive("sa", sa)
    X = _check_design(X)
    n, p = X.shape
    logodds = _check_vector("logodds", logodds, p, "p")
    xy = _check_vector("xy", xy, p, "p")
    d = _check_vector("d", d, p, "p")
    if np.any(d < 0):
        raise InvalidParameter("d must be non-negative (column sums of squares)")
    _check_state_vector("alpha", alpha, p, "p")
    _check_state_vector("mu", mu, p, "p")
    _check_state_vector("Xr", Xr, n, "n")
    _check_distinct(alpha, mu, Xr)
    order = _check_order(i, p)
    return X, sigma, sa, logodds, xy, d, alpha, mu, Xr, order

def _run_norm(X, sigma, sa, logodds, xy, d, alpha, mu, Xr, order) -> None:
    n, p = X.shape
    logger.debug("varbvsnormupdate: %d updates, n=%d, p=%d", order.size, n, p)
    s = posterior_variance(sigma, sa, d)
    for j in order:
        xj = X[:, j]
        r = alpha[j] * mu[j]
        # xy[j] + d[j]*r - x_j'Xr removes every other predictor's contribution from Xr.
        mu[j] = s[j] / sigma * (xy[j] + d[j] * r - ddot(xj, Xr))
        alpha[j] = sigmoid(logodds[j] + (np.log(s[j] / (sa * sigma)) + mu[j]**2 / s[j]) / 2)
        Xr[:] = daxpy(xj, Xr, a=alpha[j] * mu[j] - r)

def varbvsnormupdate(X: np.ndarray, sigma: float, sa: float, logodds: np.ndarray, xy: np.ndarray,
                     d: np.ndarray, alpha: np.ndarray, mu: np.ndarray, Xr: np.ndarray,
                     i: Sequence[int]) -> None:
    """Run one sweep of coordinate-ascent updates for the linear regression model.

    Parameters
    ----------
    X : ndarray (n, p)
        Design matrix; rows are observations, columns are variables.
    sigma : float
        Residual variance, > 0.
    sa : float
        Prior variance of the slab, > 0.
    logodds : ndarray (p,)
        Prior log-odds of inclusion for each variable.
    xy : ndarray (p,)
        X.T @ y.
    d : ndarray (p,)
        Diagonal of X.T @ X.
    alpha, mu : ndarray (p,)
        Posterior inclusion probabilities and posterior means, updated in place.
    Xr : ndarray (n,)
        X @ (alpha * mu) on entry; kept equal to it after every update, in place.
    i : sequence of int
        Variables to update, in order. May be a subset or contain repeats.

    The variables are updated strictly in the given order, each update seeing Xr as left
    by the previous one. All inputs are validated before anything is modified.
    """
    _run_norm(*_prepare_norm(X, sigma, sa, logodds, xy, d, alpha, mu, Xr, i))

# Parameter, statistic and state dicts

def compute_stats(X: np.ndarray, y: np.ndarray) -> Dict[str, np.ndarray]:
    """Return sufficient statistics xy = X.T @ y and d = diag(X.T @ X)."""
    X = _check_design(X)
    y = _check_vector("y", y, X.shape[0], "n")
    return dict(xy=compute_Xty(X, y), d=diagsq(X))

def init_params(sigma: float, sa: float, logodds: Union[float, np.ndarray], p: int) -> Dict[str, Any]:
    """Validate hyperparameters; a scalar logodds is shared by all p variables."""
    sigma = _check_positive("sigma", sigma)
    sa = _check_positive("sa", sa)
    if np.ndim(logodds) == 0:
        logodds = np.repeat(float(logodds), p)
    logodds = _check_vector("logodds", logodds, p, "p")
    return dict(sigma=sigma, sa=sa, logodds=logodds)

def init_setup(X: np.ndarray, alpha: Optional[np.ndarray] = None,
               mu: Optional[np.ndarray] = None) -> Dict[str, np.ndarray]:
    """Create the posterior state (alpha, mu, Xr), zero-initialized or warm-started.

    Warm-start vectors are copied, so the returned state never aliases the caller's arrays.
    """
    X = _check_design(X)
    n, p = X.shape
    alpha = np.zeros(p) if alpha is None else np.array(alpha, dtype=np.float64)
    mu = np.zeros(p) if mu is None else np.array(mu, dtype=np.float64)
    _check_vector("alpha", alpha, p, "p")
    _check_vector("mu", mu, p, "p")
    if not np.all((alpha >= 0) & (alpha <= 1)):
        raise InvalidParameter("alpha must lie in [0, 1]")
    if not np.all(np.isfinite(mu)):
        raise InvalidParameter("mu contains non-finite values (NaN/Inf).")
    Xr = np.ascontiguousarray(compute_Xb(X, alpha * mu), dtype=np.float64)
    return dict(alpha=alpha, mu=mu, Xr=Xr)

def _prepare_pass(X: np.ndarray, params: Dict[str, Any], stats: Dict[str, Any], state: Dict[str, Any],
                  order: Optional[Sequence[int]]) -> Tuple:
    if order is None:
        order = np.arange(np.shape(state["alpha"])[0])
    return _prepare_norm(X, params["sigma"], params["sa"], params["logodds"], stats["xy"], stats["d"],
                         state["alpha"], state["mu"], state["Xr"], order)

def update_pass(X: np.ndarray, params: Dict[str, Any], stats: Dict[str, Any], state: Dict[str, Any],
                order: Optional[Sequence[int]] = None) -> Dict[str, Any]:
    """Apply varbvsnormupdate to a state dict (in place) and return it.

    params needs keys sigma, sa, logodds; stats needs xy, d; state needs alpha, mu, Xr.
    The default order is 0, 1, ..., p-1.
    """
    _run_norm(*_prepare_pass(X, params, stats, state, order))
    return state

def update_candidates(X: np.ndarray, stats: Dict[str, Any], candidates: List[Tuple[Dict[str, Any], Dict[str, Any]]],
                      order: Optional[Sequence[int]] = None, n_jobs: int = 1) -> List[Dict[str, Any]]:
    """Run one pass for each (params, state) candidate, concurrently on worker threads.

    X and stats are shared read-only by all workers; every state must own its arrays.
    All candidates are validated before any of them is updated.
    """
    X = _column_major(X)
    states = [state for _, state in candidates]
    keys = ("alpha", "mu", "Xr")
    for a in range(len(states)):
        for b in range(a + 1, len(states)):
            if any(np.may_share_memory(states[a][k1], states[b][k2]) for k1 in keys for k2 in keys):
                raise ValueError(f"Candidates {a} and {b} share posterior state arrays")
    prepared = [_prepare_pass(X, params, stats, state, order) for params, state in candidates]
    logger.debug("update_candidates: %d candidates, n_jobs=%d", len(prepared), n_jobs)
    Parallel(n_jobs=n_jobs, prefer="threads")(delayed(_run_norm)(*args) for args in prepared)
    return states

class VarBVS:
    """Posterior state of one variable-selection model and the sweeps applied to it.

    The class holds the hyperparameters, the sufficient statistics of (X, y) and the
    variational parameters alpha, mu together with Xr = X @ (alpha * mu). It does not
    decide convergence: each call to sweep() runs exactly one pass.
    """
    def __init__(self, sigma: float, sa: float, logodds: Union[float, np.ndarray] = 0.0):
        self.sigma = _check_positive("sigma", sigma)
        self.sa = _check_positive("sa", sa)
        self.logodds = logodds
        self.X: Optional[np.ndarray] = None
        self.params: Optional[Dict[str, Any]] = None
        self.stats: Optional[Dict[str, np.ndarray]] = None
        self.state: Optional[Dict[str, np.ndarray]] = None
        self.nsweeps: int = 0
    def setup(self, X: np.ndarray, y: np.ndarray, alpha: Optional[np.ndarray] = None,
              mu: Optional[np.ndarray] = None) -> "VarBVS":
        X = _column_major(X)
        if not np.all(np.isfinite(X)): raise ValueError("X contains non-finite values (NaN/Inf).")
        y = _check_vector("y", y, X.shape[0], "n")
        if not np.all(np.isfinite(y)): raise ValueError("y contains non-finite values (NaN/Inf).")
        # nothing is replaced until the new X, statistics and state have all validated
        params = init_params(self.sigma, self.sa, self.logodds, X.shape[1])
        stats = compute_stats(X, y)
        state = init_setup(X, alpha=alpha, mu=mu)
        self.X, self.params, self.stats, self.state = X, params, stats, state
        self.nsweeps = 0
        return self
    def sweep(self, order: Optional[Sequence[int]] = None, reverse: bool = False) -> "VarBVS":
        """Run one pass over order (default: all variables ascending), optionally reversed."""
        if self.state is None:
            raise RuntimeError("Call setup() before sweep().")
        if order is None:
            order = np.arange(self.X.shape[1])
        if reverse:
            order = np.asarray(order)[::-1]
        alpha0 = self.state["alpha"].copy()
        update_pass(self.X, self.params, self.stats, self.state, order)
        self.nsweeps += 1
        logger.debug("sweep %d: max |change in alpha| = %.3e", self.nsweeps,
                     float(np.max(np.abs(self.state["alpha"] - alpha0), initial=0.0)))
        return self
    @property
    def alpha(self) -> Optional[np.ndarray]:
        return None if self.state is None else self.state["alpha"]
    @property
    def mu(self) -> Optional[np.ndarray]:
        return None if self.state is None else self.state["mu"]
    @property
    def Xr(self) -> Optional[np.ndarray]:
        return None if self.state is None else self.state["Xr"]
    @property
    def xy(self) -> Optional[np.ndarray]:
        return None if self.stats is None else self.stats["xy"]
    @property
    def d(self) -> Optional[np.ndarray]:
        return None if self.stats is None else self.stats["d"]
    @property
    def beta(self) -> Optional[np.ndarray]:
        """Posterior mean coefficients alpha * mu."""
        return None if self.state is None else self.state["alpha"] * self.state["mu"]
