"""
Coordinate-ascent updates for variational Bayesian variable selection (logistic regression).

Binary-outcome counterpart of model_varbvs.py. The logistic likelihood factors are replaced
by the Jaakkola-Jordan quadratic lower bound with free parameters eta (one per sample); for
a fixed eta the bound is Gaussian in the coefficients, so the same spike-and-slab update
applies with the sufficient statistics produced by update_stats(). As in the linear case,
Xr = X @ (alpha * mu) is maintained incrementally.
"""
from __future__ import annotations
import logging
import numpy as np
from scipy.linalg.blas import daxpy, ddot
from scipy.special import expit
from typing import Optional, Dict, Sequence, Tuple, Union

from .errors import InvalidParameter
from .model_varbvs import (compute_Xty, diagsq, sigmoid, init_setup, _check_positive, _check_design,
                           _check_vector, _check_state_vector, _check_distinct, _check_order,
                           _column_major)

logger = logging.getLogger(__name__)

def slope(eta: np.ndarray) -> np.ndarray:
    """Slope of the conjugate, (sigmoid(eta) - 0.5) / eta, equal to 1/4 at eta = 0."""
    eta = np.asarray(eta, float)
    zero = eta == 0
    return np.where(zero, 0.25, (expit(eta) - 0.5) / np.where(zero, 1.0, eta))

def update_stats(X: np.ndarray, y: np.ndarray, eta: np.ndarray) -> Dict[str, np.ndarray]:
    """Sufficient statistics of the bound-approximated logistic model.

    Parameters
    ----------
    X : ndarray (n, p)
    y : ndarray (n,)
        Binary outcome.
    eta : ndarray (n,)
        Free parameters of the lower bound.

    Returns
    -------
    dict with d (n,) = slope(eta), yhat (n,), xy = X.T @ yhat, xd = X.T @ d and
    xdx (p,), the diagonal of X.T @ (D - d d.T / sum(d)) @ X with D = diag(d).
    The intercept is integrated out analytically, which is where beta0 and the
    sum(d) corrections come from.
    """
    X = _check_design(X)
    n = X.shape[0]
    y = _check_vector("y", y, n, "n")
    eta = _check_vector("eta", eta, n, "n")
    d = slope(eta)
    sumd = np.sum(d)
    beta0 = np.sum(y - 0.5) / sumd
    yhat = y - 0.5 - beta0 * d
    xy = compute_Xty(X, yhat)
    xd = compute_Xty(X, d)
    xdx = diagsq(X, d) - xd**2 / sumd
    return dict(d=d, yhat=yhat, xy=xy, xd=xd, xdx=xdx)

def _prepare_bin(X, sa, logodds, stats, alpha, mu, Xr, i) -> Tuple:
    sa = _check_positive("sa", sa)
    X = _check_design(X)
    n, p = X.shape
    logodds = _check_vector("logodds", logodds, p, "p")
    d = _check_vector("stats['d']", stats["d"], n, "n")
    xy = _check_vector("stats['xy']", stats["xy"], p, "p")
    xd = _check_vector("stats['xd']", stats["xd"], p, "p")
    xdx = _check_vector("stats['xdx']", stats["xdx"], p, "p")
    if not np.all(d > 0):
        raise InvalidParameter("stats['d'] must be positive; recompute it with update_stats()")
    _check_state_vector("alpha", alpha, p, "p")
    _check_state_vector("mu", mu, p, "p")
    _check_state_vector("Xr", Xr, n, "n")
    _check_distinct(alpha, mu, Xr)
    order = _check_order(i, p)
    return X, sa, logodds, d, xy, xd, xdx, alpha, mu, Xr, order

def _run_bin(X, sa, logodds, d, xy, xd, xdx, alpha, mu, Xr, order) -> None:
    n, p = X.shape
    logger.debug("varbvsbinupdate: %d updates, n=%d, p=%d", order.size, n, p)
    s = sa / (sa * xdx + 1)
    sumd = np.sum(d)
    for j in order:
        xj = X[:, j]
        r = alpha[j] * mu[j]
        mu[j] = s[j] * (xy[j] + xdx[j] * r + xd[j] * ddot(d, Xr) / sumd - ddot(d * xj, Xr))
        alpha[j] = sigmoid(logodds[j] + (np.log(s[j] / sa) + mu[j]**2 / s[j]) / 2)
        Xr[:] = daxpy(xj, Xr, a=alpha[j] * mu[j] - r)

def varbvsbinupdate(X: np.ndarray, sa: float, logodds: np.ndarray, stats: Dict[str, np.ndarray],
                    alpha: np.ndarray, mu: np.ndarray, Xr: np.ndarray, i: Sequence[int]) -> None:
    """Run one sweep of coordinate-ascent updates for the logistic regression model.

    stats is the dict returned by update_stats(X, y, eta). alpha, mu and Xr are updated in
    place in the order given by i, exactly as in varbvsnormupdate; there is no residual
    variance in the logistic model.
    """
    _run_bin(*_prepare_bin(X, sa, logodds, stats, alpha, mu, Xr, i))

class VarBVSBin:
    """Posterior state of one logistic variable-selection model; see VarBVS."""
    def __init__(self, sa: float, logodds: Union[float, np.ndarray] = 0.0):
        self.sa = _check_positive("sa", sa)
        self.logodds = logodds
        self.X: Optional[np.ndarray] = None
        self.y: Optional[np.ndarray] = None
        self.eta: Optional[np.ndarray] = None
        self.params: Optional[Dict[str, object]] = None
        self.stats: Optional[Dict[str, np.ndarray]] = None
        self.state: Optional[Dict[str, np.ndarray]] = None
        self.nsweeps: int = 0
    def setup(self, X: np.ndarray, y: np.ndarray, eta: Optional[np.ndarray] = None,
              alpha: Optional[np.ndarray] = None, mu: Optional[np.ndarray] = None) -> "VarBVSBin":
        X = _column_major(X)
        if not np.all(np.isfinite(X)): raise ValueError("X contains non-finite values (NaN/Inf).")
        n, p = X.shape
        y = _check_vector("y", y, n, "n")
        if not np.all((y == 0) | (y == 1)): raise ValueError("y must be binary (0 or 1).")
        logodds = np.repeat(float(self.logodds), p) if np.ndim(self.logodds) == 0 else self.logodds
        # nothing is replaced until the new X, statistics and state have all validated
        params = dict(sa=self.sa, logodds=_check_vector("logodds", logodds, p, "p"))
        eta = _check_vector("eta", np.zeros(n) if eta is None else eta, n, "n").copy()
        stats = update_stats(X, y, eta)
        state = init_setup(X, alpha=alpha, mu=mu)
        self.X, self.y, self.eta, self.params, self.stats, self.state = X, y, eta, params, stats, state
        self.nsweeps = 0
        return self
    def set_eta(self, eta: np.ndarray) -> "VarBVSBin":
        """Replace the bound parameters and recompute the sufficient statistics."""
        if self.X is None:
            raise RuntimeError("Call setup() before set_eta().")
        eta = _check_vector("eta", eta, self.X.shape[0], "n").copy()
        self.stats = update_stats(self.X, self.y, eta)
        self.eta = eta
        return self
    def sweep(self, order: Optional[Sequence[int]] = None, reverse: bool = False) -> "VarBVSBin":
        if self.state is None:
            raise RuntimeError("Call setup() before sweep().")
        if order is None:
            order = np.arange(self.X.shape[1])
        if reverse:
            order = np.asarray(order)[::-1]
        alpha0 = self.state["alpha"].copy()
        varbvsbinupdate(self.X, self.sa, self.params["logodds"], self.stats,
                        self.state["alpha"], self.state["mu"], self.state["Xr"], order)
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
