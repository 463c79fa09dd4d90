import numpy as np
import pytest

from pyvarbvs import (varbvsbinupdate, update_stats, slope, init_setup, sigmoid, VarBVSBin,
                      InvalidParameter, DimensionMismatch, IndexOutOfRange)


def _make_data(n: int = 60, p: int = 5, seed: int = 0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, p))
    w = np.zeros(p)
    w[:2] = [2.0, -1.5]
    prob = 1.0 / (1.0 + np.exp(-(X @ w)))
    y = (rng.random(n) < prob).astype(float)
    return X, y


def test_slope_values():
    eta = np.array([-3.0, -1e-3, 0.0, 1e-3, 3.0])
    out = slope(eta)
    assert out[2] == 0.25
    np.testing.assert_allclose(out, out[::-1])
    assert np.all((out > 0) & (out <= 0.25))
    assert out[4] == pytest.approx((sigmoid(3.0) - 0.5) / 3.0, rel=1e-12)


def test_update_stats():
    X, y = _make_data()
    eta = np.random.default_rng(1).normal(size=X.shape[0])
    stats = update_stats(X, y, eta)
    d = slope(eta)
    np.testing.assert_allclose(stats["d"], d)
    np.testing.assert_allclose(stats["xy"], X.T @ stats["yhat"])
    np.testing.assert_allclose(stats["xd"], X.T @ d)
    # weighted centered sums of squares are non-negative
    assert np.all(stats["xdx"] > -1e-12)
    # the intercept is absorbed into beta0, so yhat sums to zero
    assert np.sum(stats["yhat"]) == pytest.approx(0.0, abs=1e-10)


def test_Xr_tracks_fitted_values():
    X, y = _make_data(seed=2)
    stats = update_stats(X, y, np.zeros(X.shape[0]))
    state = init_setup(X)
    lo = np.full(X.shape[1], -1.0)
    for order in (np.arange(5), [4, 4, 0, 2]):
        varbvsbinupdate(X, 1.0, lo, stats, state["alpha"], state["mu"], state["Xr"], order)
        np.testing.assert_allclose(state["Xr"], X @ (state["alpha"] * state["mu"]), rtol=1e-10, atol=1e-12)
        assert np.all((state["alpha"] >= 0) & (state["alpha"] <= 1))


def test_step_by_step_matches_closed_form():
    X, y = _make_data(seed=3)
    sa = 0.5
    stats = update_stats(X, y, np.full(X.shape[0], 0.7))
    lo = np.linspace(-2, 0, X.shape[1])
    d, xy, xd, xdx = stats["d"], stats["xy"], stats["xd"], stats["xdx"]
    alpha = np.full(X.shape[1], 0.3); mu = np.linspace(-0.5, 0.5, X.shape[1])
    state = init_setup(X, alpha=alpha, mu=mu)
    alpha = alpha.copy(); mu = mu.copy()
    for j in [1, 3, 0]:
        s = sa / (sa * xdx[j] + 1)
        Xr = X @ (alpha * mu)
        r = alpha[j] * mu[j]
        mu[j] = s * (xy[j] + xdx[j] * r + xd[j] * (d @ Xr) / d.sum() - (d * X[:, j]) @ Xr)
        alpha[j] = sigmoid(lo[j] + 0.5 * (np.log(s / sa) + mu[j]**2 / s))
    varbvsbinupdate(X, sa, lo, stats, state["alpha"], state["mu"], state["Xr"], [1, 3, 0])
    np.testing.assert_allclose(state["mu"], mu, rtol=1e-10, atol=1e-12)
    np.testing.assert_allclose(state["alpha"], alpha, rtol=1e-10, atol=1e-12)


def test_errors_leave_state_untouched():
    X, y = _make_data()
    stats = update_stats(X, y, np.zeros(X.shape[0]))
    state = init_setup(X)
    lo = np.zeros(X.shape[1])
    before = {k: v.copy() for k, v in state.items()}
    with pytest.raises(InvalidParameter):
        varbvsbinupdate(X, 0.0, lo, stats, state["alpha"], state["mu"], state["Xr"], [0])
    bad = dict(stats, xdx=stats["xdx"][:-1])
    with pytest.raises(DimensionMismatch, match="xdx"):
        varbvsbinupdate(X, 1.0, lo, bad, state["alpha"], state["mu"], state["Xr"], [0])
    with pytest.raises(IndexOutOfRange):
        varbvsbinupdate(X, 1.0, lo, stats, state["alpha"], state["mu"], state["Xr"], [0, 5])
    for key in before:
        np.testing.assert_array_equal(state[key], before[key])


def test_wrapper_sweeps():
    X, y = _make_data(n=200, seed=4)
    fit = VarBVSBin(sa=1.0, logodds=-1.0).setup(X, y)
    assert fit.stats["d"][0] == 0.25
    for k in range(4):
        fit.sweep(reverse=bool(k % 2))
    assert fit.nsweeps == 4
    np.testing.assert_allclose(fit.Xr, X @ (fit.alpha * fit.mu), rtol=1e-10, atol=1e-12)
    # the two simulated effects dominate
    assert set(np.argsort(fit.alpha)[-2:]) == {0, 1}
    fit.set_eta(np.ones(X.shape[0]))
    np.testing.assert_allclose(fit.stats["d"], slope(np.ones(X.shape[0])))


def test_wrapper_rejects_non_binary_outcome():
    X, y = _make_data()
    with pytest.raises(ValueError, match="binary"):
        VarBVSBin(sa=1.0).setup(X, y + 0.5)


def test_state_vectors_must_not_alias():
    X, y = _make_data()
    stats = update_stats(X, y, np.zeros(X.shape[0]))
    alpha = np.zeros(X.shape[1])
    Xr = np.zeros(X.shape[0])
    mu = Xr[:X.shape[1]]
    with pytest.raises(ValueError, match="mu and Xr must not share memory"):
        varbvsbinupdate(X, 1.0, np.zeros(X.shape[1]), stats, alpha, mu, Xr, [0])
    np.testing.assert_array_equal(Xr, 0.0)


def test_wrapper_failed_setup_keeps_previous_model():
    X1, y1 = _make_data(seed=5)
    X2, y2 = _make_data(n=80, seed=6)
    fit = VarBVSBin(sa=1.0).setup(X1, y1).sweep()
    before = {k: v.copy() for k, v in fit.state.items()}
    d_before = fit.stats["d"].copy()
    with pytest.raises(DimensionMismatch, match="eta"):
        fit.setup(X2, y2, eta=np.zeros(X2.shape[0] + 1))
    with pytest.raises(InvalidParameter, match="alpha"):
        fit.setup(X2, y2, eta=np.ones(X2.shape[0]), alpha=np.full(X2.shape[1], -1.0))
    np.testing.assert_array_equal(fit.X, X1)
    np.testing.assert_array_equal(fit.eta, np.zeros(X1.shape[0]))
    np.testing.assert_array_equal(fit.stats["d"], d_before)
    for key in before:
        np.testing.assert_array_equal(fit.state[key], before[key])
    fit.sweep()
    np.testing.assert_allclose(fit.Xr, X1 @ (fit.alpha * fit.mu), rtol=1e-10, atol=1e-12)
