"""pyvarbvs package: coordinate-ascent updates for variational Bayesian variable selection."""
from .errors import VarBVSError, InvalidParameter, DimensionMismatch, IndexOutOfRange
from .model_varbvs import (VarBVS, sigmoid, varbvsnormupdate, compute_stats, posterior_variance,
                           init_params, init_setup, update_pass, update_candidates)
from .model_varbvs_bin import VarBVSBin, varbvsbinupdate, slope, update_stats

__all__ = ["VarBVS", "VarBVSBin", "sigmoid", "varbvsnormupdate", "varbvsbinupdate", "slope",
           "update_stats", "compute_stats", "posterior_variance", "init_params", "init_setup",
           "update_pass", "update_candidates", "VarBVSError", "InvalidParameter",
           "DimensionMismatch", "IndexOutOfRange"]
__version__ = "1.0"
