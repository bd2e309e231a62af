"""
Exception hierarchy.

Structural problems with the inputs are fatal to the whole call
(`InputError`, `NoOverlapError`, `InvalidHyperparameterError`), whereas
numerical failures are scoped to one unit of work, such as one grid point
(`ConvergenceError`) or one Gibbs chain (`DivergedChainError`).
"""


class BigPRSError(Exception):
    """Base class for all errors raised by bigPRS."""


class InputError(BigPRSError, ValueError):
    """Malformed input: missing columns, mismatched dimensions, unsorted positions."""


class NoOverlapError(InputError):
    """Matching summary statistics against the panel left (almost) nothing."""


class InvalidHyperparameterError(BigPRSError, ValueError):
    """Heritability must be positive and the causal fraction must lie in (0, 1]."""


class ConvergenceError(BigPRSError, RuntimeError):
    """An iterative solver did not reach its tolerance."""

    def __init__(self, message, residual=float("nan"), n_iter=0):
        super().__init__(f"{message} (residual={residual:.3g}, iterations={n_iter})")
        self.residual = residual
        self.n_iter = n_iter


class DivergedChainError(BigPRSError, RuntimeError):
    """One LDpred2-auto chain diverged; sibling chains are unaffected."""

    def __init__(self, chain, iteration, h2):
        super().__init__(f"Chain {chain} diverged at iteration {iteration} (h2={h2})")
        self.chain = chain
        self.iteration = iteration
        self.h2 = h2
