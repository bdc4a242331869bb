#!/usr/bin/env python
# coding: utf-8


"""
Exception types raised by the cellmix numerical core.

All errors derive from :class:`CellMixError`, itself a ``ValueError``, so
callers that already guard analysis calls with ``except ValueError`` keep
working.

- :class:`ShapeMismatch` and :class:`InvalidParameter` fail fast and reach
  the caller.
- :class:`DegenerateSubproblem` is raised by the per-row solvers and caught
  by the half-step drivers, which substitute a fallback row.
"""


class CellMixError(ValueError):
    """Base class for cellmix errors."""


class ShapeMismatch(CellMixError):
    """Matrix dimensions are inconsistent with the operation's contract."""


class InvalidParameter(CellMixError):
    """A count, fraction or option is outside its admissible range."""


class DegenerateSubproblem(CellMixError):
    """A per-row constrained least-squares problem has no usable solution."""
