#!/usr/bin/env python
# coding: utf-8


"""
Logging for cellmix.

All cellmix modules write to the single ``cellmix`` logger built here: an
``INFO``-level :class:`ProgressAwareLogger` with a stdout handler and a
per-session file ``<output_dir>/log/cellmix_<YYYYmmdd_HHMMSS>.log``.

What is specific to cellmix
---------------------------
- The log directory comes from the ``CELLMIX_OUTPUT_DIR`` environment \
variable (``output`` when unset), so batch runs can route logs without \
touching code.
- The long loops of the toolkit (one fit per candidate K in \
:func:`~cellmix.core.mixture.factorization.fit_array`, one refit per \
bootstrap replicate in \
:func:`~cellmix.core.mixture.bootstrap.bootstrap_deviance`) report through \
a ``tqdm`` bar owned by the logger: ``progress`` opens it, \
``progress_update`` advances it and ``progress_close`` ends it once the loop \
is done.
- A record ends the open bar only when it is actually emitted. The per-row \
solvers and the per-iteration change summaries log at ``DEBUG``; at the \
default level those calls are dropped before reaching the bar, so a fit in \
progress keeps its bar.
"""


from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from typing import Optional

from tqdm import tqdm

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ProgressAwareLogger(logging.Logger):
    """Logger owning at most one ``tqdm`` bar, ended by the next emitted record."""

    def __init__(self, name) -> None:
        super().__init__(name)
        self._pbar = None

    def _close_pbar(self) -> None:
        if self._pbar is not None:
            self._pbar.close()
            self._pbar = None

    def _log(self, level, msg, args, **kwargs) -> None:
        # only reached for records that pass the level check
        self._close_pbar()
        super()._log(level, msg, args, **kwargs)

    def progress(self, msg: str, total: Optional[int] = None) -> None:
        """
        Start a progress bar labelled ``msg``; an earlier bar is closed first.

        Parameters
        ----------
        msg : str
            Description, e.g. ``"Bootstrap replicates"``.
        total : int, optional
            Expected number of steps; open-ended when omitted.
        """
        self._close_pbar()
        self._pbar = tqdm(
            total=total or 0, bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt}"
        )
        self._pbar.set_description(msg)

    def progress_update(self, n: int = 1) -> None:
        """Advance the bar by ``n`` steps (ignored when no bar is open)."""
        if self._pbar is not None:
            self._pbar.update(n)

    def progress_close(self) -> None:
        """End the bar without logging anything."""
        self._close_pbar()


logging.setLoggerClass(ProgressAwareLogger)


def _configure_logger(
    name: str = "cellmix", output_dir: Optional[str] = None
) -> logging.Logger:
    """
    Attach console and file handlers to the ``name`` logger once.

    Parameters
    ----------
    name : str, default "cellmix"
        Logger name; also the prefix of the log file.
    output_dir : str, optional
        Base directory; the file goes to ``<output_dir>/log/``. Defaults to
        ``$CELLMIX_OUTPUT_DIR`` or ``"output"``.

    Returns
    -------
    logging.Logger
        The logger, unchanged if it already has handlers.
    """
    logger = logging.getLogger(name)
    if logger.hasHandlers():
        return logger

    output_dir = output_dir or os.environ.get("CELLMIX_OUTPUT_DIR", "output")
    log_dir = os.path.join(output_dir, "log")
    os.makedirs(log_dir, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in (
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(
            os.path.join(log_dir, f"{name}_{stamp}.log"), encoding="utf-8"
        ),
    ):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(logging.INFO)
    return logger


logger = _configure_logger()


def get_logger(name: str = "cellmix") -> logging.Logger:
    """Return the shared cellmix logger (or a named child)."""
    return logging.getLogger(name)
