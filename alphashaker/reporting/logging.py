import logging
import os
import platform
import socket
from datetime import datetime
from typing import TYPE_CHECKING, Any

import alphabase
import numba
import numpy as np
import pandas as pd

import alphashaker
from alphashaker.utils import USE_NUMBA_CACHING

# The progress method is attached to logging.Logger in reporting.py at import time
if TYPE_CHECKING:

    class _ExtendedLogger(logging.Logger):
        def progress(self, message: str, *args: Any, **kws: Any) -> None: ...

    logger: _ExtendedLogger = logging.getLogger()  # type: ignore[assignment]
else:
    logger = logging.getLogger()


def print_logo() -> None:
    """Print the alphashaker banner and version."""
    logger.progress("        _      _         ___ _         _           ")
    logger.progress("   __ _| |_ __| |_  __ _/ __| |_  __ _| |_____ _ _ ")
    logger.progress("  / _` | | '_ \\ ' \\/ _` \\__ \\ ' \\/ _` | / / -_) '_|")
    logger.progress("  \\__,_|_| .__/_||_\\__,_|___/_||_\\__,_|_\\_\\___|_|  ")
    logger.progress("         |_|                                      ")
    logger.progress("")
    logger.progress(f"version: {alphashaker.__version__}")


def print_environment() -> None:
    """Log information about the host and the python environment."""

    logger.info(f"hostname: {socket.gethostname()}")
    logger.progress(
        f"os: {platform.system()} {platform.release()} ({platform.machine()})"
    )
    logger.progress(
        f"python: {platform.python_version()} ({platform.python_implementation()})"
    )
    if slurm_job_id := os.environ.get("SLURM_JOB_ID"):
        logger.info(f"slurm_job_id: {slurm_job_id}")

    now = datetime.today().strftime("%Y-%m-%d %H:%M:%S")
    logger.info(f"date: {now}")

    logger.info("=================== Environment ===================")
    logger.info(f"{'alphabase':<15} : {alphabase.__version__}")
    logger.info(f"{'numpy':<15} : {np.__version__}")
    logger.info(f"{'pandas':<15} : {pd.__version__}")
    logger.info(f"{'numba':<15} : {numba.__version__}")
    logger.info("===================================================")

    if USE_NUMBA_CACHING:
        logger.info("Numba caching is activated.")
