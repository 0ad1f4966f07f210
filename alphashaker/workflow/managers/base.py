"""Base class for managers.

A manager is a stateful object of a run which can be saved to and loaded from disk.
State is only restored if it was written by the same version of alphashaker.
"""

import logging
import os
import pickle
import traceback

import alphashaker
from alphashaker.reporting import reporting

logger = logging.getLogger()


class BaseManager:
    def __init__(
        self,
        path: None | str = None,
        load_from_file: bool = True,
        reporter: None | reporting.Pipeline | reporting.Backend = None,
    ):
        """Base class for all managers which hold run state.

        Parameters
        ----------

        path : str, optional
            Path to the manager pickle on disk.

        load_from_file : bool, optional
            If True, the manager will be loaded from file if it exists.

        reporter : reporting.Pipeline | reporting.Backend, optional
            Reporter used for log messages. Defaults to a LogBackend.
        """

        self._path = path
        self.is_loaded_from_file = False
        self._version = alphashaker.__version__
        self.reporter = reporting.LogBackend() if reporter is None else reporter

        if load_from_file:
            # child classes must not overwrite loaded values after calling super().__init__()
            self.load()

    @property
    def path(self):
        """Path to the manager pickle on disk."""
        return self._path

    @property
    def is_loaded_from_file(self):
        return self._is_loaded_from_file

    @is_loaded_from_file.setter
    def is_loaded_from_file(self, value):
        self._is_loaded_from_file = value

    def __getstate__(self):
        state = self.__dict__.copy()
        # reporters hold open handlers and are recreated on load
        state.pop("reporter", None)
        return state

    def save(self):
        """Save the state to a pickle file."""
        if self.path is None:
            return

        try:
            with open(self.path, "wb") as f:
                pickle.dump(self, f)
        except Exception as e:
            self.reporter.log_string(
                f"Failed to save {self.__class__.__name__} to {self.path}: {str(e)}",
                verbosity="error",
            )
            self.reporter.log_string(
                f"Traceback: {traceback.format_exc()}", verbosity="error"
            )

    def load(self):
        """Load the state from a pickle file."""
        if self.path is None:
            self.reporter.log_string(
                f"{self.__class__.__name__}: loading saved state not requested, will be initialized.",
            )
            return
        elif not os.path.exists(self.path):
            self.reporter.log_string(
                f"{self.__class__.__name__}: not found at {self.path}, will be initialized.",
                verbosity="warning",
            )
            return

        try:
            with open(self.path, "rb") as f:
                loaded_state = pickle.load(f)
        except Exception as e:
            self.reporter.log_string(
                f"Failed to load {self.__class__.__name__} from {self.path}: {str(e)}",
                verbosity="error",
            )
            return

        if loaded_state._version == self._version:
            self.__dict__.update(loaded_state.__dict__)
            self.is_loaded_from_file = True
            self.reporter.log_string(f"Loaded {self.__class__.__name__} from {self.path}")
        else:
            self.reporter.log_string(
                f"Version mismatch while loading {self.__class__.__name__}: {loaded_state._version} != {self._version}. Will not load.",
                verbosity="warning",
            )
