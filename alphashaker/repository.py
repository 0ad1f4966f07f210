"""Key-value store of spectrum, peptide and protein group matches.

Matches are kept in one namespace per match type. Stages mutate matches in place and `put` them back,
`commit` marks a checkpoint. The pickle repository writes a snapshot at every commit, so after a crash the
repository reopens at the last committed state.
"""

import logging
import os
import pickle
import threading
from collections.abc import Iterable, Iterator

from alphashaker.constants.keys import MatchType
from alphashaker.exceptions import RepositoryConnectionError
from alphashaker.model.matches import PeptideMatch, ProteinGroupMatch, SpectrumMatch

logger = logging.getLogger()

MATCH_TYPES = {
    SpectrumMatch: MatchType.SPECTRUM,
    PeptideMatch: MatchType.PEPTIDE,
    ProteinGroupMatch: MatchType.PROTEIN,
}


def match_type_of(match) -> str:
    try:
        return MATCH_TYPES[type(match)]
    except KeyError as e:
        raise TypeError(f"Unsupported match type {type(match)}") from e


class MatchRepository:
    """Interface of the match repository.

    Subclasses implement `_read`, `_write`, `_delete` and `_checkpoint`. Any storage problem
    must surface as `RepositoryConnectionError`.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.n_commits = 0

    def _read(self, match_type: str, key: str):
        raise NotImplementedError

    def _write(self, match_type: str, key: str, match) -> None:
        raise NotImplementedError

    def _delete(self, match_type: str, key: str) -> None:
        raise NotImplementedError

    def _keys(self, match_type: str) -> list[str]:
        raise NotImplementedError

    def _checkpoint(self) -> None:
        raise NotImplementedError

    def get(self, key: str, match_type: str | None = None):
        """Return the match stored under `key`, or None.

        Parameters
        ----------
        key : str
            Key of the match.

        match_type : str, optional
            Namespace to look in. If None, all namespaces are searched in the order spectrum, peptide, protein.
        """
        match_types = MatchType.get_values() if match_type is None else [match_type]
        with self._lock:
            for current_type in match_types:
                match = self._read(current_type, key)
                if match is not None:
                    return match
        return None

    def put(self, key: str, match) -> None:
        with self._lock:
            self._write(match_type_of(match), key, match)

    def remove(self, key: str, match_type: str) -> None:
        with self._lock:
            self._delete(match_type, key)

    def contains(self, key: str, match_type: str) -> bool:
        return self.get(key, match_type) is not None

    def keys(self, match_type: str) -> list[str]:
        """Sorted keys of a namespace."""
        with self._lock:
            return sorted(self._keys(match_type))

    def size(self, match_type: str) -> int:
        with self._lock:
            return len(self._keys(match_type))

    def batch_load(
        self, keys: Iterable[str], match_type: str, waiting_handler=None
    ) -> list:
        """Load several matches at once, stops early if the waiting handler is cancelled."""
        matches = []
        for key in keys:
            if waiting_handler is not None and waiting_handler.is_cancelled():
                break
            matches.append(self.get(key, match_type))
        return matches

    def iterate(self, match_type: str, waiting_handler=None) -> Iterator:
        """Iterate the matches of a namespace in key order.

        Keys are snapshotted first, matches removed during the iteration are skipped.
        Iteration stops when the waiting handler is cancelled.
        """
        for key in self.keys(match_type):
            if waiting_handler is not None and waiting_handler.is_cancelled():
                return
            match = self.get(key, match_type)
            if match is not None:
                yield match

    def commit(self) -> None:
        """Checkpoint all changes."""
        with self._lock:
            self._checkpoint()
            self.n_commits += 1


class InMemoryMatchRepository(MatchRepository):
    def __init__(self):
        """Repository keeping all matches in dictionaries, commits only count checkpoints."""
        super().__init__()
        self._data = {match_type: {} for match_type in MatchType.get_values()}

    def _read(self, match_type, key):
        return self._data[match_type].get(key)

    def _write(self, match_type, key, match):
        self._data[match_type][key] = match

    def _delete(self, match_type, key):
        self._data[match_type].pop(key, None)

    def _keys(self, match_type):
        return list(self._data[match_type])

    def _checkpoint(self):
        pass


class PickleMatchRepository(InMemoryMatchRepository):
    def __init__(self, path: str):
        """Repository persisted as a pickle snapshot which is replaced atomically at every commit.

        Parameters
        ----------
        path : str
            Location of the snapshot. An existing snapshot is restored.
        """
        super().__init__()
        self.path = path

        if os.path.exists(self.path):
            self._restore()

    def _restore(self):
        try:
            with open(self.path, "rb") as f:
                data = pickle.load(f)
        except (OSError, pickle.UnpicklingError, EOFError) as e:
            raise RepositoryConnectionError(
                f"Could not read repository at {self.path}: {e}"
            ) from e

        for match_type in MatchType.get_values():
            self._data[match_type] = data.get(match_type, {})
        logger.info(
            f"Restored repository from {self.path} with "
            + ", ".join(f"{len(v)} {k}" for k, v in self._data.items())
        )

    def _checkpoint(self):
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "wb") as f:
                pickle.dump(self._data, f)
            os.replace(tmp_path, self.path)
        except (OSError, pickle.PicklingError) as e:
            raise RepositoryConnectionError(
                f"Could not write repository to {self.path}: {e}"
            ) from e
