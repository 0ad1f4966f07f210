"""Empirical posterior error probabilities from target and decoy scores.

Points are accumulated first and estimated once. For every distinct score, from the most to the
least stringent, the cumulative decoy and target counts give a raw PEP of `ratio * decoys / targets`,
which is turned into a non-decreasing curve by carrying the maximum forward.
"""

import logging
import threading
from dataclasses import dataclass

import numba as nb
import numpy as np
import pandas as pd

from alphashaker.exceptions import MapNotEstimatedError
from alphashaker.utils import USE_NUMBA_CACHING

logger = logging.getLogger()


@nb.njit(cache=USE_NUMBA_CACHING)
def monotonic_envelope(values: np.ndarray) -> np.ndarray:
    """Running maximum, so that later values are never lower than earlier ones."""
    out = np.empty_like(values)
    current = -np.inf
    for i in range(len(values)):
        if values[i] > current:
            current = values[i]
        out[i] = current
    return out


def _fdr_to_q_values(fdr_values: np.ndarray) -> np.ndarray:
    """Converts FDR values sorted from most to least stringent to q-values.

    For every element the lowest FDR at which it would still be accepted is used.
    """
    fdr_values_flipped = np.flip(fdr_values)
    q_values_flipped = np.minimum.accumulate(fdr_values_flipped)
    return np.flip(q_values_flipped)


@dataclass
class TargetDecoyResults:
    """Outcome of a threshold search at a given FDR in percent.

    `score_threshold` and `pep_threshold` are None if no score reaches the requested FDR.
    Matches are accepted on the score axis, `pep_threshold` is the PEP at the threshold score
    and is shared by less stringent scores wherever the PEP curve is flat.
    """

    fdr_percent: float
    score_threshold: float | None = None
    pep_threshold: float | None = None
    n_target: int = 0
    n_decoy: int = 0
    estimated_fdr: float | None = None
    higher_is_better: bool = True

    @property
    def has_threshold(self) -> bool:
        return self.score_threshold is not None

    def accepts(self, score: float) -> bool:
        """True if `score` is at least as stringent as the threshold score."""
        if not self.has_threshold:
            return False
        if self.higher_is_better:
            return score >= self.score_threshold
        return score <= self.score_threshold


class TargetDecoyMap:
    def __init__(
        self,
        higher_is_better: bool = True,
        target_decoy_ratio: float = 1.0,
        name: str = "",
    ):
        """Accumulates (score, is_decoy) points and estimates a monotonic PEP curve.

        Parameters
        ----------
        higher_is_better : bool, default True
            Orientation of the score. If False, lower scores are more stringent.

        target_decoy_ratio : float, default 1.0
            Expected ratio of target to decoy database size, used to scale the decoy counts.

        name : str, default ''
            Name used in log messages.
        """
        if target_decoy_ratio <= 0:
            raise ValueError("target_decoy_ratio must be positive")

        self.higher_is_better = higher_is_better
        self.target_decoy_ratio = target_decoy_ratio
        self.name = name

        self._scores = []
        self._decoys = []
        self._n_decoys = 0
        self._lock = threading.Lock()

        self._is_estimated = False
        self._has_pending_points = False
        self._reset_curve()

    def _reset_curve(self):
        self.scores = np.empty(0, dtype=np.float64)
        self.n_target_cumulative = np.empty(0, dtype=np.int64)
        self.n_decoy_cumulative = np.empty(0, dtype=np.int64)
        self.raw_pep = np.empty(0, dtype=np.float64)
        self.pep = np.empty(0, dtype=np.float64)
        self._stringency_ascending = np.empty(0, dtype=np.float64)
        self._pep_ascending = np.empty(0, dtype=np.float64)

    def __getstate__(self):
        state = self.__dict__.copy()
        del state["_lock"]
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._scores)

    @property
    def n_targets(self) -> int:
        return len(self._decoys) - self._n_decoys

    @property
    def n_decoys(self) -> int:
        return self._n_decoys

    @property
    def can_estimate(self) -> bool:
        """False if no target or no decoy was seen, probabilities are 1.0 then."""
        return self.n_targets > 0 and self.n_decoys > 0

    @property
    def is_estimated(self) -> bool:
        return self._is_estimated and not self._has_pending_points

    def _stringency(self, score):
        return score if self.higher_is_better else -score

    def add_point(self, score: float, is_decoy: bool) -> None:
        """Add one observation, safe to call from several threads."""
        score = float(score)
        if np.isnan(score):
            raise ValueError(f"Cannot add a NaN score to target/decoy map {self.name}")
        with self._lock:
            self._scores.append(score)
            self._decoys.append(bool(is_decoy))
            self._n_decoys += int(bool(is_decoy))
            self._has_pending_points = True

    def add_points(self, scores, decoys) -> None:
        scores = np.asarray(scores, dtype=np.float64)
        decoys = np.asarray(decoys, dtype=bool)
        if scores.shape != decoys.shape:
            raise ValueError("scores and decoys must have the same length")
        if np.isnan(scores).any():
            raise ValueError(f"Cannot add NaN scores to target/decoy map {self.name}")
        with self._lock:
            self._scores.extend(scores.tolist())
            self._decoys.extend(decoys.tolist())
            self._n_decoys += int(decoys.sum())
            self._has_pending_points = True

    def merge(self, other: "TargetDecoyMap") -> None:
        """Add all points of another map with the same orientation."""
        if other.higher_is_better != self.higher_is_better:
            raise ValueError("Cannot merge target/decoy maps of different orientation")
        with other._lock:
            scores, decoys = list(other._scores), list(other._decoys)
        with self._lock:
            self._scores.extend(scores)
            self._decoys.extend(decoys)
            self._n_decoys += sum(decoys)
            self._has_pending_points = self._has_pending_points or len(scores) > 0

    def clear(self) -> None:
        with self._lock:
            self._scores = []
            self._decoys = []
            self._n_decoys = 0
            self._is_estimated = False
            self._has_pending_points = False
            self._reset_curve()

    def estimate_probabilities(self, waiting_handler=None) -> None:
        """Build the cumulative counts and the PEP curve from all points added so far.

        Parameters
        ----------
        waiting_handler : WaitingHandler, optional
            Progress is increased by one once the map is estimated.
        """
        with self._lock:
            scores = np.array(self._scores, dtype=np.float64)
            decoys = np.array(self._decoys, dtype=bool)
            self._has_pending_points = False

        self._reset_curve()

        if len(scores) > 0:
            stringency = self._stringency(scores)
            unique_stringency, inverse = np.unique(stringency, return_inverse=True)

            n_decoy = np.bincount(
                inverse,
                weights=decoys.astype(np.float64),
                minlength=len(unique_stringency),
            )
            n_target = np.bincount(
                inverse,
                weights=(~decoys).astype(np.float64),
                minlength=len(unique_stringency),
            )

            # most stringent first
            self.n_decoy_cumulative = np.cumsum(n_decoy[::-1]).astype(np.int64)
            self.n_target_cumulative = np.cumsum(n_target[::-1]).astype(np.int64)
            self.scores = self._stringency(unique_stringency[::-1])

            self.raw_pep = self._raw_fdr(
                self.n_decoy_cumulative, self.n_target_cumulative
            )
            self.pep = monotonic_envelope(self.raw_pep)

            self._stringency_ascending = unique_stringency
            self._pep_ascending = self.pep[::-1].copy()

        self._is_estimated = True

        if not self.can_estimate:
            logger.info(
                f"Target/decoy map {self.name}: {self.n_targets} targets and {self.n_decoys} decoys, "
                "no estimation possible, probabilities default to 1.0"
            )

        if waiting_handler is not None:
            waiting_handler.increase_progress()

    def _raw_fdr(self, n_decoy: np.ndarray, n_target: np.ndarray) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            fdr = np.where(
                n_target > 0,
                self.target_decoy_ratio * n_decoy / np.maximum(n_target, 1),
                1.0,
            )
        return np.minimum(fdr, 1.0)

    def get_probability(self, score: float) -> float:
        """PEP of a score.

        The PEP of the least stringent observed score which is at least as stringent as the query.
        Scores more stringent than all points get the first PEP, less stringent ones the last PEP.

        Raises
        ------
        MapNotEstimatedError
            Points were added after the last estimation.
        """
        if self._has_pending_points:
            raise MapNotEstimatedError(self.name)

        if not self.can_estimate or len(self._pep_ascending) == 0:
            return 1.0

        idx = np.searchsorted(
            self._stringency_ascending, self._stringency(float(score)), side="left"
        )
        idx = min(idx, len(self._pep_ascending) - 1)
        return float(self._pep_ascending[idx])

    def get_probabilities(self, scores) -> np.ndarray:
        """Vectorized `get_probability`."""
        if self._has_pending_points:
            raise MapNotEstimatedError(self.name)

        scores = np.asarray(scores, dtype=np.float64)
        if not self.can_estimate or len(self._pep_ascending) == 0:
            return np.ones_like(scores)

        idx = np.searchsorted(
            self._stringency_ascending, self._stringency(scores), side="left"
        )
        idx = np.minimum(idx, len(self._pep_ascending) - 1)
        return self._pep_ascending[idx]

    def get_fdr_threshold(self, fdr_percent: float) -> TargetDecoyResults:
        """Least stringent observed score whose q-value does not exceed `fdr_percent`.

        Parameters
        ----------
        fdr_percent : float
            Target FDR in percent, e.g. 1.0 for 1 %.

        Returns
        -------
        TargetDecoyResults
            Thresholds and cumulative counts at the selected score.
        """
        if self._has_pending_points:
            raise MapNotEstimatedError(self.name)

        results = TargetDecoyResults(
            fdr_percent=fdr_percent, higher_is_better=self.higher_is_better
        )
        if not self.can_estimate:
            return results

        q_values = _fdr_to_q_values(self.raw_pep)
        accepted = np.nonzero(q_values <= fdr_percent / 100)[0]
        if len(accepted) == 0:
            return results

        idx = accepted[-1]
        results.score_threshold = float(self.scores[idx])
        results.pep_threshold = float(self.pep[idx])
        results.n_target = int(self.n_target_cumulative[idx])
        results.n_decoy = int(self.n_decoy_cumulative[idx])
        results.estimated_fdr = float(q_values[idx] * 100)
        return results

    def to_df(self) -> pd.DataFrame:
        """The estimated curve, one row per distinct score from most to least stringent."""
        if self._has_pending_points:
            raise MapNotEstimatedError(self.name)

        return pd.DataFrame(
            {
                "score": self.scores,
                "n_target": self.n_target_cumulative,
                "n_decoy": self.n_decoy_cumulative,
                "raw_pep": self.raw_pep,
                "pep": self.pep,
                "q_value": _fdr_to_q_values(self.raw_pep),
            }
        )
