"""Per search engine target/decoy maps which calibrate raw scores into PEPs."""

import logging
import multiprocessing.pool

from alphashaker.constants.keys import ConfigKeys, MatchType
from alphashaker.scoring.target_decoy import TargetDecoyMap

logger = logging.getLogger()


class InputMap:
    def __init__(
        self,
        higher_score_better: list[str] | None = None,
        target_decoy_ratio: float = 1.0,
    ):
        """One target/decoy map per algorithm, created on first use.

        Parameters
        ----------
        higher_score_better : list[str], optional
            Algorithms whose raw score is better when higher. All other algorithms are lower is better.

        target_decoy_ratio : float, default 1.0
            Passed to every target/decoy map.
        """
        self.higher_score_better = set(higher_score_better or [])
        self.target_decoy_ratio = target_decoy_ratio
        self.maps: dict[str, TargetDecoyMap] = {}

    @classmethod
    def from_config(cls, config) -> "InputMap":
        input_config = config[ConfigKeys.INPUT_MAP]
        return cls(
            higher_score_better=input_config["higher_score_better"],
            target_decoy_ratio=input_config["target_decoy_ratio"],
        )

    def is_higher_better(self, algorithm: str) -> bool:
        return algorithm in self.higher_score_better

    def get_map(self, algorithm: str) -> TargetDecoyMap | None:
        return self.maps.get(algorithm)

    def _get_or_create(self, algorithm: str) -> TargetDecoyMap:
        # dict.setdefault is atomic, concurrent callers get the same map
        return self.maps.setdefault(
            algorithm,
            TargetDecoyMap(
                higher_is_better=self.is_higher_better(algorithm),
                target_decoy_ratio=self.target_decoy_ratio,
                name=algorithm,
            ),
        )

    def add_point(self, algorithm: str, score: float, is_decoy: bool) -> None:
        self._get_or_create(algorithm).add_point(score, is_decoy)

    def clear(self) -> None:
        self.maps = {}

    def input_algorithms_sorted(self) -> list[str]:
        """Algorithms which contributed at least one point, sorted by name."""
        return sorted(algorithm for algorithm, m in self.maps.items() if len(m) > 0)

    @property
    def is_target_decoy(self) -> bool:
        """True if at least one algorithm map can be estimated."""
        return any(m.can_estimate for m in self.maps.values())

    def estimate_probabilities(self, waiting_handler=None, thread_count: int = 1) -> None:
        """Estimate all maps independently, in parallel if `thread_count` > 1."""
        algorithms = self.input_algorithms_sorted()
        if waiting_handler is not None:
            waiting_handler.set_max_progress(len(algorithms))

        def _estimate(algorithm):
            self.maps[algorithm].estimate_probabilities(waiting_handler)

        if thread_count > 1 and len(algorithms) > 1:
            with multiprocessing.pool.ThreadPool(thread_count) as pool:
                pool.map(_estimate, algorithms)
        else:
            for algorithm in algorithms:
                _estimate(algorithm)

        for algorithm in algorithms:
            m = self.maps[algorithm]
            logger.info(
                f"Input map {algorithm}: {m.n_targets} targets, {m.n_decoys} decoys, "
                f"{'estimated' if m.can_estimate else 'no estimation possible'}"
            )

    def get_probability(self, algorithm: str, score: float) -> float:
        """Calibrated PEP of a raw score, 1.0 for unknown or non-estimable algorithms."""
        m = self.maps.get(algorithm)
        if m is None:
            return 1.0
        return m.get_probability(score)

    def fill_from_repository(
        self, repository, sequence_provider, waiting_handler=None
    ) -> None:
        """Add the best scoring peptide assumption of every algorithm of every spectrum.

        Ties on the raw score are resolved by rank, then by peptide key.
        Decoy status is taken from the proteins of the peptide.
        """
        self.clear()
        for spectrum_match in repository.iterate(MatchType.SPECTRUM, waiting_handler):
            for algorithm, assumptions in sorted(
                spectrum_match.peptide_assumptions.items()
            ):
                if not assumptions:
                    continue
                sign = -1 if self.is_higher_better(algorithm) else 1
                best = min(
                    assumptions, key=lambda a: (sign * a.score, a.rank, a.key)
                )
                self.add_point(
                    algorithm, best.score, sequence_provider.is_decoy_peptide(best.peptide)
                )
