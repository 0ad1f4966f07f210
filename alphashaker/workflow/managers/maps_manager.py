import logging

from alphashaker.constants.keys import MatchType
from alphashaker.scoring.input_map import InputMap
from alphashaker.scoring.target_decoy import TargetDecoyMap, TargetDecoyResults
from alphashaker.workflow.managers.base import BaseManager

logger = logging.getLogger()


class MapsManager(BaseManager):
    def __init__(
        self,
        path: None | str = None,
        load_from_file: bool = True,
        higher_score_better: list[str] | None = None,
        target_decoy_ratio: float | None = None,
        **kwargs,
    ):
        """Holds the input map, the PSM, peptide and protein maps and the last validation thresholds.

        Parameters
        ----------
        higher_score_better : list[str], optional
            Algorithms with higher is better raw scores, passed to the input map.
            If given for a manager loaded from file, it must match the loaded orientation.

        target_decoy_ratio : float, optional
            Passed to all target/decoy maps, 1.0 if neither given nor loaded.
            If given for a manager loaded from file, it must match the loaded ratio.

        Loaded maps whose orientation or ratio differ from the given values are discarded.
        """
        super().__init__(path=path, load_from_file=load_from_file, **kwargs)
        self.reporter.log_event("initializing", {"name": f"{self.__class__.__name__}"})

        if not self.is_loaded_from_file:
            self._init_maps(
                higher_score_better,
                1.0 if target_decoy_ratio is None else target_decoy_ratio,
            )
        elif self._settings_changed(higher_score_better, target_decoy_ratio):
            self.reporter.log_string(
                f"{self.__class__.__name__}: score orientation or target/decoy ratio differ "
                f"from {self.path}, loaded maps are discarded",
                verbosity="warning",
            )
            self._init_maps(
                self.input_map.higher_score_better
                if higher_score_better is None
                else higher_score_better,
                self.target_decoy_ratio
                if target_decoy_ratio is None
                else target_decoy_ratio,
            )

    def _init_maps(self, higher_score_better, target_decoy_ratio: float) -> None:
        self.target_decoy_ratio = target_decoy_ratio
        self.input_map = InputMap(
            higher_score_better=higher_score_better,
            target_decoy_ratio=target_decoy_ratio,
        )
        self.maps = {}
        self.results: dict[str, TargetDecoyResults] = {}
        for match_type in MatchType.get_values():
            self.reset_map(match_type)

    def _settings_changed(self, higher_score_better, target_decoy_ratio) -> bool:
        if (
            higher_score_better is not None
            and set(higher_score_better) != self.input_map.higher_score_better
        ):
            return True
        return (
            target_decoy_ratio is not None
            and target_decoy_ratio != self.target_decoy_ratio
        )

    def reset_map(self, match_type: str) -> TargetDecoyMap:
        """Replace the map of a match type by an empty one, probabilities are lower is better."""
        self.maps[match_type] = TargetDecoyMap(
            higher_is_better=False,
            target_decoy_ratio=self.target_decoy_ratio,
            name=match_type,
        )
        self.results.pop(match_type, None)
        return self.maps[match_type]

    def get_map(self, match_type: str) -> TargetDecoyMap:
        return self.maps[match_type]

    @property
    def psm_map(self) -> TargetDecoyMap:
        return self.maps[MatchType.SPECTRUM]

    @property
    def peptide_map(self) -> TargetDecoyMap:
        return self.maps[MatchType.PEPTIDE]

    @property
    def protein_map(self) -> TargetDecoyMap:
        return self.maps[MatchType.PROTEIN]
