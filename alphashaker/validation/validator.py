"""Target/decoy validation of spectrum, peptide and protein group matches.

Every level has its own target/decoy map whose score axis is the probability of the level:
the best assumption PEP for PSMs, the product of the PSM probabilities for peptides and the
product of the peptide probabilities for protein groups.
"""

import logging
import math

from alphashaker.constants.keys import ConfigKeys, MatchType, ProjectType
from alphashaker.model.matches import ValidationLevel
from alphashaker.providers import SequenceProvider
from alphashaker.scoring.target_decoy import TargetDecoyResults
from alphashaker.utils import is_decoy_accessions
from alphashaker.validation.filters import QualityFilter
from alphashaker.workflow.managers.maps_manager import MapsManager

logger = logging.getLogger()


def validation_level(
    score: float,
    results: TargetDecoyResults,
    doubtful_results: TargetDecoyResults | None = None,
) -> ValidationLevel:
    """Validation level of a match given the thresholds of its level.

    Parameters
    ----------
    score : float
        Score of the match on the axis of the target/decoy map of its level.

    results : TargetDecoyResults
        Threshold at the target FDR. Without threshold no match is confident.

    doubtful_results : TargetDecoyResults, optional
        Threshold at the doubtful FDR. If given, matches beyond it are not validated.

    Returns
    -------
    ValidationLevel
        Never lower for a more stringent score.
    """
    if results.accepts(score):
        return ValidationLevel.CONFIDENT
    if doubtful_results is None:
        return ValidationLevel.DOUBTFUL
    if doubtful_results.accepts(score):
        return ValidationLevel.DOUBTFUL
    return ValidationLevel.NOT_VALIDATED


class MatchesValidator:
    def __init__(
        self,
        repository,
        maps: MapsManager,
        sequence_provider: SequenceProvider,
        fdr_percent: dict[str, float] | None = None,
        doubtful_fdr: float | None = None,
        filters: dict[str, list[QualityFilter]] | None = None,
        project_type: str = ProjectType.PROTEIN,
    ):
        """Estimates the per level maps and assigns validation levels.

        Parameters
        ----------
        repository : MatchRepository
            Repository holding all matches.

        maps : MapsManager
            Holds the PSM, peptide and protein maps and receives the thresholds.

        sequence_provider : SequenceProvider
            Decoy status of peptides and accessions.

        fdr_percent : dict[str, float], optional
            Target FDR in percent per match type. Defaults to 1 % for every level.

        doubtful_fdr : float, optional
            FDR in percent beyond which non confident matches are not validated.

        filters : dict[str, list[QualityFilter]], optional
            Quality filters per match type.

        project_type : str, default 'protein'
            Levels beyond the project type are skipped.
        """
        self.repository = repository
        self.maps = maps
        self.sequence_provider = sequence_provider
        self.fdr_percent = {match_type: 1.0 for match_type in MatchType.get_values()}
        self.fdr_percent.update(fdr_percent or {})
        self.doubtful_fdr = doubtful_fdr
        self.filters = filters or {}
        self.project_type = project_type

    @classmethod
    def from_config(cls, config, repository, maps, sequence_provider, filters=None):
        validation_config = config[ConfigKeys.VALIDATION]
        return cls(
            repository,
            maps,
            sequence_provider,
            fdr_percent={
                MatchType.SPECTRUM: validation_config["psm_fdr"],
                MatchType.PEPTIDE: validation_config["peptide_fdr"],
                MatchType.PROTEIN: validation_config["protein_fdr"],
            },
            doubtful_fdr=validation_config["doubtful_fdr"],
            filters=filters,
            project_type=config[ConfigKeys.GENERAL][ConfigKeys.PROJECT_TYPE],
        )

    def match_types(self) -> list[str]:
        """Levels validated for the project type."""
        return {
            ProjectType.PSM: [MatchType.SPECTRUM],
            ProjectType.PEPTIDE: [MatchType.SPECTRUM, MatchType.PEPTIDE],
            ProjectType.PROTEIN: [MatchType.SPECTRUM, MatchType.PEPTIDE, MatchType.PROTEIN],
        }[self.project_type]

    # decoy status per level

    def is_decoy_psm(self, spectrum_match) -> bool:
        assumption = spectrum_match.best_peptide_assumption
        return assumption is not None and self.sequence_provider.is_decoy_peptide(
            assumption.peptide
        )

    def is_decoy_peptide(self, peptide_match) -> bool:
        return self.sequence_provider.is_decoy_peptide(peptide_match.peptide)

    def is_decoy_protein(self, group_match) -> bool:
        return is_decoy_accessions(group_match.accessions, self.sequence_provider.decoy_tag)

    # PSM level

    def fill_psm_map(self, waiting_handler=None) -> None:
        psm_map = self.maps.reset_map(MatchType.SPECTRUM)
        for spectrum_match in self.repository.iterate(MatchType.SPECTRUM, waiting_handler):
            if spectrum_match.best_peptide_assumption is None:
                continue
            psm_map.add_point(spectrum_match.annotations.score, self.is_decoy_psm(spectrum_match))

    def attach_psm_probabilities(self, waiting_handler=None) -> None:
        psm_map = self.maps.psm_map
        for spectrum_match in self.repository.iterate(MatchType.SPECTRUM, waiting_handler):
            if spectrum_match.best_peptide_assumption is None:
                spectrum_match.annotations.probability = 1.0
            else:
                spectrum_match.annotations.probability = psm_map.get_probability(
                    spectrum_match.annotations.score
                )
            self.repository.put(spectrum_match.key, spectrum_match)

    # peptide level

    def _peptide_score(self, peptide_match) -> float:
        probabilities = []
        for spectrum_key in peptide_match.spectrum_keys:
            spectrum_match = self.repository.get(spectrum_key, MatchType.SPECTRUM)
            if spectrum_match is not None:
                probabilities.append(spectrum_match.annotations.probability)
        return math.prod(probabilities) if probabilities else 1.0

    def fill_peptide_map(self, waiting_handler=None) -> None:
        peptide_map = self.maps.reset_map(MatchType.PEPTIDE)
        for peptide_match in self.repository.iterate(MatchType.PEPTIDE, waiting_handler):
            peptide_match.annotations.score = self._peptide_score(peptide_match)
            peptide_map.add_point(
                peptide_match.annotations.score, self.is_decoy_peptide(peptide_match)
            )
            self.repository.put(peptide_match.key, peptide_match)

    def attach_peptide_probabilities(self, waiting_handler=None) -> None:
        peptide_map = self.maps.peptide_map
        for peptide_match in self.repository.iterate(MatchType.PEPTIDE, waiting_handler):
            peptide_match.annotations.probability = peptide_map.get_probability(
                peptide_match.annotations.score
            )
            self.repository.put(peptide_match.key, peptide_match)

    # protein level

    def _protein_score(self, group_match) -> float:
        probabilities = []
        for peptide_key in group_match.peptide_keys:
            peptide_match = self.repository.get(peptide_key, MatchType.PEPTIDE)
            if peptide_match is not None:
                probabilities.append(peptide_match.annotations.probability)
        return math.prod(probabilities) if probabilities else 1.0

    def fill_protein_map(self, waiting_handler=None) -> None:
        protein_map = self.maps.reset_map(MatchType.PROTEIN)
        for group_match in self.repository.iterate(MatchType.PROTEIN, waiting_handler):
            group_match.annotations.score = self._protein_score(group_match)
            protein_map.add_point(
                group_match.annotations.score, self.is_decoy_protein(group_match)
            )
            self.repository.put(group_match.key, group_match)

    def attach_protein_probabilities(self, waiting_handler=None) -> None:
        protein_map = self.maps.protein_map
        for group_match in self.repository.iterate(MatchType.PROTEIN, waiting_handler):
            group_match.annotations.probability = protein_map.get_probability(
                group_match.annotations.score
            )
            self.repository.put(group_match.key, group_match)

    def estimate(self, match_type: str, waiting_handler=None) -> None:
        self.maps.get_map(match_type).estimate_probabilities(waiting_handler)

    # validation

    def _thresholds(self, match_type: str) -> tuple[TargetDecoyResults, TargetDecoyResults | None]:
        target_decoy_map = self.maps.get_map(match_type)
        results = target_decoy_map.get_fdr_threshold(self.fdr_percent[match_type])
        doubtful_results = (
            target_decoy_map.get_fdr_threshold(self.doubtful_fdr)
            if self.doubtful_fdr is not None
            else None
        )
        self.maps.results[match_type] = results

        if results.has_threshold:
            logger.info(
                f"{match_type} level: score threshold {results.score_threshold:.4g} "
                f"(PEP {results.pep_threshold:.4g}) at "
                f"{results.fdr_percent} % FDR, {results.n_target} targets, {results.n_decoy} decoys"
            )
        else:
            logger.warning(
                f"{match_type} level: no threshold reaches {results.fdr_percent} % FDR, "
                "no match will be confident"
            )
        return results, doubtful_results

    def _level(self, match, match_type, results, doubtful_results) -> ValidationLevel:
        level = validation_level(match.annotations.score, results, doubtful_results)
        if level > ValidationLevel.NOT_VALIDATED and not all(
            f.passes(match) for f in self.filters.get(match_type, [])
        ):
            return ValidationLevel.NOT_VALIDATED
        return level

    def validate_identifications(self, waiting_handler=None) -> dict[str, dict[str, int]]:
        """Assign validation levels to all levels of the project.

        PSMs are validated first, then peptides with the counts of their validated spectra,
        then protein groups with the counts of their validated peptides.

        Returns
        -------
        dict[str, dict[str, int]]
            Number of matches per validation level name, per match type.
        """
        summary = {}
        levels = {}

        for match_type in self.match_types():
            results, doubtful_results = self._thresholds(match_type)
            counts = {level.name: 0 for level in ValidationLevel}

            for match in self.repository.iterate(match_type, waiting_handler):
                if match_type == MatchType.PEPTIDE:
                    self._count_spectra(match, levels)
                elif match_type == MatchType.PROTEIN:
                    self._count_peptides(match, levels)

                if (
                    match_type == MatchType.SPECTRUM
                    and match.best_peptide_assumption is None
                ):
                    level = ValidationLevel.NOT_VALIDATED
                else:
                    level = self._level(match, match_type, results, doubtful_results)
                match.annotations.validation_level = level
                levels[(match_type, match.key)] = level
                counts[level.name] += 1
                self.repository.put(match.key, match)

            summary[match_type] = counts
            logger.info(
                f"{match_type} level: "
                + ", ".join(f"{v} {k.lower()}" for k, v in counts.items())
            )
        return summary

    def _level_of(self, levels: dict, match_type: str, key: str) -> ValidationLevel:
        if (match_type, key) in levels:
            return levels[(match_type, key)]
        match = self.repository.get(key, match_type)
        return (
            match.annotations.validation_level
            if match is not None
            else ValidationLevel.NOT_VALIDATED
        )

    def _count_spectra(self, peptide_match, levels) -> None:
        spectrum_levels = [
            self._level_of(levels, MatchType.SPECTRUM, k) for k in peptide_match.spectrum_keys
        ]
        peptide_match.annotations.n_confident_spectra = sum(
            level == ValidationLevel.CONFIDENT for level in spectrum_levels
        )
        peptide_match.annotations.n_doubtful_spectra = sum(
            level == ValidationLevel.DOUBTFUL for level in spectrum_levels
        )

    def _count_peptides(self, group_match, levels) -> None:
        n_confident = 0
        n_doubtful = 0
        validated_spectra = set()
        for peptide_key in group_match.peptide_keys:
            level = self._level_of(levels, MatchType.PEPTIDE, peptide_key)
            if level == ValidationLevel.CONFIDENT:
                n_confident += 1
            elif level == ValidationLevel.DOUBTFUL:
                n_doubtful += 1
            else:
                continue

            peptide_match = self.repository.get(peptide_key, MatchType.PEPTIDE)
            if peptide_match is None:
                continue
            for spectrum_key in peptide_match.spectrum_keys:
                if self._level_of(levels, MatchType.SPECTRUM, spectrum_key).is_validated:
                    validated_spectra.add(spectrum_key)

        group_match.annotations.n_confident_peptides = n_confident
        group_match.annotations.n_doubtful_peptides = n_doubtful
        group_match.annotations.n_validated_spectra = len(validated_spectra)
