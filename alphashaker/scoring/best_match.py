"""Calibrated probabilities of the assumptions of a spectrum and selection of its best hit."""

import logging
import math
from collections import defaultdict

from alphashaker.exceptions import NoBestAssumptionError
from alphashaker.model.matches import (
    AssumptionAnnotations,
    PeptideAssumption,
    SpectrumMatch,
    TagAssumption,
)
from alphashaker.scoring.input_map import InputMap

logger = logging.getLogger()


def _assign_deltas(ranked: list, attribute: str) -> None:
    """Delta-PEP of every assumption against the next assumption of a different identity.

    `ranked` is ordered best first. Assumptions without a different successor get `1 - pep`.
    """
    pending = []
    previous = None
    for assumption in ranked:
        pep = assumption.annotations.probability
        if previous is not None and not assumption.is_same_identity(previous):
            for p in pending:
                setattr(p.annotations, attribute, pep - p.annotations.probability)
            pending = []
        previous = assumption
        pending.append(assumption)

    for p in pending:
        setattr(p.annotations, attribute, 1 - p.annotations.probability)


class BestMatchSelection:
    def __init__(self, input_map: InputMap, target_decoy: bool = True):
        """Attaches PEPs to assumptions and selects the best one per spectrum.

        Parameters
        ----------
        input_map : InputMap
            Estimated per algorithm maps.

        target_decoy : bool, default True
            If False, every PEP is 1.0 and the raw score decides.
        """
        self.input_map = input_map
        self.target_decoy = target_decoy

    def _normalized_score(self, assumption) -> float:
        """Raw score oriented so that higher is better, missing scores are worst."""
        if assumption.score is None or math.isnan(assumption.score):
            return -math.inf
        if self.input_map.is_higher_better(assumption.algorithm):
            return assumption.score
        return -assumption.score

    def _rank_within_algorithm(self, assumptions: list) -> list:
        return sorted(
            assumptions,
            key=lambda a: (-self._normalized_score(a), a.rank, a.key),
        )

    def _attach_algorithm(self, algorithm: str, assumptions: list) -> None:
        previous_pep = 0.0
        ranked = self._rank_within_algorithm(assumptions)
        for assumption in ranked:
            if not self.target_decoy or self._normalized_score(assumption) == -math.inf:
                pep = 1.0
            else:
                # PEPs never improve when walking to worse raw scores
                pep = max(
                    previous_pep,
                    self.input_map.get_probability(algorithm, assumption.score),
                )
                previous_pep = pep
            assumption.annotations = AssumptionAnnotations(probability=pep)

        _assign_deltas(ranked, "algorithm_delta_pep")

    def _merged_ranking(self, assumptions: list) -> list:
        return sorted(
            assumptions,
            key=lambda a: (
                a.annotations.probability,
                -self._normalized_score(a),
                a.key,
                a.algorithm,
            ),
        )

    def attach_assumption_probabilities(self, spectrum_match: SpectrumMatch) -> None:
        """Set probability, per algorithm delta-PEP and cross algorithm delta-PEP of every assumption.

        Within an algorithm, assumptions are walked from the best raw score on and the PEP is made
        non-decreasing. The cross algorithm delta-PEP is computed on a separate ranking of all annotated
        assumptions of the spectrum, peptides and tags independently.
        """
        for algorithm, assumptions in sorted(spectrum_match.peptide_assumptions.items()):
            self._attach_algorithm(algorithm, assumptions)
        for algorithm, assumptions in sorted(spectrum_match.tag_assumptions.items()):
            self._attach_algorithm(algorithm, assumptions)

        _assign_deltas(
            self._merged_ranking(spectrum_match.all_peptide_assumptions()), "delta_pep"
        )
        _assign_deltas(
            self._merged_ranking(spectrum_match.all_tag_assumptions()), "delta_pep"
        )

    def _select(self, assumptions: list) -> PeptideAssumption | TagAssumption:
        agreeing = defaultdict(set)
        for assumption in assumptions:
            agreeing[assumption.key].add(assumption.algorithm)

        return min(
            assumptions,
            key=lambda a: (
                a.annotations.probability,
                -self._normalized_score(a),
                -len(agreeing[a.key]),
                a.key,
                a.algorithm,
                a.rank,
            ),
        )

    def select_best_hit(self, spectrum_match: SpectrumMatch):
        """Select the best assumption of a spectrum and write it to the PSM annotations.

        Lowest PEP wins, then the better raw score, then the number of algorithms proposing the
        same peptide, then the peptide key. Tags are only considered without peptide assumptions.

        Raises
        ------
        NoBestAssumptionError
            The spectrum has no assumption at all.
        """
        peptide_assumptions = spectrum_match.all_peptide_assumptions()
        tag_assumptions = spectrum_match.all_tag_assumptions()

        spectrum_match.best_peptide_assumption = None
        spectrum_match.best_tag_assumption = None

        if peptide_assumptions:
            best = self._select(peptide_assumptions)
            spectrum_match.best_peptide_assumption = best
        elif tag_assumptions:
            best = self._select(tag_assumptions)
            spectrum_match.best_tag_assumption = best
        else:
            raise NoBestAssumptionError(spectrum_match.key)

        annotations = spectrum_match.annotations
        annotations.score = best.annotations.probability
        annotations.probability = best.annotations.probability
        annotations.algorithm_delta_pep = best.annotations.algorithm_delta_pep
        annotations.delta_pep = best.annotations.delta_pep
        return best

    def process(self, spectrum_match: SpectrumMatch):
        self.attach_assumption_probabilities(spectrum_match)
        return self.select_best_hit(spectrum_match)
