"""Localization of variable modifications on PSMs, aggregated to peptides and protein groups."""

import itertools
import logging

from alphashaker.constants.keys import MatchType
from alphashaker.model.matches import (
    ModificationSite,
    PeptideMatch,
    ProteinGroupMatch,
    SpectrumMatch,
)
from alphashaker.model.peptide import Modification, Peptide
from alphashaker.providers import ModificationRegistry, SequenceProvider
from alphashaker.ptm.site_scoring import SiteScorer

logger = logging.getLogger()


class PeptideChecker:
    def __init__(self, sequence_provider: SequenceProvider, registry: ModificationRegistry):
        """Re-maps peptides to the proteins compatible with their modifications."""
        self.sequence_provider = sequence_provider
        self.registry = registry

    def compatible_accessions(self, peptide: Peptide) -> list[str]:
        """Accessions of the peptide on which every modification can sit.

        Proteins unknown to the sequence provider cannot be checked and are kept.
        """
        accessions = []
        for accession in self.sequence_provider.get_accessions(peptide):
            protein_sequence = self.sequence_provider.get_sequence(accession)
            if protein_sequence is None:
                accessions.append(accession)
                continue
            for start in self.sequence_provider.get_positions(accession, peptide.sequence):
                if all(
                    self.registry.is_compatible(
                        m.name, peptide.sequence, protein_sequence, start
                    )
                    for m in peptide.modifications
                ):
                    accessions.append(accession)
                    break
        return sorted(accessions)

    def check_peptide(self, peptide: Peptide) -> tuple[Peptide, bool]:
        """Return the peptide with refined proteins and whether the mapping is consistent.

        If no protein is compatible, the peptide is returned unchanged and flagged.
        """
        accessions = self.compatible_accessions(peptide)
        if not accessions:
            return peptide, False
        return peptide.with_proteins(accessions), True


def _refine_proteins(
    peptide_checker: PeptideChecker | None, spectrum_match: SpectrumMatch, localized: Peptide
) -> Peptide:
    """Re-map a peptide whose modifications moved, flagging the PSM if no protein fits."""
    if peptide_checker is None:
        return localized
    localized, is_consistent = peptide_checker.check_peptide(localized)
    if not is_consistent:
        spectrum_match.annotations.protein_mapping_mismatch = True
        logger.warning(
            f"{spectrum_match.key}: no protein is compatible with the localized peptide {localized.key}"
        )
    return localized


class ModificationLocalizationScorer:
    def __init__(
        self,
        registry: ModificationRegistry,
        site_scorer: SiteScorer,
        peptide_checker: PeptideChecker | None = None,
        confident_site_score: float = 20.0,
        max_permutations: int = 1000,
    ):
        """Scores candidate sites and commits one localization per spectrum.

        Parameters
        ----------
        registry : ModificationRegistry
            Target residues and positions of the modifications.

        site_scorer : SiteScorer
            Scores the candidate sites of one modification.

        peptide_checker : PeptideChecker, optional
            If given, peptides whose modifications moved are re-mapped to their proteins.

        confident_site_score : float, default 20.0
            Minimal site score of a confident localization.

        max_permutations : int, default 1000
            Maximal number of site combinations evaluated per modification.
        """
        self.registry = registry
        self.site_scorer = site_scorer
        self.peptide_checker = peptide_checker
        self.confident_site_score = confident_site_score
        self.max_permutations = max_permutations

    def score_modifications(self, spectrum_match: SpectrumMatch) -> None:
        """Store the score of every candidate site of every modification of the best peptide."""
        assumption = spectrum_match.best_peptide_assumption
        spectrum_match.annotations.site_scores = {}
        if assumption is None:
            return

        peptide = assumption.peptide
        for name in sorted(peptide.modification_names()):
            candidates = self.registry.candidate_sites(name, peptide.sequence)
            if not candidates:
                continue
            scores = self.site_scorer.score_sites(spectrum_match, peptide, name, candidates)
            spectrum_match.annotations.site_scores[name] = {
                site: float(scores.get(site, 0.0)) for site in candidates
            }

    def _infer_sites(
        self,
        current: tuple[int, ...],
        scores: dict[int, float],
        occupied: set[int],
    ) -> tuple[tuple[int, ...], bool]:
        """Best combination of sites for the instances of one modification.

        Highest summed site score wins, then the current placement, then the smallest positions.
        The second value tells whether the localization is unambiguous by construction.
        """
        candidates = sorted(site for site in scores if site not in occupied)
        n = len(current)
        if n == len(candidates):
            return tuple(candidates), True
        if n > len(candidates):
            return current, False

        combinations = list(
            itertools.islice(itertools.combinations(candidates, n), self.max_permutations)
        )
        if current not in combinations:
            combinations.append(current)

        best = min(
            combinations,
            key=lambda combination: (
                -sum(scores.get(site, 0.0) for site in combination),
                combination != current,
                combination,
            ),
        )
        return best, False

    def modification_site_inference(self, spectrum_match: SpectrumMatch) -> bool:
        """Commit one localization of the modifications of the best peptide.

        Returns True if modifications were moved. Modifications without site scores keep the
        placement of the search engine.
        """
        assumption = spectrum_match.best_peptide_assumption
        annotations = spectrum_match.annotations
        annotations.modification_sites = []
        annotations.protein_mapping_mismatch = False
        if assumption is None:
            return False

        peptide = assumption.peptide
        modifications = [
            m for m in peptide.modifications if m.name not in annotations.site_scores
        ]
        placed = {m.site for m in modifications}
        sites = []

        for name, scores in sorted(annotations.site_scores.items()):
            current = tuple(sorted(m.site for m in peptide.modifications if m.name == name))
            chosen, unambiguous = self._infer_sites(current, scores, placed)
            for site in chosen:
                score = scores.get(site, 0.0)
                modifications.append(Modification(name, site))
                sites.append(
                    ModificationSite(
                        name=name,
                        site=site,
                        score=score,
                        confident=unambiguous or score >= self.confident_site_score,
                    )
                )
                placed.add(site)

        annotations.modification_sites = sorted(sites, key=lambda s: (s.site, s.name))

        localized = peptide.with_modifications(modifications)
        moved = localized.modifications != peptide.modifications
        if not moved:
            return False

        logger.debug(
            f"{spectrum_match.key}: modifications moved from {peptide.key} to {localized.key}"
        )
        assumption.peptide = _refine_proteins(self.peptide_checker, spectrum_match, localized)
        return True

    def process(self, spectrum_match: SpectrumMatch) -> bool:
        self.score_modifications(spectrum_match)
        return self.modification_site_inference(spectrum_match)


def _placement(peptide: Peptide) -> tuple[tuple[str, int], ...]:
    return tuple((m.name, m.site) for m in peptide.modifications)


class PeptideModificationInference:
    def __init__(self, peptide_checker: PeptideChecker | None = None):
        """Aligns non confident localizations with the confident localizations of the same peptide.

        PSMs whose best peptides share sequence and modification names are compared. Placements
        in which every scored site is confident are collected with the number of PSMs supporting
        them. A PSM with non confident sites takes the placement with most support which keeps
        its own confident sites and only uses its own candidate sites. Ties are broken by the
        summed site score of the PSM, then by the smallest placement.

        Parameters
        ----------
        peptide_checker : PeptideChecker, optional
            If given, peptides whose modifications moved are re-mapped to their proteins.
        """
        self.peptide_checker = peptide_checker
        self.confident_placements: dict[tuple, dict[tuple, int]] = {}

    @staticmethod
    def _group_key(peptide: Peptide) -> tuple:
        return peptide.sequence, tuple(sorted(m.name for m in peptide.modifications))

    def collect(self, repository) -> None:
        """Count the confidently localized placements of all PSMs."""
        placements = {}
        for spectrum_match in repository.iterate(MatchType.SPECTRUM):
            assumption = spectrum_match.best_peptide_assumption
            sites = spectrum_match.annotations.modification_sites
            if assumption is None or not sites or not all(s.confident for s in sites):
                continue
            counts = placements.setdefault(self._group_key(assumption.peptide), {})
            placement = _placement(assumption.peptide)
            counts[placement] = counts.get(placement, 0) + 1
        self.confident_placements = placements

    @staticmethod
    def _is_candidate(placement, current, site_scores) -> bool:
        for name, site in placement:
            if name in site_scores:
                if site not in site_scores[name]:
                    return False
            elif (name, site) not in current:
                return False
        return True

    def align(self, spectrum_match: SpectrumMatch) -> bool:
        """Move the non confident modifications of a PSM. Returns True if they moved."""
        assumption = spectrum_match.best_peptide_assumption
        annotations = spectrum_match.annotations
        if assumption is None or all(s.confident for s in annotations.modification_sites):
            return False

        peptide = assumption.peptide
        current = _placement(peptide)
        confident = {(s.name, s.site) for s in annotations.modification_sites if s.confident}
        site_scores = annotations.site_scores

        candidates = [
            (count, placement)
            for placement, count in self.confident_placements.get(
                self._group_key(peptide), {}
            ).items()
            if confident.issubset(placement)
            and self._is_candidate(placement, current, site_scores)
        ]
        if not candidates:
            return False

        _, placement = min(
            candidates,
            key=lambda c: (
                -c[0],
                -sum(site_scores.get(name, {}).get(site, 0.0) for name, site in c[1]),
                c[1],
            ),
        )
        if placement == current:
            return False

        annotations.modification_sites = sorted(
            (
                ModificationSite(
                    name=name,
                    site=site,
                    score=site_scores[name].get(site, 0.0),
                    confident=(name, site) in confident,
                )
                for name, site in placement
                if name in site_scores
            ),
            key=lambda s: (s.site, s.name),
        )
        localized = peptide.with_modifications(
            Modification(name, site) for name, site in placement
        )
        logger.debug(
            f"{spectrum_match.key}: modifications aligned from {peptide.key} to {localized.key}"
        )
        annotations.protein_mapping_mismatch = False
        assumption.peptide = _refine_proteins(self.peptide_checker, spectrum_match, localized)
        return True


def _keep_best(best: dict, name: str, site: int, score: float, confident: bool) -> None:
    key = (name, site)
    if key not in best:
        best[key] = ModificationSite(name, site, score, confident)
    else:
        best[key].score = max(best[key].score, score)
        best[key].confident = best[key].confident or confident


def score_peptide_modifications(peptide_match: PeptideMatch, repository) -> None:
    """Aggregate the localization of the validated PSMs of a peptide.

    Every modification of the peptide gets the best site score among the validated PSMs
    and is confident if any of them localized it confidently.
    """
    best = {}
    for spectrum_key in peptide_match.spectrum_keys:
        spectrum_match = repository.get(spectrum_key, MatchType.SPECTRUM)
        if spectrum_match is None:
            continue
        if not spectrum_match.annotations.validation_level.is_validated:
            continue
        for site in spectrum_match.annotations.modification_sites:
            _keep_best(best, site.name, site.site, site.score, site.confident)

    profile = {(m.name, m.site) for m in peptide_match.peptide.modifications}
    peptide_match.annotations.modification_sites = sorted(
        (site for key, site in best.items() if key in profile),
        key=lambda s: (s.site, s.name),
    )


def score_protein_modifications(
    group_match: ProteinGroupMatch, repository, sequence_provider: SequenceProvider
) -> None:
    """Project the modification sites of the validated peptides of a group onto its main accession.

    Sites are 1-based positions on the protein sequence, terminal modifications sit on the
    first or last residue of the peptide. A site supported by several peptides or by several
    occurrences of a peptide keeps the best score and is confident if any of them is.
    Without the sequence of the main accession no site is projected.
    """
    annotations = group_match.annotations
    annotations.modification_sites = []
    accession = annotations.main_accession
    if accession is None or sequence_provider.get_sequence(accession) is None:
        return

    best = {}
    for peptide_key in group_match.peptide_keys:
        peptide_match = repository.get(peptide_key, MatchType.PEPTIDE)
        if peptide_match is None:
            continue
        if not peptide_match.annotations.validation_level.is_validated:
            continue
        length = peptide_match.peptide.length
        for start in sequence_provider.get_positions(accession, peptide_match.peptide.sequence):
            for site in peptide_match.annotations.modification_sites:
                position = start + min(max(site.site, 1), length)
                _keep_best(best, site.name, position, site.score, site.confident)

    annotations.modification_sites = sorted(best.values(), key=lambda s: (s.site, s.name))
