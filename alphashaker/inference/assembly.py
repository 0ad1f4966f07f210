"""Assembly of peptide and protein group matches from the best peptide of every spectrum."""

import logging
import threading

from alphashaker.constants.keys import MatchType, ProjectType
from alphashaker.model.matches import PeptideMatch, ProteinGroupMatch, SpectrumMatch
from alphashaker.providers import SequenceProvider
from alphashaker.utils import protein_group_key, split_accessions

logger = logging.getLogger()


class IdentificationAssembly:
    def __init__(
        self,
        repository,
        sequence_provider: SequenceProvider,
        project_type: str = ProjectType.PROTEIN,
    ):
        """Links spectrum matches to peptide matches and peptide matches to protein groups.

        Parameters
        ----------
        repository : MatchRepository
            Repository holding all matches.

        sequence_provider : SequenceProvider
            Maps peptides without proteins to their accessions.

        project_type : str, default 'protein'
            `psm` skips the assembly, `peptide` only builds peptide matches.
        """
        self.repository = repository
        self.sequence_provider = sequence_provider
        self.project_type = project_type
        # peptides and protein groups are shared between spectra
        self._lock = threading.Lock()

    def _unlink(self, spectrum_key: str, peptide_key: str) -> None:
        peptide_match = self.repository.get(peptide_key, MatchType.PEPTIDE)
        if peptide_match is None:
            return

        peptide_match.remove_spectrum_key(spectrum_key)
        if peptide_match.spectrum_keys:
            self.repository.put(peptide_key, peptide_match)
            return

        self.repository.remove(peptide_key, MatchType.PEPTIDE)
        for group_key in peptide_match.annotations.protein_group_keys:
            group = self.repository.get(group_key, MatchType.PROTEIN)
            if group is None:
                continue
            group.remove_peptide_key(peptide_key)
            if group.peptide_keys:
                self.repository.put(group_key, group)
            else:
                self.repository.remove(group_key, MatchType.PROTEIN)

    def build_peptides_and_proteins(self, spectrum_match: SpectrumMatch) -> None:
        """Add the spectrum to the peptide match of its best peptide and that peptide to its protein group.

        Running this twice for the same spectrum does not change any membership. If the best peptide
        of the spectrum changed since the last run, the previous link is removed first and peptides or
        groups left without members are deleted.
        """
        if self.project_type == ProjectType.PSM:
            return

        assumption = spectrum_match.best_peptide_assumption
        annotations = spectrum_match.annotations
        peptide_key = assumption.peptide.key if assumption is not None else None

        with self._lock:
            if annotations.peptide_key is not None and annotations.peptide_key != peptide_key:
                self._unlink(spectrum_match.key, annotations.peptide_key)
                annotations.protein_group_keys = []

            annotations.peptide_key = peptide_key
            if assumption is None:
                annotations.protein_group_keys = []
                self.repository.put(spectrum_match.key, spectrum_match)
                return

            peptide_match = self.repository.get(peptide_key, MatchType.PEPTIDE)
            if peptide_match is None:
                peptide_match = PeptideMatch(key=peptide_key, peptide=assumption.peptide)
            peptide_match.add_spectrum_key(spectrum_match.key)

            if self.project_type == ProjectType.PROTEIN:
                accessions = split_accessions(
                    self.sequence_provider.get_accessions(peptide_match.peptide)
                )
                if accessions:
                    group_key = protein_group_key(accessions)
                    group = self.repository.get(group_key, MatchType.PROTEIN)
                    if group is None:
                        group = ProteinGroupMatch(key=group_key, accessions=accessions)
                    group.add_peptide_key(peptide_key)
                    self.repository.put(group_key, group)

                    if group_key not in peptide_match.annotations.protein_group_keys:
                        peptide_match.annotations.protein_group_keys = sorted(
                            [*peptide_match.annotations.protein_group_keys, group_key]
                        )
                    annotations.protein_group_keys = [group_key]
                else:
                    logger.debug(f"Peptide {peptide_key} maps to no protein")
                    annotations.protein_group_keys = []

            self.repository.put(peptide_key, peptide_match)
            self.repository.put(spectrum_match.key, spectrum_match)
