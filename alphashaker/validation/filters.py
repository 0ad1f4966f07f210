"""Quality filters which can downgrade validated matches to not validated."""

import logging

from alphashaker.constants.keys import ConfigKeys, MatchType

logger = logging.getLogger()


class QualityFilter:
    """A named condition a validated match has to fulfil."""

    name = ""
    match_type = ""

    def passes(self, match) -> bool:
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}({self.name})"


class ChargeFilter(QualityFilter):
    match_type = MatchType.SPECTRUM

    def __init__(self, min_charge: int = 1, max_charge: int = 6):
        self.name = f"charge {min_charge}-{max_charge}"
        self.min_charge = min_charge
        self.max_charge = max_charge

    def passes(self, spectrum_match) -> bool:
        assumption = spectrum_match.best_assumption
        return assumption is not None and self.min_charge <= assumption.charge <= self.max_charge


class PeptideLengthFilter(QualityFilter):
    match_type = MatchType.PEPTIDE

    def __init__(self, min_length: int = 6, max_length: int = 60):
        self.name = f"length {min_length}-{max_length}"
        self.min_length = min_length
        self.max_length = max_length

    def passes(self, peptide_match) -> bool:
        return self.min_length <= peptide_match.peptide.length <= self.max_length


class ProteinEvidenceFilter(QualityFilter):
    match_type = MatchType.PROTEIN

    def __init__(self, min_peptides: int = 1, min_spectra: int = 1):
        """Minimal number of validated peptides and validated spectra of a protein group."""
        self.name = f"at least {min_peptides} peptides and {min_spectra} spectra"
        self.min_peptides = min_peptides
        self.min_spectra = min_spectra

    def passes(self, group_match) -> bool:
        annotations = group_match.annotations
        n_peptides = annotations.n_confident_peptides + annotations.n_doubtful_peptides
        return (
            n_peptides >= self.min_peptides
            and annotations.n_validated_spectra >= self.min_spectra
        )


def build_filters(config) -> dict[str, list[QualityFilter]]:
    """Filters per match type from the `filters` section of the config."""
    filter_config = config[ConfigKeys.FILTERS]
    return {
        MatchType.SPECTRUM: [ChargeFilter(**filter_config["psm"])],
        MatchType.PEPTIDE: [PeptideLengthFilter(**filter_config["peptide"])],
        MatchType.PROTEIN: [ProteinEvidenceFilter(**filter_config["protein"])],
    }
