"""Match objects stored in the match repository and their annotations.

Annotations are fixed, typed records attached to a match. Each pipeline stage overwrites the
fields it owns, so re-running a stage never accumulates state.
Cross references between matches are expressed by keys into the repository.
"""

from dataclasses import dataclass, field
from enum import IntEnum

from alphashaker.model.peptide import Peptide, Tag


class ValidationLevel(IntEnum):
    """Ordered validation levels, higher is better."""

    NOT_VALIDATED = 0
    DOUBTFUL = 1
    CONFIDENT = 2

    @property
    def is_validated(self) -> bool:
        return self >= ValidationLevel.DOUBTFUL


class PiStatus(IntEnum):
    """Protein inference status of a protein group."""

    UNIQUE = 0
    RELATED = 1
    AMBIGUOUS = 2


@dataclass
class AssumptionAnnotations:
    probability: float = 1.0
    algorithm_delta_pep: float = 1.0
    delta_pep: float = 1.0


@dataclass
class PeptideAssumption:
    algorithm: str
    score: float
    peptide: Peptide
    charge: int = 2
    rank: int = 1
    annotations: AssumptionAnnotations = field(default_factory=AssumptionAnnotations)

    @property
    def key(self) -> str:
        return self.peptide.key

    def is_same_identity(self, other) -> bool:
        return isinstance(
            other, PeptideAssumption
        ) and self.peptide.is_same_sequence_and_modification_status(other.peptide)


@dataclass
class TagAssumption:
    algorithm: str
    score: float
    tag: Tag
    charge: int = 2
    rank: int = 1
    annotations: AssumptionAnnotations = field(default_factory=AssumptionAnnotations)

    @property
    def key(self) -> str:
        return f"tag:{self.tag.key}"

    def is_same_identity(self, other) -> bool:
        return isinstance(
            other, TagAssumption
        ) and self.tag.is_same_sequence_and_modification_status(other.tag)


@dataclass
class ModificationSite:
    """Localization of one modification with the score supporting it."""

    name: str
    site: int
    score: float = 0.0
    confident: bool = False


@dataclass
class PsmAnnotations:
    score: float = 1.0
    probability: float = 1.0
    algorithm_delta_pep: float = 1.0
    delta_pep: float = 1.0
    validation_level: ValidationLevel = ValidationLevel.NOT_VALIDATED
    # modification name -> candidate site -> site score
    site_scores: dict[str, dict[int, float]] = field(default_factory=dict)
    modification_sites: list[ModificationSite] = field(default_factory=list)
    protein_mapping_mismatch: bool = False
    peptide_key: str | None = None
    protein_group_keys: list[str] = field(default_factory=list)


@dataclass
class SpectrumMatch:
    """All candidate identifications of one spectrum."""

    key: str
    peptide_assumptions: dict[str, list[PeptideAssumption]] = field(
        default_factory=dict
    )
    tag_assumptions: dict[str, list[TagAssumption]] = field(default_factory=dict)
    best_peptide_assumption: PeptideAssumption | None = None
    best_tag_assumption: TagAssumption | None = None
    annotations: PsmAnnotations = field(default_factory=PsmAnnotations)

    def add_peptide_assumption(self, assumption: PeptideAssumption) -> None:
        self.peptide_assumptions.setdefault(assumption.algorithm, []).append(
            assumption
        )

    def add_tag_assumption(self, assumption: TagAssumption) -> None:
        self.tag_assumptions.setdefault(assumption.algorithm, []).append(assumption)

    def all_peptide_assumptions(self) -> list[PeptideAssumption]:
        return [
            assumption
            for algorithm in sorted(self.peptide_assumptions)
            for assumption in self.peptide_assumptions[algorithm]
        ]

    def all_tag_assumptions(self) -> list[TagAssumption]:
        return [
            assumption
            for algorithm in sorted(self.tag_assumptions)
            for assumption in self.tag_assumptions[algorithm]
        ]

    @property
    def algorithms(self) -> list[str]:
        return sorted(set(self.peptide_assumptions) | set(self.tag_assumptions))

    @property
    def best_assumption(self) -> PeptideAssumption | TagAssumption | None:
        if self.best_peptide_assumption is not None:
            return self.best_peptide_assumption
        return self.best_tag_assumption


@dataclass
class PeptideAnnotations:
    score: float = 1.0
    probability: float = 1.0
    validation_level: ValidationLevel = ValidationLevel.NOT_VALIDATED
    n_confident_spectra: int = 0
    n_doubtful_spectra: int = 0
    protein_group_keys: list[str] = field(default_factory=list)
    modification_sites: list[ModificationSite] = field(default_factory=list)


@dataclass
class PeptideMatch:
    key: str
    peptide: Peptide
    spectrum_keys: list[str] = field(default_factory=list)
    annotations: PeptideAnnotations = field(default_factory=PeptideAnnotations)

    def add_spectrum_key(self, spectrum_key: str) -> None:
        if spectrum_key not in self.spectrum_keys:
            self.spectrum_keys.append(spectrum_key)
            self.spectrum_keys.sort()

    def remove_spectrum_key(self, spectrum_key: str) -> None:
        if spectrum_key in self.spectrum_keys:
            self.spectrum_keys.remove(spectrum_key)


@dataclass
class ProteinAnnotations:
    score: float = 1.0
    probability: float = 1.0
    validation_level: ValidationLevel = ValidationLevel.NOT_VALIDATED
    pi_status: PiStatus = PiStatus.UNIQUE
    main_accession: str | None = None
    n_confident_peptides: int = 0
    n_doubtful_peptides: int = 0
    n_validated_spectra: int = 0
    # sites are positions on the main accession
    modification_sites: list[ModificationSite] = field(default_factory=list)


@dataclass
class ProteinGroupMatch:
    key: str
    accessions: list[str]
    peptide_keys: list[str] = field(default_factory=list)
    annotations: ProteinAnnotations = field(default_factory=ProteinAnnotations)

    def add_peptide_key(self, peptide_key: str) -> None:
        if peptide_key not in self.peptide_keys:
            self.peptide_keys.append(peptide_key)
            self.peptide_keys.sort()

    def remove_peptide_key(self, peptide_key: str) -> None:
        if peptide_key in self.peptide_keys:
            self.peptide_keys.remove(peptide_key)
