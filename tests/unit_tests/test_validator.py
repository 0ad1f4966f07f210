import pytest
from conftest import (
    make_assumption,
    make_spectrum_match,
    make_tag_assumption,
    mock_config,
)

from alphashaker.constants.keys import MatchType, ProjectType
from alphashaker.inference.assembly import IdentificationAssembly
from alphashaker.inference.protein_inference import ProteinInference
from alphashaker.model.matches import ValidationLevel
from alphashaker.providers import SequenceProvider
from alphashaker.repository import InMemoryMatchRepository
from alphashaker.scoring.target_decoy import TargetDecoyResults
from alphashaker.validation.filters import (
    ChargeFilter,
    PeptideLengthFilter,
    ProteinEvidenceFilter,
    build_filters,
)
from alphashaker.validation.validator import MatchesValidator, validation_level
from alphashaker.workflow.managers.maps_manager import MapsManager

# spectrum key, sequence, protein, best assumption PEP, charge
SPECTRA = [
    ("t1", "AAAAAK", "P1", 0.01, 2),
    ("t2", "AAAAAK", "P1", 0.02, 2),
    ("t3", "CCCCCK", "P1", 0.03, 3),
    ("t4", "DDDDDK", "P2", 0.3, 2),
    ("d1", "EEEEEK", "REV_P1", 0.2, 2),
    ("d2", "FFFFFK", "REV_P2", 0.5, 2),
]


def prepared_repository(project_type=ProjectType.PROTEIN):
    """Spectra with selected best peptides, assembled and grouped."""
    repository = InMemoryMatchRepository()
    sequence_provider = SequenceProvider({}, decoy_tag="REV_")
    assembly = IdentificationAssembly(repository, sequence_provider, project_type=project_type)
    for key, sequence, protein, pep, charge in SPECTRA:
        spectrum_match = make_spectrum_match(
            key, [make_assumption(sequence, 10.0, proteins=(protein,), charge=charge)]
        )
        spectrum_match.best_peptide_assumption = spectrum_match.all_peptide_assumptions()[0]
        spectrum_match.annotations.score = pep
        repository.put(key, spectrum_match)
        assembly.build_peptides_and_proteins(spectrum_match)

    if project_type == ProjectType.PROTEIN:
        ProteinInference(repository, sequence_provider).run()
    return repository, sequence_provider


def run_validation(validator: MatchesValidator):
    validator.fill_psm_map()
    validator.estimate(MatchType.SPECTRUM)
    validator.attach_psm_probabilities()
    if MatchType.PEPTIDE in validator.match_types():
        validator.fill_peptide_map()
        validator.estimate(MatchType.PEPTIDE)
        validator.attach_peptide_probabilities()
    if MatchType.PROTEIN in validator.match_types():
        validator.fill_protein_map()
        validator.estimate(MatchType.PROTEIN)
        validator.attach_protein_probabilities()
    return validator.validate_identifications()


def levels(repository, match_type):
    return {
        key: repository.get(key, match_type).annotations.validation_level
        for key in repository.keys(match_type)
    }


def make_validator(repository, sequence_provider, **kwargs):
    return MatchesValidator(
        repository,
        MapsManager(load_from_file=False),
        sequence_provider,
        **kwargs,
    )


@pytest.mark.parametrize(
    "score, expected",
    [
        (0.0, ValidationLevel.CONFIDENT),
        (0.1, ValidationLevel.CONFIDENT),
        (0.2, ValidationLevel.DOUBTFUL),
        (0.4, ValidationLevel.NOT_VALIDATED),
    ],
)
def test_validation_level(score, expected):
    results = TargetDecoyResults(fdr_percent=1.0, score_threshold=0.1, higher_is_better=False)
    doubtful_results = TargetDecoyResults(
        fdr_percent=5.0, score_threshold=0.3, higher_is_better=False
    )

    assert validation_level(score, results, doubtful_results) == expected


def test_validation_level_higher_is_better():
    results = TargetDecoyResults(fdr_percent=1.0, score_threshold=5.0, pep_threshold=1.0)

    assert validation_level(5.0, results) == ValidationLevel.CONFIDENT
    assert validation_level(4.9, results) == ValidationLevel.DOUBTFUL


def test_validation_level_without_threshold():
    results = TargetDecoyResults(fdr_percent=1.0)

    assert validation_level(0.0, results) == ValidationLevel.DOUBTFUL
    assert (
        validation_level(0.0, results, TargetDecoyResults(fdr_percent=5.0))
        == ValidationLevel.NOT_VALIDATED
    )


def test_psm_levels():
    repository, sequence_provider = prepared_repository()
    validator = make_validator(repository, sequence_provider)

    # when
    summary = run_validation(validator)

    # then
    assert levels(repository, MatchType.SPECTRUM) == {
        "d1": ValidationLevel.DOUBTFUL,
        "d2": ValidationLevel.DOUBTFUL,
        "t1": ValidationLevel.CONFIDENT,
        "t2": ValidationLevel.CONFIDENT,
        "t3": ValidationLevel.CONFIDENT,
        "t4": ValidationLevel.DOUBTFUL,
    }
    assert summary[MatchType.SPECTRUM] == {"NOT_VALIDATED": 0, "DOUBTFUL": 3, "CONFIDENT": 3}
    assert validator.maps.results[MatchType.SPECTRUM].n_target == 3


def test_doubtful_fdr_limits_validation():
    repository, sequence_provider = prepared_repository()
    validator = make_validator(repository, sequence_provider, doubtful_fdr=30.0)

    run_validation(validator)

    spectrum_levels = levels(repository, MatchType.SPECTRUM)
    assert spectrum_levels["t4"] == ValidationLevel.DOUBTFUL
    assert spectrum_levels["d1"] == ValidationLevel.DOUBTFUL
    assert spectrum_levels["d2"] == ValidationLevel.NOT_VALIDATED


def test_level_is_monotonic_in_probability():
    repository, sequence_provider = prepared_repository()
    validator = make_validator(repository, sequence_provider, doubtful_fdr=30.0)

    run_validation(validator)

    for match_type in [MatchType.SPECTRUM, MatchType.PEPTIDE, MatchType.PROTEIN]:
        ordered = sorted(
            (m.annotations.probability, -m.annotations.validation_level)
            for m in repository.iterate(match_type)
        )
        assert [level for _, level in ordered] == sorted(level for _, level in ordered)


def test_peptide_and_protein_counts():
    repository, sequence_provider = prepared_repository()
    validator = make_validator(repository, sequence_provider)

    run_validation(validator)

    peptide = repository.get("AAAAAK_", MatchType.PEPTIDE)
    assert peptide.annotations.score == pytest.approx(0.0)
    assert peptide.annotations.validation_level == ValidationLevel.CONFIDENT
    assert peptide.annotations.n_confident_spectra == 2
    assert repository.get("DDDDDK_", MatchType.PEPTIDE).annotations.validation_level == (
        ValidationLevel.DOUBTFUL
    )

    group = repository.get("P1", MatchType.PROTEIN)
    assert group.annotations.validation_level == ValidationLevel.CONFIDENT
    assert group.annotations.n_confident_peptides == 2
    assert group.annotations.n_validated_spectra == 3

    group = repository.get("P2", MatchType.PROTEIN)
    assert group.annotations.n_doubtful_peptides == 1
    assert group.annotations.n_validated_spectra == 1


@pytest.mark.parametrize(
    "filters, match_type, key",
    [
        ({MatchType.SPECTRUM: [ChargeFilter(max_charge=2)]}, MatchType.SPECTRUM, "t3"),
        ({MatchType.PEPTIDE: [PeptideLengthFilter(min_length=7)]}, MatchType.PEPTIDE, "AAAAAK_"),
        ({MatchType.PROTEIN: [ProteinEvidenceFilter(min_peptides=2)]}, MatchType.PROTEIN, "P2"),
    ],
)
def test_filters_only_downgrade(filters, match_type, key):
    repository, sequence_provider = prepared_repository()
    unfiltered = make_validator(repository, sequence_provider)
    run_validation(unfiltered)
    before = levels(repository, match_type)

    # when
    run_validation(make_validator(repository, sequence_provider, filters=filters))

    # then
    after = levels(repository, match_type)
    assert before[key].is_validated
    assert after[key] == ValidationLevel.NOT_VALIDATED
    assert all(after[k] <= before[k] for k in before)


def test_psm_project_validates_spectra_only():
    repository, sequence_provider = prepared_repository(ProjectType.PSM)
    validator = make_validator(repository, sequence_provider, project_type=ProjectType.PSM)

    summary = run_validation(validator)

    assert list(summary) == [MatchType.SPECTRUM]
    assert repository.size(MatchType.PEPTIDE) == 0


def test_validator_from_config():
    config = mock_config({"validation": {"psm_fdr": 5.0, "doubtful_fdr": 10.0}})
    repository, sequence_provider = prepared_repository()

    validator = MatchesValidator.from_config(
        config,
        repository,
        MapsManager(load_from_file=False),
        sequence_provider,
        filters=build_filters(config),
    )

    assert validator.fdr_percent[MatchType.SPECTRUM] == 5.0
    assert validator.fdr_percent[MatchType.PEPTIDE] == 1.0
    assert validator.doubtful_fdr == 10.0
    assert [type(f) for f in validator.filters[MatchType.PROTEIN]] == [ProteinEvidenceFilter]


def test_tag_only_spectra_are_not_validated():
    repository, sequence_provider = prepared_repository(ProjectType.PSM)
    tag_match = make_spectrum_match("tag1", [make_tag_assumption("PEPT", 50.0)])
    tag_match.best_tag_assumption = tag_match.tag_assumptions["novor"][0]
    tag_match.annotations.score = 0.0
    repository.put(tag_match.key, tag_match)
    validator = make_validator(repository, sequence_provider, project_type=ProjectType.PSM)

    # when
    run_validation(validator)

    # then
    assert len(validator.maps.psm_map) == len(SPECTRA)
    tag_match = repository.get("tag1", MatchType.SPECTRUM)
    assert tag_match.annotations.probability == 1.0
    assert tag_match.annotations.validation_level == ValidationLevel.NOT_VALIDATED
