import numpy as np
import pytest
from conftest import make_assumption, make_spectrum_match, mock_config

from alphashaker.constants.keys import MatchType
from alphashaker.model.matches import (
    ModificationSite,
    PeptideMatch,
    ProteinGroupMatch,
    ValidationLevel,
)
from alphashaker.model.peptide import Peptide, parse_modifications
from alphashaker.providers import ModificationRegistry, SequenceProvider, SpectrumProvider
from alphashaker.ptm.localization import (
    ModificationLocalizationScorer,
    PeptideChecker,
    PeptideModificationInference,
    score_peptide_modifications,
    score_protein_modifications,
)
from alphashaker.ptm.site_scoring import (
    SiteDeterminingIonScorer,
    binomial_score,
    count_matches,
    fragment_mz,
)
from alphashaker.repository import InMemoryMatchRepository


class StaticSiteScorer:
    """Returns fixed site scores per modification name, unknown sites score 0."""

    def __init__(self, scores: dict[str, dict[int, float]]):
        self.scores = scores
        self.calls = []

    def score_sites(self, spectrum_match, peptide, modification_name, candidate_sites):
        self.calls.append((modification_name, tuple(candidate_sites)))
        scores = self.scores.get(modification_name, {})
        return {site: scores.get(site, 0.0) for site in candidate_sites}


@pytest.fixture
def registry():
    return ModificationRegistry.from_config(mock_config()["modifications"])


def best_spectrum_match(sequence, modifications, proteins=("P1",)):
    spectrum_match = make_spectrum_match(
        "s1", [make_assumption(sequence, 10.0, modifications=modifications, proteins=proteins)]
    )
    spectrum_match.best_peptide_assumption = spectrum_match.all_peptide_assumptions()[0]
    return spectrum_match


def test_modification_is_moved_to_best_site(registry):
    spectrum_match = best_spectrum_match("PEPSTDEK", "Phospho@4")
    scorer = ModificationLocalizationScorer(registry, StaticSiteScorer({"Phospho": {5: 30.0}}))

    # when
    moved = scorer.process(spectrum_match)

    # then
    assert moved
    assert spectrum_match.best_peptide_assumption.peptide.key == "PEPSTDEK_Phospho@5"
    assert spectrum_match.annotations.site_scores == {"Phospho": {4: 0.0, 5: 30.0}}
    assert spectrum_match.annotations.modification_sites == [
        ModificationSite("Phospho", 5, 30.0, True)
    ]


def test_tie_keeps_search_engine_placement(registry):
    spectrum_match = best_spectrum_match("PEPSTDEK", "Phospho@5")
    scorer = ModificationLocalizationScorer(
        registry, StaticSiteScorer({"Phospho": {4: 10.0, 5: 10.0}})
    )

    assert not scorer.process(spectrum_match)
    assert spectrum_match.best_peptide_assumption.peptide.key == "PEPSTDEK_Phospho@5"
    assert not spectrum_match.annotations.modification_sites[0].confident


def test_single_candidate_is_confident(registry):
    spectrum_match = best_spectrum_match("PEPSDEK", "Phospho@4")
    scorer = ModificationLocalizationScorer(registry, StaticSiteScorer({}))

    assert not scorer.process(spectrum_match)
    (site,) = spectrum_match.annotations.modification_sites
    assert site.site == 4
    assert site.confident


def test_unknown_modification_keeps_its_site(registry):
    spectrum_match = best_spectrum_match("PEPSTDEK", "Foo@2;Phospho@4")
    site_scorer = StaticSiteScorer({"Phospho": {5: 30.0}})
    scorer = ModificationLocalizationScorer(registry, site_scorer)

    scorer.process(spectrum_match)

    assert [name for name, _ in site_scorer.calls] == ["Phospho"]
    assert spectrum_match.best_peptide_assumption.peptide.key == "PEPSTDEK_Foo@2,Phospho@5"


def test_max_permutations_limits_the_search(registry):
    scores = {"Phospho": {3: 30.0}}

    limited = ModificationLocalizationScorer(
        registry, StaticSiteScorer(scores), max_permutations=1
    )
    spectrum_match = best_spectrum_match("SSSSK", "Phospho@4")
    assert not limited.process(spectrum_match)

    unlimited = ModificationLocalizationScorer(registry, StaticSiteScorer(scores))
    spectrum_match = best_spectrum_match("SSSSK", "Phospho@4")
    assert unlimited.process(spectrum_match)
    assert spectrum_match.best_peptide_assumption.peptide.key == "SSSSK_Phospho@3"


def test_localization_is_repeatable(registry):
    spectrum_match = best_spectrum_match("PEPSTDEK", "Phospho@4")
    scorer = ModificationLocalizationScorer(registry, StaticSiteScorer({"Phospho": {5: 30.0}}))

    scorer.process(spectrum_match)
    first = list(spectrum_match.annotations.modification_sites)
    assert not scorer.process(spectrum_match)

    assert spectrum_match.annotations.modification_sites == first


def test_no_best_peptide_is_a_no_op(registry):
    spectrum_match = make_spectrum_match("s1", [])
    scorer = ModificationLocalizationScorer(registry, StaticSiteScorer({}))

    assert not scorer.process(spectrum_match)
    assert spectrum_match.annotations.site_scores == {}


@pytest.mark.parametrize(
    "proteins, expected_proteins, expected_mismatch",
    [
        # peptide at the protein N-terminus
        (("P1",), ("P1",), False),
        # only the protein with a cleaved initiator methionine is compatible
        (("P2", "P3"), ("P2",), False),
        # peptide inside the protein cannot carry a protein N-terminal modification
        (("P3",), ("P3",), True),
    ],
)
def test_peptide_checker_after_localization(
    registry, proteins, expected_proteins, expected_mismatch
):
    sequence_provider = SequenceProvider(
        {"P1": "PEPSTDEKR", "P2": "MPEPSTDEKR", "P3": "MKKPEPSTDEKR"}
    )
    spectrum_match = best_spectrum_match("PEPSTDEK", "Acetyl@0;Phospho@4", proteins=proteins)
    scorer = ModificationLocalizationScorer(
        registry,
        StaticSiteScorer({"Phospho": {5: 30.0}}),
        peptide_checker=PeptideChecker(sequence_provider, registry),
    )

    # when
    assert scorer.process(spectrum_match)

    # then
    peptide = spectrum_match.best_peptide_assumption.peptide
    assert peptide.key == "PEPSTDEK_Acetyl@0,Phospho@5"
    assert peptide.proteins == expected_proteins
    assert spectrum_match.annotations.protein_mapping_mismatch == expected_mismatch


def test_peptide_checker_keeps_unknown_proteins(registry):
    checker = PeptideChecker(SequenceProvider({}), registry)
    peptide = Peptide("PEPSTDEK", parse_modifications("Acetyl@0"), ("P9",))

    checked, is_consistent = checker.check_peptide(peptide)

    assert is_consistent
    assert checked.proteins == ("P9",)


def test_score_peptide_modifications_uses_validated_psms():
    repository = InMemoryMatchRepository()
    site_scores = [
        ("s1", ValidationLevel.CONFIDENT, ModificationSite("Phospho", 5, 15.0, False)),
        ("s2", ValidationLevel.DOUBTFUL, ModificationSite("Phospho", 5, 25.0, True)),
        ("s3", ValidationLevel.NOT_VALIDATED, ModificationSite("Phospho", 5, 90.0, True)),
        ("s4", ValidationLevel.CONFIDENT, ModificationSite("Phospho", 4, 40.0, True)),
    ]
    for key, level, site in site_scores:
        spectrum_match = make_spectrum_match(key, [])
        spectrum_match.annotations.validation_level = level
        spectrum_match.annotations.modification_sites = [site]
        repository.put(key, spectrum_match)

    peptide = Peptide("PEPSTDEK", parse_modifications("Phospho@5"), ("P1",))
    peptide_match = PeptideMatch(
        key=peptide.key, peptide=peptide, spectrum_keys=["s1", "s2", "s3", "s4", "missing"]
    )
    repository.put(peptide.key, peptide_match)

    # when
    score_peptide_modifications(peptide_match, repository)

    # then
    assert repository.get(peptide.key, MatchType.PEPTIDE) is peptide_match
    assert peptide_match.annotations.modification_sites == [
        ModificationSite("Phospho", 5, 25.0, True)
    ]


def test_fragment_mz_of_unmodified_dipeptide():
    mz = fragment_mz("GK", {})

    assert mz.shape == (2,)
    assert mz[0] == pytest.approx(57.021464 + 1.007276467)
    assert mz[1] == pytest.approx(128.094963 + 18.010565 + 1.007276467)


def test_count_matches_within_tolerance():
    observed = np.array([100.0, 200.0, 300.0])
    theoretical = np.array([100.01, 250.0, 299.995, 400.0])

    assert count_matches(theoretical, observed, 0.02) == 2
    assert count_matches(theoretical, np.array([], dtype=np.float64), 0.02) == 0


def test_binomial_score():
    assert binomial_score(0, 0, 0.1) == 0.0
    assert binomial_score(10, 0, 0.1) == 0.0
    assert binomial_score(10, 5, 0.1) > binomial_score(10, 2, 0.1) > 0


def test_site_determining_ions_favor_observed_site(registry):
    sequence = "PEPSTDEK"
    observed = fragment_mz(sequence, {5: registry.mass("Phospho")})
    spectrum_provider = SpectrumProvider({"s1": (observed, np.ones_like(observed))})
    site_scorer = SiteDeterminingIonScorer(spectrum_provider, registry)
    spectrum_match = best_spectrum_match(sequence, "Phospho@4")

    scores = site_scorer.score_sites(
        spectrum_match, spectrum_match.best_peptide_assumption.peptide, "Phospho", [4, 5]
    )

    assert scores[5] > scores[4]
    assert scores[4] == 0.0


def test_site_scorer_without_spectrum(registry):
    site_scorer = SiteDeterminingIonScorer(SpectrumProvider(), registry)
    spectrum_match = best_spectrum_match("PEPSTDEK", "Phospho@4")

    scores = site_scorer.score_sites(
        spectrum_match, spectrum_match.best_peptide_assumption.peptide, "Phospho", [4, 5]
    )

    assert scores == {4: 0.0, 5: 0.0}


def localized_repository(registry, psms):
    """Repository of localized PSMs given as (key, sequence, modifications, site scores)."""
    repository = InMemoryMatchRepository()
    for key, sequence, modifications, scores in psms:
        spectrum_match = make_spectrum_match(
            key, [make_assumption(sequence, 10.0, modifications=modifications)]
        )
        spectrum_match.best_peptide_assumption = spectrum_match.all_peptide_assumptions()[0]
        ModificationLocalizationScorer(registry, StaticSiteScorer(scores)).process(
            spectrum_match
        )
        repository.put(key, spectrum_match)
    return repository


def test_non_confident_psm_takes_best_supported_placement(registry):
    repository = localized_repository(
        registry,
        [
            ("s1", "PEPSTDEK", "Phospho@5", {"Phospho": {5: 30.0}}),
            ("s2", "PEPSTDEK", "Phospho@5", {"Phospho": {5: 30.0}}),
            ("s3", "PEPSTDEK", "Phospho@4", {"Phospho": {4: 30.0}}),
            ("s4", "PEPSTDEK", "Phospho@4", {"Phospho": {4: 5.0, 5: 3.0}}),
        ],
    )
    peptide_inference = PeptideModificationInference()
    peptide_inference.collect(repository)
    spectrum_match = repository.get("s4", MatchType.SPECTRUM)

    # when
    moved = peptide_inference.align(spectrum_match)

    # then
    assert moved
    assert spectrum_match.best_peptide_assumption.peptide.key == "PEPSTDEK_Phospho@5"
    assert spectrum_match.annotations.modification_sites == [
        ModificationSite("Phospho", 5, 3.0, False)
    ]
    assert peptide_inference.confident_placements[("PEPSTDEK", ("Phospho",))] == {
        (("Phospho", 5),): 2,
        (("Phospho", 4),): 1,
    }

    # aligning again and aligning confident PSMs changes nothing
    assert not peptide_inference.align(spectrum_match)
    assert not peptide_inference.align(repository.get("s3", MatchType.SPECTRUM))


def test_alignment_keeps_confident_sites(registry):
    repository = localized_repository(
        registry,
        [
            ("s1", "MPSTSK", "Oxidation@1;Phospho@4", {"Phospho": {4: 30.0}}),
            ("s2", "MPSTSK", "Oxidation@1;Phospho@3", {"Phospho": {3: 4.0, 4: 1.0}}),
            ("s3", "PEPSTDEK", "Phospho@4", {"Phospho": {4: 5.0, 5: 3.0}}),
        ],
    )
    peptide_inference = PeptideModificationInference()
    peptide_inference.collect(repository)

    # s2 keeps its confident Oxidation@1 and moves Phospho to the confident site of s1
    s2 = repository.get("s2", MatchType.SPECTRUM)
    assert peptide_inference.align(s2)
    assert s2.best_peptide_assumption.peptide.key == "MPSTSK_Oxidation@1,Phospho@4"

    # no confident PSM of the same peptide
    s3 = repository.get("s3", MatchType.SPECTRUM)
    assert not peptide_inference.align(s3)
    assert s3.best_peptide_assumption.peptide.key == "PEPSTDEK_Phospho@4"


def test_score_protein_modifications_projects_validated_peptides():
    repository = InMemoryMatchRepository()
    sequence_provider = SequenceProvider({"P1": "MPEPSTDEKRPEPSTDEK"})
    peptides = [
        (
            "PEPSTDEK",
            "Phospho@5",
            ValidationLevel.CONFIDENT,
            [
                ModificationSite("Phospho", 5, 30.0, True),
                ModificationSite("Acetyl", 0, 0.0, False),
            ],
        ),
        (
            "EPSTDEK",
            "Phospho@3",
            ValidationLevel.NOT_VALIDATED,
            [ModificationSite("Phospho", 3, 90.0, True)],
        ),
    ]
    peptide_keys = []
    for sequence, modifications, level, sites in peptides:
        peptide = Peptide(sequence, parse_modifications(modifications), ("P1",))
        peptide_match = PeptideMatch(key=peptide.key, peptide=peptide)
        peptide_match.annotations.validation_level = level
        peptide_match.annotations.modification_sites = sites
        repository.put(peptide.key, peptide_match)
        peptide_keys.append(peptide.key)

    group_match = ProteinGroupMatch("P1", ["P1"], peptide_keys=sorted(peptide_keys))
    group_match.annotations.main_accession = "P1"

    # when
    score_protein_modifications(group_match, repository, sequence_provider)

    # then
    # PEPSTDEK occurs at protein index 1 and 10, the N-terminal site sits on its first residue
    assert group_match.annotations.modification_sites == [
        ModificationSite("Acetyl", 2, 0.0, False),
        ModificationSite("Phospho", 6, 30.0, True),
        ModificationSite("Acetyl", 11, 0.0, False),
        ModificationSite("Phospho", 15, 30.0, True),
    ]


def test_score_protein_modifications_without_sequence():
    group_match = ProteinGroupMatch("P9", ["P9"])
    group_match.annotations.main_accession = "P9"
    group_match.annotations.modification_sites = [ModificationSite("Phospho", 3)]

    score_protein_modifications(group_match, InMemoryMatchRepository(), SequenceProvider({}))

    assert group_match.annotations.modification_sites == []
