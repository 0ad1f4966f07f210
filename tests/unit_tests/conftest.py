import os
import tempfile

import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")
from matplotlib import pyplot as plt

from alphashaker.model.matches import PeptideAssumption, SpectrumMatch, TagAssumption
from alphashaker.model.peptide import Peptide, Tag, parse_modifications
from alphashaker.providers import SequenceProvider
from alphashaker.repository import InMemoryMatchRepository
from alphashaker.workflow.config import Config, load_default_config

plt.ioff()

AMINO_ACIDS = list("ACDEFGHIKLMNPQRSTVWY")


def random_tempfolder():
    """Create a randomly named temp folder in the system temp folder

    Returns
    -------
    path : str
        Path to the created temp folder

    """
    tempdir = tempfile.gettempdir()
    # 6 alphanumeric characters
    random_foldername = "alphashaker_" + "".join(
        np.random.choice(list("abcdefghijklmnopqrstuvwxyz0123456789"), 6)
    )
    path = os.path.join(tempdir, random_foldername)
    os.makedirs(path, exist_ok=True)
    print(f"Created temp folder: {path}")
    return path


def make_assumption(
    sequence: str,
    score: float,
    algorithm: str = "comet",
    proteins=("P1",),
    modifications: str = "",
    rank: int = 1,
    charge: int = 2,
) -> PeptideAssumption:
    return PeptideAssumption(
        algorithm=algorithm,
        score=score,
        peptide=Peptide(sequence, parse_modifications(modifications), tuple(proteins)),
        charge=charge,
        rank=rank,
    )


def make_tag_assumption(
    sequence: str, score: float, algorithm: str = "novor", rank: int = 1
) -> TagAssumption:
    return TagAssumption(algorithm=algorithm, score=score, tag=Tag(sequence), rank=rank)


def make_spectrum_match(key: str, assumptions: list) -> SpectrumMatch:
    spectrum_match = SpectrumMatch(key=key)
    for assumption in assumptions:
        if isinstance(assumption, TagAssumption):
            spectrum_match.add_tag_assumption(assumption)
        else:
            spectrum_match.add_peptide_assumption(assumption)
    return spectrum_match


def random_sequence(rng: np.random.Generator, length: int = 10) -> str:
    return "".join(rng.choice(AMINO_ACIDS, size=length))


def mock_repository(
    n_spectra: int = 200,
    algorithms=("comet", "xtandem"),
    decoy_fraction: float = 0.3,
    n_proteins: int = 20,
    seed: int = 42,
) -> InMemoryMatchRepository:
    """Create a repository of spectrum matches with two assumptions per algorithm.

    Target assumptions score higher than decoy assumptions on average, all scores are higher is better.
    Every spectrum has a peptide which maps to one or two target proteins `P<i>`, or to one decoy protein `REV_P<i>`.

    Parameters
    ----------

    n_spectra : int
        Number of spectrum matches

    algorithms : tuple[str]
        Algorithms proposing assumptions for every spectrum

    decoy_fraction : float
        Fraction of spectra whose best assumption is a decoy

    n_proteins : int
        Number of target proteins

    seed : int
        Seed of the random number generator

    Returns
    -------

    repository : InMemoryMatchRepository
        A repository holding only spectrum matches
    """
    rng = np.random.default_rng(seed)
    peptides = [random_sequence(rng, int(rng.integers(7, 15))) for _ in range(n_spectra // 2)]
    peptide_proteins = {}
    for sequence in peptides:
        first = int(rng.integers(0, n_proteins))
        accessions = {f"P{first}"}
        if rng.random() < 0.3:
            accessions.add(f"P{(first + 1) % n_proteins}")
        peptide_proteins[sequence] = tuple(sorted(accessions))

    repository = InMemoryMatchRepository()
    for i in range(n_spectra):
        is_decoy = rng.random() < decoy_fraction
        if is_decoy:
            sequence = random_sequence(rng, 10)
            proteins = (f"REV_P{int(rng.integers(0, n_proteins))}",)
            base_score = rng.normal(1.0, 1.0)
        else:
            sequence = peptides[int(rng.integers(0, len(peptides)))]
            proteins = peptide_proteins[sequence]
            base_score = rng.normal(4.0, 1.0)

        runner_up = random_sequence(rng, 9)
        assumptions = []
        for algorithm in algorithms:
            score = float(base_score + rng.normal(0, 0.3))
            assumptions.append(
                make_assumption(sequence, score, algorithm=algorithm, proteins=proteins, rank=1)
            )
            assumptions.append(
                make_assumption(
                    runner_up,
                    score - abs(float(rng.normal(1.0, 0.5))),
                    algorithm=algorithm,
                    proteins=(f"REV_P{i % n_proteins}",),
                    rank=2,
                )
            )
        repository.put(f"spectrum_{i:04d}", make_spectrum_match(f"spectrum_{i:04d}", assumptions))
    return repository


def mock_config(updates: dict | None = None) -> Config:
    """Default config, optionally updated with a dict."""
    config = load_default_config()
    if updates:
        config.update([Config(updates, name="test")])
    return config


@pytest.fixture
def repository():
    return mock_repository()


@pytest.fixture
def sequence_provider():
    return SequenceProvider({}, decoy_tag="REV_")
