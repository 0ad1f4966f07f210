"""Scoring of candidate modification sites against the spectrum.

The default scorer counts site determining b and y ions, fragments which only exist if the
modification sits on a given site, and converts the number of matched ones into
`-10 log10 P(X >= matched)` under a binomial model of random matches.
"""

import logging
from typing import Protocol

import numba as nb
import numpy as np
from scipy.stats import binom

from alphashaker.model.matches import SpectrumMatch
from alphashaker.model.peptide import Peptide
from alphashaker.providers import ModificationRegistry, SpectrumProvider
from alphashaker.utils import AA_MASSES, PROTON_MASS, USE_NUMBA_CACHING, WATER_MASS

logger = logging.getLogger()


class SiteScorer(Protocol):
    def score_sites(
        self,
        spectrum_match: SpectrumMatch,
        peptide: Peptide,
        modification_name: str,
        candidate_sites: list[int],
    ) -> dict[int, float]:
        """Score of every candidate site, higher means better supported."""
        ...


def fragment_mz(sequence: str, site_masses: dict[int, float]) -> np.ndarray:
    """Singly charged b and y ion m/z of a peptide.

    Parameters
    ----------
    sequence : str
        Peptide sequence.

    site_masses : dict[int, float]
        Additional mass per site, 0 is the N-terminus and `len(sequence) + 1` the C-terminus.

    Returns
    -------
    np.ndarray
        b ions followed by y ions, without the precursor.
    """
    residue_masses = np.array([AA_MASSES[aa] for aa in sequence], dtype=np.float64)
    for site, mass in site_masses.items():
        # terminal modifications are carried by the terminal residue
        residue_masses[min(max(site, 1), len(sequence)) - 1] += mass

    prefix = np.cumsum(residue_masses)[:-1]
    suffix = np.cumsum(residue_masses[::-1])[:-1]
    return np.concatenate([prefix + PROTON_MASS, suffix + WATER_MASS + PROTON_MASS])


@nb.njit(cache=USE_NUMBA_CACHING)
def count_matches(
    theoretical_mz: np.ndarray, observed_mz: np.ndarray, tolerance: float
) -> int:
    """Number of theoretical m/z with an observed peak within the tolerance, observed_mz is sorted."""
    n_matched = 0
    if len(observed_mz) == 0:
        return n_matched
    for mz in theoretical_mz:
        idx = np.searchsorted(observed_mz, mz)
        lower = max(idx - 1, 0)
        upper = min(idx, len(observed_mz) - 1)
        if (
            abs(observed_mz[lower] - mz) <= tolerance
            or abs(observed_mz[upper] - mz) <= tolerance
        ):
            n_matched += 1
    return n_matched


def binomial_score(n_trials: int, n_matched: int, p: float) -> float:
    """-10 log10 of the probability to match at least `n_matched` of `n_trials` ions by chance."""
    if n_trials == 0 or n_matched == 0:
        return 0.0
    probability = binom.sf(n_matched - 1, n_trials, p)
    return float(-10 * np.log10(max(probability, 1e-300)))


class SiteDeterminingIonScorer:
    def __init__(
        self,
        spectrum_provider: SpectrumProvider,
        registry: ModificationRegistry,
        fragment_tolerance: float = 0.02,
    ):
        """Default site scorer based on site determining ions.

        Parameters
        ----------
        spectrum_provider : SpectrumProvider
            Source of the spectra. Spectra which are not available score 0 for every site.

        registry : ModificationRegistry
            Masses of the modifications.

        fragment_tolerance : float, default 0.02
            Absolute fragment m/z tolerance in Da.
        """
        self.spectrum_provider = spectrum_provider
        self.registry = registry
        self.fragment_tolerance = fragment_tolerance

    def _random_match_probability(self, observed_mz: np.ndarray) -> float:
        if len(observed_mz) == 0:
            return 1.0
        mz_range = max(observed_mz[-1] - observed_mz[0], self.fragment_tolerance)
        return float(min(1.0, len(observed_mz) * 2 * self.fragment_tolerance / mz_range))

    def score_sites(self, spectrum_match, peptide, modification_name, candidate_sites):
        spectrum = self.spectrum_provider.get_spectrum(spectrum_match.key)
        if spectrum is None or modification_name not in self.registry:
            return {site: 0.0 for site in candidate_sites}

        observed_mz, _ = spectrum
        p = self._random_match_probability(observed_mz)

        # other modifications stay where they are, unknown ones add no mass
        base_masses = {}
        for modification in peptide.modifications:
            if modification.name == modification_name:
                continue
            definition = self.registry.get(modification.name)
            base_masses[modification.site] = base_masses.get(modification.site, 0.0) + (
                definition.mass if definition is not None else 0.0
            )

        mass = self.registry.mass(modification_name)
        ions = {}
        for site in candidate_sites:
            site_masses = dict(base_masses)
            site_masses[site] = site_masses.get(site, 0.0) + mass
            ions[site] = np.round(fragment_mz(peptide.sequence, site_masses), 4)

        scores = {}
        for site in candidate_sites:
            others = [ions[s] for s in candidate_sites if s != site]
            if others:
                determining = np.setdiff1d(ions[site], np.concatenate(others))
            else:
                determining = ions[site]
            n_matched = count_matches(determining, observed_mz, self.fragment_tolerance)
            scores[site] = binomial_score(len(determining), n_matched, p)
        return scores
