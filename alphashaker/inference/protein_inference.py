"""Protein groups, redundant group removal and protein inference status.

Every distinct accession set of a peptide forms an initial group. The support of a group are
all peptides mapping to every accession of the group. Groups whose support is a strict subset of
the support of another group are explained by that group and removed.
"""

import logging
from collections import defaultdict

from alphashaker.constants.keys import MatchType
from alphashaker.model.matches import PiStatus, ProteinGroupMatch
from alphashaker.providers import SequenceProvider
from alphashaker.utils import protein_group_key, split_accessions

logger = logging.getLogger()


def initial_groups(peptide_accessions: dict[str, frozenset]) -> dict[str, frozenset]:
    """Group key to accessions for every distinct accession set."""
    return {
        protein_group_key(accessions): frozenset(accessions)
        for accessions in set(peptide_accessions.values())
        if accessions
    }


def group_support(
    groups: dict[str, frozenset], peptide_accessions: dict[str, frozenset]
) -> dict[str, frozenset]:
    """Peptides mapping to all accessions of each group."""
    peptides_by_accession = defaultdict(set)
    for peptide_key, accessions in peptide_accessions.items():
        for accession in accessions:
            peptides_by_accession[accession].add(peptide_key)

    return {
        group_key: frozenset(set.intersection(*(peptides_by_accession[a] for a in accessions)))
        for group_key, accessions in groups.items()
    }


def remove_redundant_groups(
    groups: dict[str, frozenset], support: dict[str, frozenset]
) -> set[str]:
    """Keys of the groups which survive the reduction.

    A group is removed if its support is a strict subset of the support of another group.
    Of groups with identical support, the one with fewer accessions and then the
    lexicographically smallest key is kept.

    Parameters
    ----------
    groups : dict[str, frozenset]
        Accessions per group key.

    support : dict[str, frozenset]
        Supporting peptide keys per group key.

    Returns
    -------
    set[str]
        Surviving group keys.
    """
    # only groups sharing a peptide can contain each other's support
    groups_of_peptide = defaultdict(set)
    for group_key, peptides in support.items():
        for peptide_key in peptides:
            groups_of_peptide[peptide_key].add(group_key)

    surviving = set()
    for group_key in sorted(groups):
        own_support = support[group_key]
        candidates = set().union(*(groups_of_peptide[p] for p in own_support)) - {group_key}

        is_redundant = False
        for other_key in candidates:
            other_support = support[other_key]
            if own_support < other_support:
                is_redundant = True
                break
            if own_support == other_support and (len(groups[other_key]), other_key) < (
                len(groups[group_key]),
                group_key,
            ):
                is_redundant = True
                break

        if not is_redundant:
            surviving.add(group_key)

    return surviving


def pi_status(peptide_keys, peptide_groups: dict[str, set]) -> PiStatus:
    """Unique if no peptide is shared with another group, ambiguous if all are, related otherwise."""
    n_shared = sum(len(peptide_groups[p]) > 1 for p in peptide_keys)
    if n_shared == 0:
        return PiStatus.UNIQUE
    if n_shared == len(peptide_keys):
        return PiStatus.AMBIGUOUS
    return PiStatus.RELATED


class ProteinInference:
    def __init__(
        self,
        repository,
        sequence_provider: SequenceProvider,
        simplify_groups: bool = True,
    ):
        """Rebuilds the protein groups of the repository from its peptide matches.

        The groups are always rebuilt from scratch, so the result only depends on the
        current peptides.
        """
        self.repository = repository
        self.sequence_provider = sequence_provider
        self.simplify_groups = simplify_groups

        self.peptide_accessions: dict[str, frozenset] = {}
        self.groups: dict[str, frozenset] = {}
        self.members: dict[str, set] = {}
        self.n_peptides: dict[str, int] = {}

    def build_groups(self, waiting_handler=None) -> None:
        """Collect the accessions of every peptide and form the initial groups."""
        self.peptide_accessions = {
            peptide_match.key: frozenset(
                split_accessions(self.sequence_provider.get_accessions(peptide_match.peptide))
            )
            for peptide_match in self.repository.iterate(MatchType.PEPTIDE, waiting_handler)
        }
        self.groups = initial_groups(self.peptide_accessions)
        self.members = defaultdict(set)
        for peptide_key, accessions in self.peptide_accessions.items():
            if accessions:
                self.members[protein_group_key(accessions)].add(peptide_key)

        self.n_peptides = defaultdict(int)
        for accessions in self.peptide_accessions.values():
            for accession in accessions:
                self.n_peptides[accession] += 1

    def remove_redundant_groups(self) -> None:
        """Drop groups explained by others and attribute their peptides to the remaining supersets."""
        support = group_support(self.groups, self.peptide_accessions)
        surviving = remove_redundant_groups(self.groups, support)

        n_removed = len(self.groups) - len(surviving)
        self.groups = {k: v for k, v in self.groups.items() if k in surviving}
        self.members = {k: set(support[k]) for k in self.groups}
        logger.info(
            f"Removed {n_removed} redundant protein groups, {len(self.groups)} remaining"
        )

    def _peptide_groups(self) -> dict[str, set]:
        peptide_groups = defaultdict(set)
        for group_key, peptide_keys in self.members.items():
            for peptide_key in peptide_keys:
                peptide_groups[peptide_key].add(group_key)
        return peptide_groups

    def _main_accession(self, accessions: frozenset) -> str:
        """Accession with the most peptides overall, ties resolved lexicographically."""
        return min(accessions, key=lambda a: (-self.n_peptides.get(a, 0), a))

    def infer_pi_status(self) -> list[ProteinGroupMatch]:
        """Protein group matches with PI status and main accession of the current membership."""
        peptide_groups = self._peptide_groups()

        group_matches = []
        for group_key in sorted(self.groups):
            peptide_keys = sorted(self.members[group_key])
            group_match = ProteinGroupMatch(
                key=group_key,
                accessions=sorted(self.groups[group_key]),
                peptide_keys=peptide_keys,
            )
            group_match.annotations.pi_status = pi_status(peptide_keys, peptide_groups)
            group_match.annotations.main_accession = self._main_accession(
                self.groups[group_key]
            )
            group_matches.append(group_match)
        return group_matches

    def run(self, waiting_handler=None) -> list[ProteinGroupMatch]:
        """Rebuild all groups and write them and the peptide links to the repository."""
        self.build_groups(waiting_handler)
        if self.simplify_groups:
            self.remove_redundant_groups()

        group_matches = self.infer_pi_status()

        for group_key in self.repository.keys(MatchType.PROTEIN):
            self.repository.remove(group_key, MatchType.PROTEIN)
        for group_match in group_matches:
            self.repository.put(group_match.key, group_match)

        peptide_groups = self._peptide_groups()
        for peptide_match in self.repository.iterate(MatchType.PEPTIDE, waiting_handler):
            peptide_match.annotations.protein_group_keys = sorted(
                peptide_groups.get(peptide_match.key, set())
            )
            self.repository.put(peptide_match.key, peptide_match)

        for spectrum_match in self.repository.iterate(MatchType.SPECTRUM, waiting_handler):
            peptide_key = spectrum_match.annotations.peptide_key
            spectrum_match.annotations.protein_group_keys = (
                sorted(peptide_groups.get(peptide_key, set())) if peptide_key else []
            )
            self.repository.put(spectrum_match.key, spectrum_match)

        counts = defaultdict(int)
        for group_match in group_matches:
            counts[group_match.annotations.pi_status.name] += 1
        logger.info(
            f"{len(group_matches)} protein groups: "
            + ", ".join(f"{v} {k.lower()}" for k, v in sorted(counts.items()))
        )
        return group_matches
