"""Lookups of protein sequences, protein details, modifications and spectra.

All providers are constructed explicitly and passed to the pipeline, there are no process wide registries.
"""

import logging
import threading
from dataclasses import dataclass

import numpy as np
import pandas as pd
from alphabase.protein import fasta

from alphashaker.constants.keys import ModificationPosition
from alphashaker.model.peptide import Peptide
from alphashaker.utils import is_decoy_accessions, split_accessions

logger = logging.getLogger()


class SequenceProvider:
    def __init__(self, sequences: dict[str, str], decoy_tag: str = "REV_"):
        """Protein sequences by accession.

        Parameters
        ----------
        sequences : dict[str, str]
            Mapping of accession to protein sequence.

        decoy_tag : str, default 'REV_'
            Accessions starting or ending with this tag are decoys.
        """
        self.sequences = dict(sequences)
        self.decoy_tag = decoy_tag
        self._peptide_cache = {}
        self._lock = threading.Lock()

    @classmethod
    def from_fasta(cls, fasta_paths: list[str], decoy_tag: str = "REV_"):
        """Read all proteins of the given FASTA files."""
        protein_df = fasta.load_fasta_list_as_protein_df(fasta_paths)
        logger.info(f"Loaded {len(protein_df)} proteins from {len(fasta_paths)} FASTA files")
        return cls(
            dict(zip(protein_df["protein_id"], protein_df["sequence"], strict=True)),
            decoy_tag=decoy_tag,
        )

    def __contains__(self, accession: str) -> bool:
        return accession in self.sequences

    def __len__(self) -> int:
        return len(self.sequences)

    def get_sequence(self, accession: str) -> str | None:
        return self.sequences.get(accession)

    def is_decoy(self, accession: str) -> bool:
        return is_decoy_accessions([accession], self.decoy_tag)

    def get_accessions(self, peptide: Peptide) -> list[str]:
        """Accessions of a peptide, mapped against the proteins if the peptide carries none."""
        if peptide.proteins:
            return list(peptide.proteins)
        return self.map_peptide(peptide.sequence)

    def is_decoy_peptide(self, peptide: Peptide) -> bool:
        """A peptide is a decoy if all its proteins are decoys."""
        return is_decoy_accessions(self.get_accessions(peptide), self.decoy_tag)

    def map_peptide(self, sequence: str) -> list[str]:
        """Sorted accessions of all proteins containing the peptide sequence."""
        with self._lock:
            if sequence in self._peptide_cache:
                return self._peptide_cache[sequence]

        accessions = sorted(
            accession
            for accession, protein_sequence in self.sequences.items()
            if sequence in protein_sequence
        )

        with self._lock:
            self._peptide_cache[sequence] = accessions
        return accessions

    def get_positions(self, accession: str, sequence: str) -> list[int]:
        """0-based start positions of the peptide sequence in a protein."""
        protein_sequence = self.sequences.get(accession, "")
        positions = []
        start = protein_sequence.find(sequence)
        while start != -1:
            positions.append(start)
            start = protein_sequence.find(sequence, start + 1)
        return positions


class ProteinDetailsProvider:
    def __init__(self, details: dict[str, dict] | None = None):
        """Description and gene name by accession."""
        self.details = {} if details is None else dict(details)

    @classmethod
    def from_fasta(cls, fasta_paths: list[str]):
        protein_df = fasta.load_fasta_list_as_protein_df(fasta_paths)
        return cls.from_protein_df(protein_df)

    @classmethod
    def from_protein_df(cls, protein_df: pd.DataFrame):
        columns = [c for c in ["description", "gene_name"] if c in protein_df.columns]
        details = (
            protein_df.set_index("protein_id")[columns].to_dict(orient="index")
            if columns
            else {}
        )
        return cls(details)

    def get_description(self, accession: str) -> str:
        return self.details.get(accession, {}).get("description", "")

    def get_gene_name(self, accession: str) -> str:
        return self.details.get(accession, {}).get("gene_name", "")

    def describe_group(self, accessions) -> tuple[str, str]:
        """Semicolon separated descriptions and gene names of a protein group."""
        accessions = split_accessions(accessions)
        return (
            ";".join(self.get_description(a) for a in accessions),
            ";".join(self.get_gene_name(a) for a in accessions),
        )


@dataclass(frozen=True)
class ModificationDefinition:
    name: str
    mass: float
    residues: str = ""
    position: str = ModificationPosition.ANYWHERE

    def __post_init__(self):
        if self.position not in ModificationPosition.get_values():
            raise ValueError(
                f"Unknown position '{self.position}' of modification {self.name}"
            )

    @property
    def is_terminal(self) -> bool:
        return self.position != ModificationPosition.ANYWHERE


class ModificationRegistry:
    def __init__(self, definitions: list[ModificationDefinition] | None = None):
        """Variable modifications known to the run, constructed from the config."""
        self._definitions = {}
        for definition in definitions or []:
            self.add(definition)

    @classmethod
    def from_config(cls, modifications: list[dict]):
        return cls([ModificationDefinition(**m) for m in modifications])

    def add(self, definition: ModificationDefinition) -> None:
        if definition.name in self._definitions:
            raise ValueError(f"Modification {definition.name} is defined twice")
        self._definitions[definition.name] = definition

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    def get(self, name: str) -> ModificationDefinition | None:
        return self._definitions.get(name)

    @property
    def names(self) -> list[str]:
        return sorted(self._definitions)

    def mass(self, name: str) -> float:
        return self._definitions[name].mass

    def candidate_sites(self, name: str, sequence: str) -> list[int]:
        """Sites of a peptide which may carry the modification.

        N-terminal modifications sit at site 0 and C-terminal ones at `len(sequence) + 1` unless they
        target specific residues, in which case the first or last residue must match.
        Unknown modifications have no candidate sites.
        """
        definition = self._definitions.get(name)
        if definition is None:
            return []

        if definition.position in (
            ModificationPosition.PEPTIDE_N_TERM,
            ModificationPosition.PROTEIN_N_TERM,
        ):
            if definition.residues and sequence[:1] not in definition.residues:
                return []
            return [0]

        if definition.position in (
            ModificationPosition.PEPTIDE_C_TERM,
            ModificationPosition.PROTEIN_C_TERM,
        ):
            if definition.residues and sequence[-1:] not in definition.residues:
                return []
            return [len(sequence) + 1]

        return [
            i + 1
            for i, residue in enumerate(sequence)
            if not definition.residues or residue in definition.residues
        ]

    def is_compatible(
        self, name: str, sequence: str, protein_sequence: str, start: int
    ) -> bool:
        """Whether a modification of the peptide is possible at the given protein position.

        Parameters
        ----------
        name : str
            Modification name.

        sequence : str
            Peptide sequence.

        protein_sequence : str
            Sequence of the protein the peptide maps to.

        start : int
            0-based start of the peptide in the protein.
        """
        definition = self._definitions.get(name)
        if definition is None:
            return True

        if definition.position == ModificationPosition.PROTEIN_N_TERM:
            # initiator methionine may be cleaved
            return start == 0 or (start == 1 and protein_sequence[:1] == "M")

        if definition.position == ModificationPosition.PROTEIN_C_TERM:
            return start + len(sequence) == len(protein_sequence)

        return True


class SpectrumProvider:
    def __init__(self, spectra: dict[str, tuple] | None = None):
        """Centroided spectra by spectrum key as (mz, intensity) arrays sorted by m/z."""
        self.spectra = {}
        for key, (mz, intensity) in (spectra or {}).items():
            self.add_spectrum(key, mz, intensity)

    def add_spectrum(self, key: str, mz, intensity) -> None:
        mz = np.asarray(mz, dtype=np.float64)
        intensity = np.asarray(intensity, dtype=np.float64)
        if mz.shape != intensity.shape:
            raise ValueError(f"m/z and intensity of spectrum {key} differ in length")
        order = np.argsort(mz, kind="stable")
        self.spectra[key] = (mz[order], intensity[order])

    def get_spectrum(self, key: str) -> tuple[np.ndarray, np.ndarray] | None:
        return self.spectra.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self.spectra
