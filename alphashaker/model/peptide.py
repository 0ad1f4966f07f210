"""Peptide and sequence tag value objects.

Modification sites are 1-based residue indices, 0 is the peptide N-terminus and
`len(sequence) + 1` is the peptide C-terminus.
"""

from collections import Counter
from dataclasses import dataclass, field


@dataclass(frozen=True, order=True)
class Modification:
    name: str
    site: int

    def __str__(self) -> str:
        return f"{self.name}@{self.site}"

    @classmethod
    def from_string(cls, value: str) -> "Modification":
        """Parse `name@site`, e.g. `Phospho@3`."""
        name, _, site = value.strip().rpartition("@")
        if not name:
            raise ValueError(f"Modification '{value}' is not of the form name@site")
        return cls(name, int(site))


def parse_modifications(value: str | None, sep: str = ";") -> tuple[Modification, ...]:
    """Parse a separated list of `name@site` modifications, empty input gives no modifications."""
    if value is None or not str(value).strip() or str(value) == "nan":
        return ()
    return tuple(
        sorted(Modification.from_string(v) for v in str(value).split(sep) if v.strip())
    )


def modification_profile(modifications: tuple[Modification, ...]) -> str:
    return ",".join(str(m) for m in sorted(modifications))


@dataclass(frozen=True)
class Peptide:
    """Amino acid sequence with localized variable modifications and the accessions it maps to."""

    sequence: str
    modifications: tuple[Modification, ...] = ()
    proteins: tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self):
        object.__setattr__(self, "modifications", tuple(sorted(self.modifications)))
        object.__setattr__(self, "proteins", tuple(sorted(set(self.proteins))))

    @property
    def key(self) -> str:
        """Key of the peptide match: sequence and modification profile."""
        return f"{self.sequence}_{modification_profile(self.modifications)}"

    @property
    def length(self) -> int:
        return len(self.sequence)

    def modification_names(self) -> Counter:
        return Counter(m.name for m in self.modifications)

    def is_same_sequence_and_modification_status(self, other: "Peptide") -> bool:
        """Same sequence carrying the same modifications, regardless of where they are localized."""
        return (
            self.sequence == other.sequence
            and self.modification_names() == other.modification_names()
        )

    def with_modifications(self, modifications) -> "Peptide":
        return Peptide(self.sequence, tuple(modifications), self.proteins)

    def with_proteins(self, proteins) -> "Peptide":
        return Peptide(self.sequence, self.modifications, tuple(proteins))


@dataclass(frozen=True)
class Tag:
    """De novo sequence tag, possibly with modifications on its residues."""

    sequence: str
    modifications: tuple[Modification, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "modifications", tuple(sorted(self.modifications)))

    @property
    def key(self) -> str:
        return f"{self.sequence}_{modification_profile(self.modifications)}"

    def is_same_sequence_and_modification_status(self, other: "Tag") -> bool:
        return self.sequence == other.sequence and Counter(
            m.name for m in self.modifications
        ) == Counter(m.name for m in other.modifications)
