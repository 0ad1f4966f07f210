import logging
import os
from collections.abc import Iterable

logger = logging.getLogger()

USE_NUMBA_CACHING = os.environ.get("USE_NUMBA_CACHING", "0") == "1"

# monoisotopic masses in Da
PROTON_MASS = 1.007276467
WATER_MASS = 18.010565

AA_MASSES = {
    "G": 57.021464,
    "A": 71.037114,
    "S": 87.032028,
    "P": 97.052764,
    "V": 99.068414,
    "T": 101.047679,
    "C": 103.009185,
    "L": 113.084064,
    "I": 113.084064,
    "N": 114.042927,
    "D": 115.026943,
    "Q": 128.058578,
    "K": 128.094963,
    "E": 129.042593,
    "M": 131.040485,
    "H": 137.058912,
    "F": 147.068414,
    "R": 156.101111,
    "Y": 163.063329,
    "W": 186.079313,
    "U": 150.953636,
    "O": 237.147727,
}


def split_accessions(accessions: str | Iterable[str], sep: str = ";") -> list[str]:
    """Return a sorted list of unique, non-empty accessions.

    Parameters
    ----------
    accessions : str | Iterable[str]
        Either a separated string like `"P1;P2"` or an iterable of accessions.

    sep : str, default ';'
        Separator used if `accessions` is a string.

    Returns
    -------
    list[str]
        Sorted unique accessions.

    """
    if isinstance(accessions, str):
        accessions = accessions.split(sep)
    return sorted({a.strip() for a in accessions if a and a.strip()})


def protein_group_key(accessions: Iterable[str]) -> str:
    """Key of a protein group: its sorted accessions joined by semicolons."""
    return ";".join(split_accessions(accessions))


def is_decoy_accessions(accessions: Iterable[str], decoy_tag: str) -> bool:
    """True if there is at least one accession and all of them carry the decoy tag."""
    accessions = list(accessions)
    if not accessions or not decoy_tag:
        return False
    return all(a.startswith(decoy_tag) or a.endswith(decoy_tag) for a in accessions)
