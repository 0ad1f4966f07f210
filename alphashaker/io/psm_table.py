"""Import of tabular peptide and tag assumptions into a match repository.

Every row is one assumption of one algorithm for one spectrum. Rows without a sequence but
with a tag are imported as tag assumptions.
"""

import logging
import os

import pandas as pd

from alphashaker.constants.keys import MatchType, PsmTableCols
from alphashaker.exceptions import InvalidPsmTableError
from alphashaker.model.matches import PeptideAssumption, SpectrumMatch, TagAssumption
from alphashaker.model.peptide import Peptide, Tag, parse_modifications
from alphashaker.repository import InMemoryMatchRepository
from alphashaker.utils import split_accessions

logger = logging.getLogger()

REQUIRED_COLUMNS = [PsmTableCols.SPECTRUM_KEY, PsmTableCols.ALGORITHM, PsmTableCols.SCORE]

supported_formats = ["parquet", "tsv", "csv"]


def read_table(path: str) -> pd.DataFrame:
    """Read a parquet, csv or tsv table, the format is taken from the file extension."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Can't load file as file was not found: {path}")

    logger.info(f"Reading {path} from disk")

    file_format = os.path.splitext(path)[1].lower().lstrip(".")
    if file_format == "parquet":
        return pd.read_parquet(path)
    elif file_format == "csv":
        return pd.read_csv(path)
    elif file_format in ("tsv", "txt"):
        return pd.read_csv(path, sep="\t")
    else:
        raise ValueError(
            f"Provided unknown file format: {file_format}, supported_formats: {supported_formats}"
        )


def _validate_columns(df: pd.DataFrame, path: str) -> None:
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if PsmTableCols.SEQUENCE not in df.columns and PsmTableCols.TAG not in df.columns:
        missing.append(f"{PsmTableCols.SEQUENCE} or {PsmTableCols.TAG}")
    if missing:
        raise InvalidPsmTableError(f"{path}: missing columns {', '.join(missing)}")


def _prepare(df: pd.DataFrame) -> pd.DataFrame:
    """Fill optional columns with defaults."""
    df = df.copy()
    for column in [
        PsmTableCols.SEQUENCE,
        PsmTableCols.TAG,
        PsmTableCols.MODIFICATIONS,
        PsmTableCols.PROTEINS,
    ]:
        if column not in df.columns:
            df[column] = ""
        df[column] = df[column].fillna("").astype(str)

    if PsmTableCols.CHARGE not in df.columns:
        df[PsmTableCols.CHARGE] = 2
    if PsmTableCols.RANK not in df.columns:
        df[PsmTableCols.RANK] = (
            df.groupby([PsmTableCols.SPECTRUM_KEY, PsmTableCols.ALGORITHM]).cumcount() + 1
        )

    df[PsmTableCols.SPECTRUM_KEY] = df[PsmTableCols.SPECTRUM_KEY].astype(str)
    df[PsmTableCols.ALGORITHM] = df[PsmTableCols.ALGORITHM].astype(str)
    df[PsmTableCols.SCORE] = df[PsmTableCols.SCORE].astype(float)
    return df


def psm_table_to_repository(df: pd.DataFrame, repository=None, path: str = ""):
    """Add the assumptions of a table to the spectrum matches of a repository.

    Parameters
    ----------
    df : pd.DataFrame
        One row per assumption, see `PsmTableCols`.

    repository : MatchRepository, optional
        Target repository, a new in-memory repository by default.

    path : str, optional
        Name of the table used in error messages.

    Returns
    -------
    MatchRepository
        The repository holding the spectrum matches.

    Raises
    ------
    InvalidPsmTableError
        A required column is missing.
    """
    _validate_columns(df, path)
    df = _prepare(df)
    repository = InMemoryMatchRepository() if repository is None else repository

    n_peptides = 0
    n_tags = 0
    n_skipped = 0
    for spectrum_key, spectrum_df in df.groupby(PsmTableCols.SPECTRUM_KEY, sort=True):
        spectrum_match = repository.get(spectrum_key, MatchType.SPECTRUM)
        if spectrum_match is None:
            spectrum_match = SpectrumMatch(key=spectrum_key)

        for row in spectrum_df.to_dict(orient="records"):
            modifications = parse_modifications(row[PsmTableCols.MODIFICATIONS])
            if row[PsmTableCols.SEQUENCE]:
                peptide = Peptide(
                    row[PsmTableCols.SEQUENCE],
                    modifications,
                    tuple(split_accessions(row[PsmTableCols.PROTEINS])),
                )
                spectrum_match.add_peptide_assumption(
                    PeptideAssumption(
                        algorithm=row[PsmTableCols.ALGORITHM],
                        score=row[PsmTableCols.SCORE],
                        peptide=peptide,
                        charge=int(row[PsmTableCols.CHARGE]),
                        rank=int(row[PsmTableCols.RANK]),
                    )
                )
                n_peptides += 1
            elif row[PsmTableCols.TAG]:
                spectrum_match.add_tag_assumption(
                    TagAssumption(
                        algorithm=row[PsmTableCols.ALGORITHM],
                        score=row[PsmTableCols.SCORE],
                        tag=Tag(row[PsmTableCols.TAG], modifications),
                        charge=int(row[PsmTableCols.CHARGE]),
                        rank=int(row[PsmTableCols.RANK]),
                    )
                )
                n_tags += 1
            else:
                n_skipped += 1

        repository.put(spectrum_key, spectrum_match)

    if n_skipped:
        logger.warning(f"Skipped {n_skipped} rows without sequence and tag")
    logger.info(
        f"Imported {n_peptides} peptide and {n_tags} tag assumptions for "
        f"{repository.size(MatchType.SPECTRUM)} spectra"
    )
    return repository


def load_psm_table(path: str, repository=None):
    """Read a PSM table from disk and import it, see `psm_table_to_repository`."""
    repository = psm_table_to_repository(read_table(path), repository, path=path)
    repository.commit()
    return repository
