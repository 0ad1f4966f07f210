"""Tables of the validated spectrum, peptide and protein group matches."""

import logging
import os

import pandas as pd

from alphashaker.constants.keys import MatchType
from alphashaker.model.peptide import modification_profile
from alphashaker.providers import ProteinDetailsProvider

logger = logging.getLogger()

supported_formats = ["parquet", "tsv"]


def _sites(modification_sites) -> str:
    return ";".join(
        f"{s.name}@{s.site}:{s.score:.2f}{'' if s.confident else '?'}"
        for s in modification_sites
    )


def psm_df(repository) -> pd.DataFrame:
    rows = []
    for spectrum_match in repository.iterate(MatchType.SPECTRUM):
        annotations = spectrum_match.annotations
        best = spectrum_match.best_assumption
        peptide = getattr(best, "peptide", None)
        rows.append(
            {
                "spectrum_key": spectrum_match.key,
                "algorithm": best.algorithm if best is not None else "",
                "sequence": peptide.sequence if peptide is not None else "",
                "modifications": (
                    modification_profile(peptide.modifications) if peptide is not None else ""
                ),
                "tag": best.tag.sequence if best is not None and peptide is None else "",
                "charge": best.charge if best is not None else 0,
                "raw_score": best.score if best is not None else float("nan"),
                "proteins": ";".join(peptide.proteins) if peptide is not None else "",
                "protein_groups": "|".join(annotations.protein_group_keys),
                "pep": annotations.probability,
                "delta_pep": annotations.delta_pep,
                "algorithm_delta_pep": annotations.algorithm_delta_pep,
                "modification_sites": _sites(annotations.modification_sites),
                "protein_mapping_mismatch": annotations.protein_mapping_mismatch,
                "validation_level": annotations.validation_level.name,
            }
        )
    return pd.DataFrame(rows)


def peptide_df(repository) -> pd.DataFrame:
    rows = []
    for peptide_match in repository.iterate(MatchType.PEPTIDE):
        annotations = peptide_match.annotations
        rows.append(
            {
                "peptide_key": peptide_match.key,
                "sequence": peptide_match.peptide.sequence,
                "modifications": modification_profile(peptide_match.peptide.modifications),
                "proteins": ";".join(peptide_match.peptide.proteins),
                "protein_groups": "|".join(annotations.protein_group_keys),
                "n_spectra": len(peptide_match.spectrum_keys),
                "n_confident_spectra": annotations.n_confident_spectra,
                "n_doubtful_spectra": annotations.n_doubtful_spectra,
                "score": annotations.score,
                "pep": annotations.probability,
                "modification_sites": _sites(annotations.modification_sites),
                "validation_level": annotations.validation_level.name,
            }
        )
    return pd.DataFrame(rows)


def protein_df(
    repository, protein_details_provider: ProteinDetailsProvider | None = None
) -> pd.DataFrame:
    rows = []
    for group_match in repository.iterate(MatchType.PROTEIN):
        annotations = group_match.annotations
        row = {
            "protein_group": group_match.key,
            "main_accession": annotations.main_accession,
            "n_accessions": len(group_match.accessions),
            "n_peptides": len(group_match.peptide_keys),
            "n_confident_peptides": annotations.n_confident_peptides,
            "n_doubtful_peptides": annotations.n_doubtful_peptides,
            "n_validated_spectra": annotations.n_validated_spectra,
            "pi_status": annotations.pi_status.name,
            "score": annotations.score,
            "pep": annotations.probability,
            "modification_sites": _sites(annotations.modification_sites),
            "validation_level": annotations.validation_level.name,
        }
        if protein_details_provider is not None:
            row["description"], row["gene_names"] = protein_details_provider.describe_group(
                group_match.accessions
            )
        rows.append(row)
    return pd.DataFrame(rows)


def write_df(df: pd.DataFrame, path_no_format: str, file_format: str = "tsv") -> None:
    """Write a dataframe to `<path_no_format>.<file_format>`.

    Parameters
    ----------
    df : pd.DataFrame
        Dataframe to save to disk.

    path_no_format : str
        Path of the file without format.

    file_format : str, default 'tsv'
        One of 'parquet' and 'tsv'.
    """
    if file_format not in supported_formats:
        raise ValueError(
            f"Provided unknown file format: {file_format}, supported_formats: {supported_formats}"
        )

    file_path = f"{path_no_format}.{file_format}"
    logger.info(f"Saving {file_path} to disk")

    if file_format == "parquet":
        df.to_parquet(file_path, index=False)
    else:
        df.to_csv(file_path, sep="\t", index=False, float_format="%.6g")


def write_results(
    repository,
    output_folder: str,
    project_type_levels: list[str],
    protein_details_provider: ProteinDetailsProvider | None = None,
    file_format: str = "tsv",
) -> None:
    """Write one table per validated level of the project to the output folder."""
    builders = {
        MatchType.SPECTRUM: ("psms", lambda: psm_df(repository)),
        MatchType.PEPTIDE: ("peptides", lambda: peptide_df(repository)),
        MatchType.PROTEIN: (
            "protein_groups",
            lambda: protein_df(repository, protein_details_provider),
        ),
    }
    for match_type in project_type_levels:
        name, build = builders[match_type]
        write_df(build(), os.path.join(output_folder, name), file_format=file_format)
