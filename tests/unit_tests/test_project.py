import logging
import os
import shutil

import pandas as pd
import pytest
import yaml
from conftest import mock_repository, random_tempfolder

from alphashaker.constants.keys import MatchType, RunStatus
from alphashaker.exceptions import InvalidPsmTableError, KeyAddedConfigError
from alphashaker.model.peptide import modification_profile
from alphashaker.project import FROZEN_CONFIG_FILE_NAME, ValidationProject
from alphashaker.workflow.waiting import TqdmWaitingHandler


def write_psm_table(path: str, n_spectra: int = 100) -> None:
    rows = []
    for spectrum_match in mock_repository(n_spectra=n_spectra).iterate(MatchType.SPECTRUM):
        for assumption in spectrum_match.all_peptide_assumptions():
            rows.append(
                {
                    "spectrum_key": spectrum_match.key,
                    "algorithm": assumption.algorithm,
                    "rank": assumption.rank,
                    "sequence": assumption.peptide.sequence,
                    "modifications": modification_profile(assumption.peptide.modifications),
                    "charge": assumption.charge,
                    "score": assumption.score,
                    "proteins": ";".join(assumption.peptide.proteins),
                }
            )
    pd.DataFrame(rows).to_csv(path, sep="\t", index=False)


def project_config(**general):
    return {
        "general": {"thread_count": 1, **general},
        "input_map": {"higher_score_better": ["comet", "xtandem"]},
    }


@pytest.fixture
def output_folder():
    tempfolder = random_tempfolder()
    yield tempfolder
    logging.getLogger().handlers = []
    shutil.rmtree(tempfolder)


def test_project_writes_results(output_folder):
    psm_table_path = os.path.join(output_folder, "input_psms.tsv")
    write_psm_table(psm_table_path)

    project = ValidationProject(
        os.path.join(output_folder, "out"),
        project_config(),
        {"psm_table_path": psm_table_path},
    )

    # when
    result = project.run()

    # then
    assert result.status == RunStatus.COMPLETED
    out = os.path.join(output_folder, "out")
    for file_name in [
        "psms.tsv",
        "peptides.tsv",
        "protein_groups.tsv",
        "timings.tsv",
        "events.jsonl",
        "log.txt",
        FROZEN_CONFIG_FILE_NAME,
    ]:
        assert os.path.exists(os.path.join(out, file_name)), file_name

    psms = pd.read_csv(os.path.join(out, "psms.tsv"), sep="\t")
    assert len(psms) == 100
    assert set(psms["validation_level"]) <= {"NOT_VALIDATED", "DOUBTFUL", "CONFIDENT"}
    assert (psms["validation_level"] == "CONFIDENT").any()

    with open(os.path.join(out, FROZEN_CONFIG_FILE_NAME)) as f:
        frozen_config = yaml.safe_load(f)
    assert frozen_config["output_directory"] == out
    assert frozen_config["psm_table_path"] == psm_table_path


def test_psm_project_writes_psms_only(output_folder):
    psm_table_path = os.path.join(output_folder, "input_psms.tsv")
    write_psm_table(psm_table_path, n_spectra=40)

    project = ValidationProject(
        output_folder,
        project_config(project_type="psm", file_format="parquet"),
        {"psm_table_path": psm_table_path},
    )

    result = project.run()

    assert result.is_completed
    assert os.path.exists(os.path.join(output_folder, "psms.parquet"))
    assert not os.path.exists(os.path.join(output_folder, "peptides.parquet"))


def test_existing_frozen_config_is_moved(output_folder):
    ValidationProject(output_folder, project_config())
    ValidationProject(output_folder, project_config())

    assert os.path.exists(os.path.join(output_folder, FROZEN_CONFIG_FILE_NAME))
    assert os.path.exists(os.path.join(output_folder, "frozen_config.1.yaml"))


def test_unknown_config_key_raises(output_folder):
    with pytest.raises(KeyAddedConfigError):
        ValidationProject(output_folder, {"general": {"not_a_key": 1}})


def test_invalid_psm_table_raises(output_folder):
    psm_table_path = os.path.join(output_folder, "input_psms.tsv")
    pd.DataFrame({"spectrum_key": ["s1"], "sequence": ["AAAAAK"]}).to_csv(
        psm_table_path, sep="\t", index=False
    )
    project = ValidationProject(
        output_folder, project_config(), {"psm_table_path": psm_table_path}
    )

    with pytest.raises(InvalidPsmTableError):
        project.run()


def test_project_runs_with_progress_bar(output_folder):
    psm_table_path = os.path.join(output_folder, "input_psms.tsv")
    write_psm_table(psm_table_path, n_spectra=40)
    waiting_handler = TqdmWaitingHandler(disable=True)

    project = ValidationProject(
        output_folder,
        project_config(project_type="psm"),
        {"psm_table_path": psm_table_path},
    )

    result = project.run(waiting_handler=waiting_handler)

    assert result.is_completed
    assert waiting_handler.reports[-1] == "Validation completed"
