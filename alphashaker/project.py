"""Validation of one project: inputs, configuration, pipeline and result tables."""

import logging
import os

from alphashaker.constants.keys import ConfigKeys, RunStatus
from alphashaker.exceptions import CustomError
from alphashaker.io.psm_table import load_psm_table
from alphashaker.io.results import write_results
from alphashaker.providers import ProteinDetailsProvider, SequenceProvider
from alphashaker.reporting import reporting
from alphashaker.reporting.logging import print_environment, print_logo
from alphashaker.repository import InMemoryMatchRepository, PickleMatchRepository
from alphashaker.workflow.config import (
    USER_DEFINED,
    USER_DEFINED_CLI_PARAM,
    Config,
    load_default_config,
)
from alphashaker.workflow.pipeline import PipelineResult, ValidationPipeline
from alphashaker.workflow.waiting import WaitingHandler

logger = logging.getLogger()

FROZEN_CONFIG_FILE_NAME = "frozen_config.yaml"


class ValidationProject:
    def __init__(
        self,
        output_folder: str,
        config: dict | Config | None = None,
        cli_config: dict | None = None,
    ) -> None:
        """Highest level class of a validation run.

        Owns the config, the repository and the sequence providers.

        Parameters
        ----------

        output_folder : str
            Folder of the log, the frozen config, the managers and the result tables.

        config : dict, optional
            Values to update the default config. Overrides values in `default.yaml`.

        cli_config : dict, optional
            Additional config values from the command line. Overrides values in `config`.
        """
        self.output_folder = output_folder
        os.makedirs(output_folder, exist_ok=True)
        reporting.init_logging(self.output_folder)

        self._config = self._init_config(config, cli_config, output_folder)
        self._save_config(output_folder)

        logger.setLevel(
            logging.getLevelName(self._config[ConfigKeys.GENERAL][ConfigKeys.LOG_LEVEL])
        )

        self.repository_path = self._config[ConfigKeys.REPOSITORY_PATH]
        self.psm_table_path = self._config[ConfigKeys.PSM_TABLE_PATH]
        self.fasta_path_list = self._config[ConfigKeys.FASTA_PATHS]

        self.repository = None
        self.sequence_provider: SequenceProvider | None = None
        self.protein_details_provider: ProteinDetailsProvider | None = None

        self._log_inputs()

    @property
    def config(self) -> Config:
        return self._config

    @staticmethod
    def _init_config(
        user_config: dict | Config | None,
        cli_config: dict | None,
        output_folder: str,
    ) -> Config:
        """Default config updated with the user and the CLI values."""
        config = load_default_config()

        config_updates = []
        if user_config:
            config_updates.append(
                user_config
                if isinstance(user_config, Config)
                else Config(user_config, name=USER_DEFINED)
            )
        if cli_config:
            config_updates.append(Config(cli_config, name=USER_DEFINED_CLI_PARAM))

        if config_updates:
            config.update(config_updates, do_print=True)

        if (
            current_output_folder := config.get(ConfigKeys.OUTPUT_DIRECTORY)
        ) is not None and current_output_folder != output_folder:
            logger.warning(
                f"Using output directory '{output_folder}' provided via CLI, the value specified in config ('{current_output_folder}') will be ignored."
            )
        config[ConfigKeys.OUTPUT_DIRECTORY] = output_folder
        return config

    def _save_config(self, output_folder: str) -> None:
        """Save the config to the output folder, moving an existing file if necessary."""
        file_path = os.path.join(output_folder, FROZEN_CONFIG_FILE_NAME)
        moved_path = reporting.move_existing_file(file_path)
        self._config.to_yaml(file_path)
        if moved_path:
            logger.info(f"Moved existing config file {file_path} to {moved_path}")

    def _log_inputs(self):
        logger.info(f"Repository: {self.repository_path}")
        logger.info(f"PSM table: {self.psm_table_path}")
        logger.info(f"Using {len(self.fasta_path_list)} fasta files:")
        for f in self.fasta_path_list:
            logger.info(f"  {f}")
        logger.info(f"Saving output to: {self.output_folder}")

    def load_inputs(self) -> None:
        """Open the repository, import the PSM table and read the FASTA files."""
        decoy_tag = self._config[ConfigKeys.GENERAL][ConfigKeys.DECOY_TAG]

        if self.repository_path is not None:
            self.repository = PickleMatchRepository(self.repository_path)
        else:
            self.repository = InMemoryMatchRepository()

        if self.psm_table_path is not None:
            logger.progress("Importing PSM table")
            load_psm_table(self.psm_table_path, self.repository)

        if self.fasta_path_list:
            logger.progress("Loading FASTA files")
            self.sequence_provider = SequenceProvider.from_fasta(
                self.fasta_path_list, decoy_tag=decoy_tag
            )
            self.protein_details_provider = ProteinDetailsProvider.from_fasta(
                self.fasta_path_list
            )
        else:
            logger.warning(
                "No FASTA file provided, proteins are taken from the assumptions only"
            )
            self.sequence_provider = SequenceProvider({}, decoy_tag=decoy_tag)

    def run(
        self,
        start_stage: str | None = None,
        waiting_handler: WaitingHandler | None = None,
    ) -> PipelineResult:
        """Validate the project and write the result tables.

        Parameters
        ----------
        start_stage : str, optional
            First stage of the pipeline, all stages by default.

        waiting_handler : WaitingHandler, optional
            Progress and cancellation, progress is logged to the reporter by default.
        """
        print_logo()
        print_environment()

        if self.repository is None:
            self.load_inputs()

        reporter = reporting.Pipeline(
            backends=[
                reporting.LogBackend(),
                reporting.JSONLBackend(path=self.output_folder),
                reporting.FigureBackend(path=self.output_folder),
            ]
        )
        with reporter.context:
            pipeline = ValidationPipeline(
                self._config,
                self.repository,
                self.sequence_provider,
                reporter=reporter,
                waiting_handler=waiting_handler,
            )
            try:
                result = pipeline.run(start_stage)
            except CustomError as e:
                reporter.log_event("exception", {"error_code": e.error_code})
                raise

            if result.status == RunStatus.COMPLETED:
                write_results(
                    self.repository,
                    self.output_folder,
                    pipeline.context.validator.match_types(),
                    self.protein_details_provider,
                    file_format=self._config[ConfigKeys.GENERAL][ConfigKeys.FILE_FORMAT],
                )
                pipeline.timing.to_df().to_csv(
                    os.path.join(self.output_folder, "timings.tsv"), sep="\t"
                )

        if result.status == RunStatus.FAILED:
            logger.error(
                f"Validation failed, last committed stage: {result.last_committed_stage}"
            )
        logger.progress(f"=================== Validation {result.status} ===================")
        return result
