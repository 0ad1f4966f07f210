"""Orchestration of the validation stages over a match repository."""

import logging
import os
from dataclasses import dataclass, field

from alphashaker.constants.keys import ConfigKeys, RunStatus, StageNames
from alphashaker.exceptions import (
    MapNotEstimatedError,
    ProcessingAbortedError,
    RepositoryConnectionError,
    UnknownStageError,
)
from alphashaker.inference.assembly import IdentificationAssembly
from alphashaker.inference.protein_inference import ProteinInference
from alphashaker.providers import ModificationRegistry, SequenceProvider, SpectrumProvider
from alphashaker.ptm.localization import (
    ModificationLocalizationScorer,
    PeptideChecker,
    PeptideModificationInference,
)
from alphashaker.ptm.site_scoring import SiteDeterminingIonScorer, SiteScorer
from alphashaker.reporting import reporting
from alphashaker.scoring.best_match import BestMatchSelection
from alphashaker.validation.filters import build_filters
from alphashaker.validation.validator import MatchesValidator
from alphashaker.workflow.config import Config
from alphashaker.workflow.context import PipelineContext
from alphashaker.workflow.managers.maps_manager import MapsManager
from alphashaker.workflow.managers.timing_manager import TimingManager
from alphashaker.workflow.stages import Stage, StageResult, default_stages
from alphashaker.workflow.waiting import (
    ExceptionHandler,
    ReporterWaitingHandler,
    WaitingHandler,
)

logger = logging.getLogger()


@dataclass
class PipelineResult:
    status: str
    last_committed_stage: str | None = None
    stage_results: dict[str, StageResult] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED


class ValidationPipeline:
    MAPS_MANAGER_PKL_NAME = "maps_manager.pkl"
    TIMING_MANAGER_PKL_NAME = "timing_manager.pkl"

    def __init__(
        self,
        config: Config,
        repository,
        sequence_provider: SequenceProvider,
        reporter: reporting.Pipeline | reporting.Backend | None = None,
        waiting_handler: WaitingHandler | None = None,
        exception_handler: ExceptionHandler | None = None,
        spectrum_provider: SpectrumProvider | None = None,
        site_scorer: SiteScorer | None = None,
        stages: list[Stage] | None = None,
    ):
        """Runs the validation stages in order and commits the repository between them.

        Parameters
        ----------
        config : Config
            Effective configuration of the run.

        repository : MatchRepository
            Repository holding the spectrum matches, receives peptides and protein groups.

        sequence_provider : SequenceProvider
            Protein sequences and decoy status.

        reporter : reporting.Pipeline | reporting.Backend, optional
            Receives strings, events, metrics and figures. Defaults to a LogBackend.

        waiting_handler : WaitingHandler, optional
            Progress and cancellation. Defaults to a handler narrating to the reporter.

        exception_handler : ExceptionHandler, optional
            Receives errors of individual matches. Defaults to the `exceptions` section of the config.

        spectrum_provider : SpectrumProvider, optional
            Spectra for the default site scorer. Without spectra every site scores 0.

        site_scorer : SiteScorer, optional
            Replaces the default site determining ion scorer.

        stages : list[Stage], optional
            Replaces the default stages.
        """
        self.config = config
        self.repository = repository
        self.reporter = reporting.LogBackend() if reporter is None else reporter
        self.stages = default_stages() if stages is None else stages

        output_folder = config[ConfigKeys.OUTPUT_DIRECTORY]
        general_config = config[ConfigKeys.GENERAL]
        exception_config = config[ConfigKeys.EXCEPTIONS]
        localization_config = config[ConfigKeys.MODIFICATION_LOCALIZATION]
        inference_config = config[ConfigKeys.PROTEIN_INFERENCE]

        maps = MapsManager(
            path=self._manager_path(output_folder, self.MAPS_MANAGER_PKL_NAME),
            higher_score_better=config[ConfigKeys.INPUT_MAP]["higher_score_better"],
            target_decoy_ratio=config[ConfigKeys.INPUT_MAP]["target_decoy_ratio"],
            reporter=self.reporter,
        )
        timing = TimingManager(
            path=self._manager_path(output_folder, self.TIMING_MANAGER_PKL_NAME),
            load_from_file=False,
            reporter=self.reporter,
        )

        registry = ModificationRegistry.from_config(config[ConfigKeys.MODIFICATIONS])

        localization_scorer = None
        peptide_inference = None
        if localization_config["enabled"]:
            peptide_checker = (
                PeptideChecker(sequence_provider, registry)
                if inference_config["modification_refinement"]
                else None
            )
            if site_scorer is None:
                site_scorer = SiteDeterminingIonScorer(
                    spectrum_provider or SpectrumProvider(),
                    registry,
                    fragment_tolerance=localization_config["fragment_tolerance"],
                )
            localization_scorer = ModificationLocalizationScorer(
                registry,
                site_scorer,
                peptide_checker=peptide_checker,
                confident_site_score=localization_config["confident_site_score"],
                max_permutations=localization_config["max_permutations"],
            )
            if localization_config["align_non_confident"]:
                peptide_inference = PeptideModificationInference(peptide_checker)

        self.context = PipelineContext(
            config=config,
            repository=repository,
            sequence_provider=sequence_provider,
            registry=registry,
            maps=maps,
            timing=timing,
            reporter=self.reporter,
            waiting_handler=(
                ReporterWaitingHandler(self.reporter)
                if waiting_handler is None
                else waiting_handler
            ),
            exception_handler=(
                ExceptionHandler(
                    self.reporter,
                    abort_on_error=exception_config["abort_on_error"],
                    max_errors=exception_config["max_errors"],
                )
                if exception_handler is None
                else exception_handler
            ),
            best_match_selection=BestMatchSelection(
                maps.input_map, target_decoy=general_config[ConfigKeys.TARGET_DECOY]
            ),
            assembly=IdentificationAssembly(
                repository,
                sequence_provider,
                project_type=general_config[ConfigKeys.PROJECT_TYPE],
            ),
            protein_inference=ProteinInference(
                repository,
                sequence_provider,
                simplify_groups=inference_config["simplify_groups"],
            ),
            validator=MatchesValidator.from_config(
                config, repository, maps, sequence_provider, filters=build_filters(config)
            ),
            localization_scorer=localization_scorer,
            peptide_inference=peptide_inference,
            thread_count=general_config[ConfigKeys.THREAD_COUNT],
        )

    @staticmethod
    def _manager_path(output_folder: str | None, name: str) -> str | None:
        return os.path.join(output_folder, name) if output_folder is not None else None

    @property
    def waiting_handler(self) -> WaitingHandler:
        return self.context.waiting_handler

    @property
    def maps(self) -> MapsManager:
        return self.context.maps

    @property
    def timing(self) -> TimingManager:
        return self.context.timing

    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def _stages_from(self, start_stage: str | None) -> list[Stage]:
        if start_stage is None:
            return self.stages
        names = self.stage_names()
        if start_stage not in names:
            raise UnknownStageError(
                f"{start_stage}, known stages are {', '.join(names)}"
            )
        return self.stages[names.index(start_stage) :]

    def run(self, start_stage: str | None = None) -> PipelineResult:
        """Run the stages from `start_stage` on, or all stages.

        The repository is committed after every completed stage. A cancelled stage is not
        committed and the run stops. Repository errors, lookups on maps which were not estimated
        and aborts requested by the exception handler end the run as failed, with the repository
        at the last committed stage.

        Parameters
        ----------
        start_stage : str, optional
            Name of the first stage to run.

        Returns
        -------
        PipelineResult
            Status, last committed stage and the results of the stages which ran.

        Raises
        ------
        UnknownStageError
            `start_stage` is not a stage of the pipeline.
        """
        stages = self._stages_from(start_stage)
        context = self.context
        result = PipelineResult(status=RunStatus.COMPLETED)

        self.reporter.log_event("section_start", {"name": "Validation pipeline"})
        for i, stage in enumerate(stages):
            if context.waiting_handler.is_cancelled():
                result.status = RunStatus.CANCELLED
                break

            context.waiting_handler.append_report(
                f"Stage {i + 1}/{len(stages)}: {stage.name}"
            )
            self.reporter.log_event("stage_start", {"name": stage.name})
            self.timing.set_start_time(stage.name)
            try:
                stage_result = stage(context)
                if stage_result.status == RunStatus.CANCELLED:
                    result.stage_results[stage.name] = stage_result
                    result.status = RunStatus.CANCELLED
                    break
                self.repository.commit()
            except (
                RepositoryConnectionError,
                ProcessingAbortedError,
                MapNotEstimatedError,
            ) as e:
                self.reporter.log_string(
                    f"Stage {stage.name} failed, the repository is at stage {result.last_committed_stage}: {e}",
                    verbosity="error",
                )
                result.stage_results[stage.name] = StageResult(
                    stage.name, status=RunStatus.FAILED
                )
                result.status = RunStatus.FAILED
                result.error = e
                break
            finally:
                self.timing.set_end_time(stage.name)

            result.stage_results[stage.name] = stage_result
            result.last_committed_stage = stage.name
            self.maps.save()
            self.reporter.log_event(
                "stage_stop", {"name": stage.name, "status": stage_result.status}
            )

        self.timing.save()
        self.reporter.log_event("section_stop", {"status": result.status})

        if result.status == RunStatus.CANCELLED:
            context.waiting_handler.append_report(
                f"Run cancelled, the repository is at stage {result.last_committed_stage}",
                verbosity="warning",
            )
        elif result.status == RunStatus.COMPLETED:
            context.waiting_handler.append_report("Validation completed")
        return result

    def spectrum_map_changed(self) -> PipelineResult:
        """Recompute everything downstream of the PSM probabilities."""
        return self.run(start_stage=StageNames.PSM_PROBABILITIES)

    def peptide_map_changed(self) -> PipelineResult:
        """Recompute everything downstream of the peptide probabilities."""
        return self.run(start_stage=StageNames.PEPTIDE_PROBABILITIES)

    def protein_map_changed(self) -> PipelineResult:
        """Recompute everything downstream of the protein probabilities."""
        return self.run(start_stage=StageNames.PROTEIN_PROBABILITIES)
