"""The stages of the validation pipeline.

Every stage reads the repository as committed by the previous stage and writes its own
annotations. Stages are independent of each other and can be re-run, the orchestrator
commits the repository after every completed stage.
"""

import logging
import multiprocessing.pool
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

import matplotlib.pyplot as plt

from alphashaker.constants.keys import MatchType, ProjectType, RunStatus, StageNames
from alphashaker.exceptions import (
    MapNotEstimatedError,
    ProcessingAbortedError,
    RepositoryConnectionError,
)
from alphashaker.plotting import plot_target_decoy_map, plot_validation_summary
from alphashaker.ptm.localization import (
    score_peptide_modifications,
    score_protein_modifications,
)
from alphashaker.workflow.context import PipelineContext

logger = logging.getLogger()

ALL_PROJECT_TYPES = (ProjectType.PSM, ProjectType.PEPTIDE, ProjectType.PROTEIN)


@dataclass
class StageResult:
    name: str
    status: str = RunStatus.COMPLETED
    n_processed: int = 0
    n_errors: int = 0
    metrics: dict = field(default_factory=dict)


class Stage:
    """Base class of the pipeline stages. Implementations set `name` and implement `run`.

    Calling a stage checks whether it applies to the project, runs it and marks the result
    as cancelled if the waiting handler was cancelled in the meantime.
    """

    name = ""
    project_types = ALL_PROJECT_TYPES

    def is_applicable(self, context: PipelineContext) -> bool:
        return context.project_type in self.project_types

    def __call__(self, context: PipelineContext) -> StageResult:
        if not self.is_applicable(context):
            context.reporter.log_string(f"Skipping {self.name}")
            return StageResult(self.name, status=RunStatus.SKIPPED)

        context.reporter.log_string(f"Running {self.name}", verbosity="progress")
        n_errors = context.exception_handler.n_errors
        result = self.run(context)
        result.n_errors = context.exception_handler.n_errors - n_errors
        if context.waiting_handler.is_cancelled():
            result.status = RunStatus.CANCELLED
        return result

    def run(self, context: PipelineContext) -> StageResult:
        raise NotImplementedError("Subclasses must implement this method")

    def fan_out(
        self,
        context: PipelineContext,
        match_type: str,
        process: Callable,
    ) -> StageResult:
        """Apply `process` to every match of a namespace, in parallel if the context has several threads.

        `process` receives a match and returns True if it changed something worth counting.
        Cancellation is checked before every match. Exceptions raised for a single match are passed
        to the exception handler and the match is skipped, repository errors abandon the stage.

        Raises
        ------
        ProcessingAbortedError
            The exception handler requested to abort.
        RepositoryConnectionError
            The repository could not be read or written.
        """
        repository = context.repository
        waiting_handler = context.waiting_handler
        exception_handler = context.exception_handler

        keys = repository.keys(match_type)
        waiting_handler.set_max_progress(len(keys))
        abort = threading.Event()

        def _process(key):
            if waiting_handler.is_cancelled() or abort.is_set():
                return None
            try:
                match = repository.get(key, match_type)
                if match is None:
                    return None
                changed = bool(process(match))
                repository.put(match.key, match)
                return changed
            except (RepositoryConnectionError, MapNotEstimatedError):
                raise
            except Exception as e:
                exception_handler.catch(e, key)
                if exception_handler.should_abort:
                    abort.set()
                return None
            finally:
                waiting_handler.increase_progress()

        if context.thread_count > 1 and len(keys) > 1:
            with multiprocessing.pool.ThreadPool(context.thread_count) as pool:
                outcomes = pool.map(_process, keys)
        else:
            outcomes = [_process(key) for key in keys]

        if abort.is_set():
            raise ProcessingAbortedError(
                f"{self.name}: {exception_handler.n_errors} errors on individual matches"
            )

        processed = [o for o in outcomes if o is not None]
        return StageResult(
            self.name,
            n_processed=len(processed),
            metrics={"n_changed": sum(processed)},
        )


class AssumptionProbabilities(Stage):
    """Fill the per algorithm input maps and estimate them."""

    name = StageNames.ASSUMPTION_PROBABILITIES

    def is_applicable(self, context):
        return super().is_applicable(context) and context.best_match_selection.target_decoy

    def run(self, context):
        input_map = context.maps.input_map
        input_map.fill_from_repository(
            context.repository, context.sequence_provider, context.waiting_handler
        )
        input_map.estimate_probabilities(
            context.waiting_handler, thread_count=context.thread_count
        )

        if not input_map.is_target_decoy:
            context.reporter.log_string(
                "No algorithm produced targets and decoys, all assumption probabilities are 1.0",
                verbosity="warning",
            )

        metrics = {}
        for algorithm in input_map.input_algorithms_sorted():
            algorithm_map = input_map.get_map(algorithm)
            metrics[f"{algorithm}_n_targets"] = algorithm_map.n_targets
            metrics[f"{algorithm}_n_decoys"] = algorithm_map.n_decoys
            if context.save_figures and algorithm_map.can_estimate:
                fig = plot_target_decoy_map(algorithm_map)
                context.reporter.log_figure(f"input_map_{algorithm}", fig)
                plt.close(fig)

        return StageResult(
            self.name,
            n_processed=len(input_map.input_algorithms_sorted()),
            metrics=metrics,
        )


class BestMatchSelectionStage(Stage):
    """Attach assumption probabilities and select the best hit of every spectrum."""

    name = StageNames.BEST_MATCH_SELECTION

    def run(self, context):
        selection = context.best_match_selection

        def _select(spectrum_match):
            previous = spectrum_match.best_assumption
            previous_key = previous.key if previous is not None else None
            return selection.process(spectrum_match).key != previous_key

        return self.fan_out(context, MatchType.SPECTRUM, _select)


class ModificationLocalization(Stage):
    """Score and infer the modification sites of the best peptides."""

    name = StageNames.MODIFICATION_LOCALIZATION

    def is_applicable(self, context):
        return super().is_applicable(context) and context.localization_scorer is not None

    def run(self, context):
        result = self.fan_out(
            context, MatchType.SPECTRUM, context.localization_scorer.process
        )
        n_mismatch = sum(
            m.annotations.protein_mapping_mismatch
            for m in context.repository.iterate(MatchType.SPECTRUM)
        )
        result.metrics["n_protein_mapping_mismatch"] = n_mismatch
        if n_mismatch:
            context.reporter.log_string(
                f"{n_mismatch} localized peptides map to no compatible protein",
                verbosity="warning",
            )
        return result


class PsmProbabilities(Stage):
    name = StageNames.PSM_PROBABILITIES

    def run(self, context):
        validator = context.validator
        validator.fill_psm_map(context.waiting_handler)
        validator.estimate(MatchType.SPECTRUM)
        validator.attach_psm_probabilities(context.waiting_handler)
        psm_map = context.maps.psm_map
        return StageResult(
            self.name,
            n_processed=len(psm_map),
            metrics={"n_targets": psm_map.n_targets, "n_decoys": psm_map.n_decoys},
        )


class PeptideInference(Stage):
    """Align non confident localizations with the confident PSMs of the same peptide."""

    name = StageNames.PEPTIDE_INFERENCE
    project_types = (ProjectType.PEPTIDE, ProjectType.PROTEIN)

    def is_applicable(self, context):
        return super().is_applicable(context) and context.peptide_inference is not None

    def run(self, context):
        peptide_inference = context.peptide_inference
        peptide_inference.collect(context.repository)
        return self.fan_out(context, MatchType.SPECTRUM, peptide_inference.align)


class Assembly(Stage):
    """Link the spectra to peptide matches and the peptides to their protein groups."""

    name = StageNames.ASSEMBLY
    project_types = (ProjectType.PEPTIDE, ProjectType.PROTEIN)

    def run(self, context):
        assembly = context.assembly
        result = self.fan_out(
            context,
            MatchType.SPECTRUM,
            lambda spectrum_match: assembly.build_peptides_and_proteins(spectrum_match),
        )
        result.metrics["n_peptides"] = context.repository.size(MatchType.PEPTIDE)
        result.metrics["n_protein_groups"] = context.repository.size(MatchType.PROTEIN)
        return result


class ProteinInferenceStage(Stage):
    name = StageNames.PROTEIN_INFERENCE
    project_types = (ProjectType.PROTEIN,)

    def run(self, context):
        group_matches = context.protein_inference.run(context.waiting_handler)
        metrics = {"n_protein_groups": len(group_matches)}
        for group_match in group_matches:
            key = f"n_{group_match.annotations.pi_status.name.lower()}"
            metrics[key] = metrics.get(key, 0) + 1
        return StageResult(self.name, n_processed=len(group_matches), metrics=metrics)


class PeptideProbabilities(Stage):
    name = StageNames.PEPTIDE_PROBABILITIES
    project_types = (ProjectType.PEPTIDE, ProjectType.PROTEIN)

    def run(self, context):
        validator = context.validator
        validator.fill_peptide_map(context.waiting_handler)
        validator.estimate(MatchType.PEPTIDE)
        validator.attach_peptide_probabilities(context.waiting_handler)
        return StageResult(self.name, n_processed=len(context.maps.peptide_map))


class ProteinProbabilities(Stage):
    name = StageNames.PROTEIN_PROBABILITIES
    project_types = (ProjectType.PROTEIN,)

    def run(self, context):
        validator = context.validator
        validator.fill_protein_map(context.waiting_handler)
        validator.estimate(MatchType.PROTEIN)
        validator.attach_protein_probabilities(context.waiting_handler)
        return StageResult(self.name, n_processed=len(context.maps.protein_map))


class Validation(Stage):
    """Assign validation levels on all levels of the project and report the thresholds."""

    name = StageNames.VALIDATION

    def run(self, context):
        summary = context.validator.validate_identifications(context.waiting_handler)

        metrics = {}
        for match_type, counts in summary.items():
            for level, count in counts.items():
                metrics[f"{match_type}_{level.lower()}"] = count
            results = context.maps.results.get(match_type)
            if results is not None and results.has_threshold:
                metrics[f"{match_type}_score_threshold"] = results.score_threshold
                metrics[f"{match_type}_pep_threshold"] = results.pep_threshold

        for name, value in metrics.items():
            context.reporter.log_metric(name, value)

        if context.save_figures:
            for match_type in summary:
                target_decoy_map = context.maps.get_map(match_type)
                if not target_decoy_map.can_estimate:
                    continue
                fig = plot_target_decoy_map(
                    target_decoy_map, context.maps.results.get(match_type)
                )
                context.reporter.log_figure(f"target_decoy_{match_type}", fig)
                plt.close(fig)

            fig = plot_validation_summary(summary)
            context.reporter.log_figure("validation_summary", fig)
            plt.close(fig)

        return StageResult(
            self.name,
            n_processed=sum(sum(counts.values()) for counts in summary.values()),
            metrics=metrics,
        )


class PeptideModifications(Stage):
    """Aggregate the modification localization of the validated spectra of every peptide."""

    name = StageNames.PEPTIDE_MODIFICATIONS
    project_types = (ProjectType.PEPTIDE, ProjectType.PROTEIN)

    def is_applicable(self, context):
        return super().is_applicable(context) and context.localization_scorer is not None

    def run(self, context):
        repository = context.repository

        def _score(peptide_match):
            score_peptide_modifications(peptide_match, repository)
            return bool(peptide_match.annotations.modification_sites)

        return self.fan_out(context, MatchType.PEPTIDE, _score)


class ProteinModifications(Stage):
    """Project the peptide modification sites onto the main accession of every protein group."""

    name = StageNames.PROTEIN_MODIFICATIONS
    project_types = (ProjectType.PROTEIN,)

    def is_applicable(self, context):
        return super().is_applicable(context) and context.localization_scorer is not None

    def run(self, context):
        repository = context.repository
        sequence_provider = context.sequence_provider

        def _score(group_match):
            score_protein_modifications(group_match, repository, sequence_provider)
            return bool(group_match.annotations.modification_sites)

        return self.fan_out(context, MatchType.PROTEIN, _score)


def default_stages() -> list[Stage]:
    """All stages in the order they are run."""
    return [
        AssumptionProbabilities(),
        BestMatchSelectionStage(),
        ModificationLocalization(),
        PsmProbabilities(),
        PeptideInference(),
        Assembly(),
        ProteinInferenceStage(),
        PeptideProbabilities(),
        ProteinProbabilities(),
        Validation(),
        PeptideModifications(),
        ProteinModifications(),
    ]
