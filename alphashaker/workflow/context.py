import logging
from dataclasses import dataclass

from alphashaker.constants.keys import ConfigKeys
from alphashaker.inference.assembly import IdentificationAssembly
from alphashaker.inference.protein_inference import ProteinInference
from alphashaker.providers import ModificationRegistry, SequenceProvider
from alphashaker.ptm.localization import (
    ModificationLocalizationScorer,
    PeptideModificationInference,
)
from alphashaker.reporting import reporting
from alphashaker.scoring.best_match import BestMatchSelection
from alphashaker.validation.validator import MatchesValidator
from alphashaker.workflow.config import Config
from alphashaker.workflow.managers.maps_manager import MapsManager
from alphashaker.workflow.managers.timing_manager import TimingManager
from alphashaker.workflow.waiting import ExceptionHandler, WaitingHandler

logger = logging.getLogger()


@dataclass
class PipelineContext:
    """Everything a stage reads or writes during a run."""

    config: Config
    repository: object
    sequence_provider: SequenceProvider
    registry: ModificationRegistry
    maps: MapsManager
    timing: TimingManager
    reporter: reporting.Pipeline | reporting.Backend
    waiting_handler: WaitingHandler
    exception_handler: ExceptionHandler
    best_match_selection: BestMatchSelection
    assembly: IdentificationAssembly
    protein_inference: ProteinInference
    validator: MatchesValidator
    localization_scorer: ModificationLocalizationScorer | None = None
    peptide_inference: PeptideModificationInference | None = None
    thread_count: int = 1

    @property
    def project_type(self) -> str:
        return self.config[ConfigKeys.GENERAL][ConfigKeys.PROJECT_TYPE]

    @property
    def save_figures(self) -> bool:
        return self.config[ConfigKeys.GENERAL][ConfigKeys.SAVE_FIGURES]
