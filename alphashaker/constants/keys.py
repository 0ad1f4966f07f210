class ConstantsClass(type):
    """A metaclass for classes that should only contain string constants."""

    def __setattr__(self, name, value):
        raise TypeError("Constants class cannot be modified")

    def get_values(cls):
        """Get all user-defined string values of the class."""
        return [
            value
            for key, value in cls.__dict__.items()
            if not key.startswith("__") and isinstance(value, str)
        ]


class ConfigKeys(metaclass=ConstantsClass):
    """String constants for accessing the config."""

    VERSION = "version"
    OUTPUT_DIRECTORY = "output_directory"
    REPOSITORY_PATH = "repository_path"
    PSM_TABLE_PATH = "psm_table_path"
    FASTA_PATHS = "fasta_paths"

    GENERAL = "general"
    PROJECT_TYPE = "project_type"
    THREAD_COUNT = "thread_count"
    LOG_LEVEL = "log_level"
    SAVE_FIGURES = "save_figures"
    TARGET_DECOY = "target_decoy"
    DECOY_TAG = "decoy_tag"
    FILE_FORMAT = "file_format"

    INPUT_MAP = "input_map"
    VALIDATION = "validation"
    FILTERS = "filters"
    MODIFICATION_LOCALIZATION = "modification_localization"
    MODIFICATIONS = "modifications"
    PROTEIN_INFERENCE = "protein_inference"
    EXCEPTIONS = "exceptions"


class ProjectType(metaclass=ConstantsClass):
    """String constants for the granularity of a project.

    A `psm` project stops after spectrum level validation, a `peptide` project
    additionally assembles peptides and a `protein` project also infers protein groups.
    """

    PSM = "psm"
    PEPTIDE = "peptide"
    PROTEIN = "protein"


class MatchType(metaclass=ConstantsClass):
    """String constants for the namespaces of the match repository."""

    SPECTRUM = "spectrum"
    PEPTIDE = "peptide"
    PROTEIN = "protein"


class ModificationPosition(metaclass=ConstantsClass):
    """String constants for where a variable modification may be placed."""

    ANYWHERE = "anywhere"
    PEPTIDE_N_TERM = "peptide_n_term"
    PEPTIDE_C_TERM = "peptide_c_term"
    PROTEIN_N_TERM = "protein_n_term"
    PROTEIN_C_TERM = "protein_c_term"


class StageNames(metaclass=ConstantsClass):
    """String constants naming the stages of the validation pipeline, in order."""

    ASSUMPTION_PROBABILITIES = "assumption_probabilities"
    BEST_MATCH_SELECTION = "best_match_selection"
    MODIFICATION_LOCALIZATION = "modification_localization"
    PSM_PROBABILITIES = "psm_probabilities"
    PEPTIDE_INFERENCE = "peptide_inference"
    ASSEMBLY = "assembly"
    PROTEIN_INFERENCE = "protein_inference"
    PEPTIDE_PROBABILITIES = "peptide_probabilities"
    PROTEIN_PROBABILITIES = "protein_probabilities"
    VALIDATION = "validation"
    PEPTIDE_MODIFICATIONS = "peptide_modifications"
    PROTEIN_MODIFICATIONS = "protein_modifications"


class PsmTableCols(metaclass=ConstantsClass):
    """String constants for the columns of a tabular PSM input."""

    SPECTRUM_KEY = "spectrum_key"
    ALGORITHM = "algorithm"
    RANK = "rank"
    SEQUENCE = "sequence"
    MODIFICATIONS = "modifications"
    CHARGE = "charge"
    SCORE = "score"
    PROTEINS = "proteins"
    TAG = "tag"


class RunStatus(metaclass=ConstantsClass):
    """String constants for the outcome of a pipeline run or of a single stage."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    FAILED = "failed"
