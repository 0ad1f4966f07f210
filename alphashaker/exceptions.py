"""Module containing custom exceptions."""


class CustomError(Exception):
    """Custom alphaShaker error class."""

    _error_code = ""
    _msg = ""
    _detail_msg = ""
    _user_msg = ""

    @property
    def error_code(self):
        return self._error_code

    @property
    def msg(self):
        return self._msg

    @property
    def detail_msg(self):
        return self._detail_msg

    def __init__(self, msg: str = ""):
        self._user_msg = msg

        super().__init__(self._msg)

    def __str__(self):
        return (
            f"{self._error_code}: {self._msg}\n'{self._user_msg}'\n{self._detail_msg}"
        )


class BusinessError(CustomError):
    """Custom error class for 'business' errors.

    A 'business' error is an error that is caused during processing the input (data, configuration, ...) and not by a
    malfunction in alphaShaker.
    """


class UserError(CustomError):
    """Custom error class for 'user' errors.

    A 'user' error is an error that is caused by the incompatible user input (data, configuration, ...) and not by a
    malfunction in alphaShaker.
    """


class NoBestAssumptionError(BusinessError):
    """Raise when a spectrum match has neither a best peptide nor a best tag assumption."""

    _error_code = "NO_BEST_ASSUMPTION"

    _msg = "No best assumption could be selected for the spectrum match."

    _detail_msg = """The spectrum match carries no scored peptide or tag assumption.
    This points to a problem during the import of the identification results, the match is skipped."""


class RepositoryConnectionError(BusinessError):
    """Raise when the match repository cannot be read from or written to."""

    _error_code = "REPOSITORY_CONNECTION"

    _msg = "Lost connection to the match repository."

    _detail_msg = """The current batch was abandoned. Results of previously committed stages are still available
    in the repository and the run can be resumed from the last committed stage."""


class MapNotEstimatedError(BusinessError):
    """Raise when a probability is requested from a target/decoy map with pending points."""

    _error_code = "MAP_NOT_ESTIMATED"

    _msg = "Probabilities were requested before they were estimated."

    _detail_msg = """Points were added to the target/decoy map after the last estimation.
    Call estimate_probabilities() once all points are added."""


class UnknownStageError(UserError):
    """Raise when a pipeline stage is requested which does not exist."""

    _error_code = "UNKNOWN_STAGE"

    _msg = "Unknown pipeline stage."


class InvalidPsmTableError(UserError):
    """Raise when a PSM table misses required columns."""

    _error_code = "INVALID_PSM_TABLE"

    _msg = "The PSM table is missing required columns."


class ConfigError(BusinessError):
    """Raise when something is wrong with the provided configuration."""

    _error_code = "CONFIG_ERROR"

    _msg = "Malformed or invalid configuration."
    _key = ""
    _config_name = ""
    _detail_msg = ""

    def __init__(
        self,
        key: str = "",
        value: str = "",
        config_name: str = "",
        detail_msg: str = "",
    ):
        self._key = key
        self._value = value
        self._config_name = config_name
        self._detail_msg = detail_msg


class KeyAddedConfigError(ConfigError):
    """Raise when a key should be added to a config."""

    def __init__(self, key: str, value: str, config_name: str):
        super().__init__(key, value, config_name)
        self._detail_msg = (
            f"Defining new keys is not allowed when updating a config: "
            f"key='{self._key}', value='{self._value}', config_name='{self._config_name}'"
        )


class TypeMismatchConfigError(ConfigError):
    """Raise when the type of a value does not match the default type."""

    def __init__(self, key: str, value: str, config_name: str, extra_msg: str):
        super().__init__(key, value, config_name)
        self._detail_msg = (
            f"Types of values must match default config: "
            f"key='{self._key}', value='{self._value}', config_name='{self._config_name}', types='{extra_msg}'"
        )


class ProcessingAbortedError(BusinessError):
    """Raise when the exception handler requests to abort the run."""

    _error_code = "PROCESSING_ABORTED"

    _msg = "Processing was aborted after errors on individual matches."

    _detail_msg = """Either abort_on_error is set or more than max_errors matches failed.
    Check the log for the errors of the individual matches."""
