"""Progress, cancellation and per match error handling of a pipeline run."""

import logging
import threading
import traceback

from tqdm import tqdm

from alphashaker.exceptions import CustomError
from alphashaker.reporting import reporting

logger = logging.getLogger()


class WaitingHandler:
    def __init__(self):
        """Progress counter and cooperative cancellation flag, safe to use from several threads."""
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self.progress = 0
        self.max_progress = 0
        self.indeterminate = True
        self.reports = []

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def set_max_progress(self, max_progress: int) -> None:
        with self._lock:
            self.progress = 0
            self.max_progress = max_progress
            self.indeterminate = False

    def increase_progress(self, n: int = 1) -> None:
        with self._lock:
            self.progress += n

    def set_indeterminate(self, indeterminate: bool) -> None:
        self.indeterminate = indeterminate

    def append_report(self, text: str, verbosity: str = "progress") -> None:
        with self._lock:
            self.reports.append(text)
        logger.info(text)


class ReporterWaitingHandler(WaitingHandler):
    def __init__(self, reporter: reporting.Pipeline | reporting.Backend, n_steps: int = 10):
        """Waiting handler which narrates to a reporter and logs progress in `n_steps` steps."""
        super().__init__()
        self.reporter = reporter
        self.n_steps = n_steps
        self._last_step = 0

    def set_max_progress(self, max_progress: int) -> None:
        super().set_max_progress(max_progress)
        self._last_step = 0

    def increase_progress(self, n: int = 1) -> None:
        with self._lock:
            self.progress += n
            if self.max_progress <= 0:
                return
            step = min(self.n_steps, self.progress * self.n_steps // self.max_progress)
            if step <= self._last_step:
                return
            self._last_step = step
            progress = self.progress
        self.reporter.log_event("progress", {"progress": progress, "total": self.max_progress})

    def append_report(self, text: str, verbosity: str = "progress") -> None:
        with self._lock:
            self.reports.append(text)
        self.reporter.log_string(text, verbosity=verbosity)


class TqdmWaitingHandler(WaitingHandler):
    def __init__(self, disable: bool = False):
        """Waiting handler which shows a tqdm progress bar for every stage."""
        super().__init__()
        self.disable = disable
        self._bar = None

    def _close_bar(self):
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def set_max_progress(self, max_progress: int) -> None:
        super().set_max_progress(max_progress)
        self._close_bar()
        self._bar = tqdm(total=max_progress, disable=self.disable, leave=False)

    def increase_progress(self, n: int = 1) -> None:
        super().increase_progress(n)
        if self._bar is not None:
            self._bar.update(n)

    def set_indeterminate(self, indeterminate: bool) -> None:
        super().set_indeterminate(indeterminate)
        if indeterminate:
            self._close_bar()

    def append_report(self, text: str, verbosity: str = "progress") -> None:
        with self._lock:
            self.reports.append(text)
        tqdm.write(text)


class ExceptionHandler:
    def __init__(
        self,
        reporter: reporting.Pipeline | reporting.Backend | None = None,
        abort_on_error: bool = False,
        max_errors: int = 100,
    ):
        """Collects exceptions raised for individual matches.

        Parameters
        ----------
        reporter : reporting.Pipeline | reporting.Backend, optional
            Errors are logged here. Defaults to a LogBackend.

        abort_on_error : bool, default False
            Abort the run on the first error.

        max_errors : int, default 100
            Abort the run once more errors than this were caught.
        """
        self.reporter = reporting.LogBackend() if reporter is None else reporter
        self.abort_on_error = abort_on_error
        self.max_errors = max_errors
        self.errors = []
        self._lock = threading.Lock()

    def catch(self, exception: Exception, match_key: str = "") -> None:
        code = (
            exception.error_code
            if isinstance(exception, CustomError)
            else exception.__class__.__name__
        )
        with self._lock:
            self.errors.append((match_key, code, str(exception)))
        self.reporter.log_string(f"{match_key}: {code} {exception}", verbosity="error")
        self.reporter.log_string(
            "".join(traceback.format_exception(exception)), verbosity="debug"
        )

    @property
    def n_errors(self) -> int:
        return len(self.errors)

    @property
    def should_abort(self) -> bool:
        return (self.abort_on_error and self.n_errors > 0) or self.n_errors > self.max_errors
