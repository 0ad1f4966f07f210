import base64
import json
import logging
import os
import time
import traceback
import typing
import warnings
from datetime import datetime, timedelta
from io import BytesIO

import matplotlib
import matplotlib.image
import numpy as np
from matplotlib.figure import Figure

# tracks if the root logger has been configured by init_logging
__is_initiated__ = False

# level 21 sits just above INFO (20) and is used for stage transitions
# registered at import time so that logger.progress() always exists
PROGRESS_LEVELV_NUM = 21
logging.PROGRESS = PROGRESS_LEVELV_NUM
logging.addLevelName(PROGRESS_LEVELV_NUM, "PROGRESS")

LOG_FILE_NAME = "log.txt"


def progress(self, message, *args, **kws):
    if self.isEnabledFor(PROGRESS_LEVELV_NUM):
        self._log(PROGRESS_LEVELV_NUM, message, args, **kws)


logging.Logger.progress = progress


class DefaultFormatter(logging.Formatter):
    template = "%(levelname)s: %(message)s"

    grey = "\x1b[38;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    green = "\x1b[32;20m"
    reset = "\x1b[0m"

    def __init__(self, use_ansi: bool = True):
        """
        Default formatter prefixing every record with the elapsed time.

        Parameters
        ----------

        use_ansi : bool, default True
            Whether to color PROGRESS, WARNING, ERROR and CRITICAL records.

        """
        super().__init__()
        self.start_time = time.time()

        colors = {
            logging.PROGRESS: self.green,
            logging.WARNING: self.yellow,
            logging.ERROR: self.red,
            logging.CRITICAL: self.bold_red,
        }

        self.formatter = {}
        for level in [
            logging.DEBUG,
            logging.INFO,
            logging.PROGRESS,
            logging.WARNING,
            logging.ERROR,
            logging.CRITICAL,
        ]:
            if use_ansi and level in colors:
                fmt = colors[level] + self.template + self.reset
            else:
                fmt = self.template
            self.formatter[level] = logging.Formatter(fmt)

    def format(self, record: logging.LogRecord):
        elapsed = timedelta(seconds=record.created - self.start_time)
        formatter = self.formatter.get(record.levelno, self.formatter[logging.INFO])

        return f"{elapsed} {formatter.format(record)}"


def init_logging(
    log_folder: str | None = None,
    log_level: int = logging.INFO,
    overwrite: bool = True,
):
    """Configure the root logger with a console handler and an optional file handler.

    Parameters
    ----------

    log_folder : str, default None
        Folder in which `log.txt` is written. If None, only the console is used.

    log_level : int, default logging.INFO
        Level of the root logger and all handlers.

    overwrite : bool, default True
        Whether an existing `log.txt` should be replaced.
    """

    global __is_initiated__

    logger = logging.getLogger()
    logger.handlers = []
    logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(DefaultFormatter(use_ansi=True))
    logger.addHandler(console_handler)

    if log_folder is not None:
        log_name = os.path.join(log_folder, LOG_FILE_NAME)
        if os.path.exists(log_name) and overwrite:
            os.remove(log_name)

        file_handler = logging.FileHandler(log_name, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(DefaultFormatter(use_ansi=False))
        logger.addHandler(file_handler)

    __is_initiated__ = True


def move_existing_file(file_path: str) -> str | None:
    """Rename an existing file to `<name>.<n><ext>` with the first free n.

    Returns the new path, or None if there was nothing to move.
    """
    if not os.path.exists(file_path):
        return None

    base, ext = os.path.splitext(file_path)
    n = 1
    while os.path.exists(f"{base}.{n}{ext}"):
        n += 1

    new_path = f"{base}.{n}{ext}"
    os.rename(file_path, new_path)
    return new_path


class Backend:
    """Generic backend for logging metrics, figures, strings and events.

    Subclasses override the methods they support, all others are no-ops.
    Backends which need to be set up and torn down set `REQUIRES_CONTEXT` and implement `__enter__` and `__exit__`.
    """

    REQUIRES_CONTEXT = False

    def log_figure(self, name: str, figure: typing.Any, *args, **kwargs):
        pass

    def log_metric(self, name: str, value: float, *args, **kwargs):
        pass

    def log_string(self, value: str, *args, **kwargs):
        pass

    def log_data(self, name: str, value: typing.Any, *args, **kwargs):
        pass

    def log_event(self, name: str, value: typing.Any, *args, **kwargs):
        pass


def _figure_to_buffer(figure: typing.Any, target: typing.Any, savefig_kwargs: dict):
    """Write a matplotlib figure or image array to a path or buffer. Returns False for unsupported types."""
    if isinstance(figure, Figure):
        figure.savefig(target, **savefig_kwargs)
    elif isinstance(figure, np.ndarray):
        matplotlib.image.imsave(target, figure, **savefig_kwargs)
    else:
        warnings.warn(f"Figures of type {type(figure)} are not supported")
        return False
    return True


class FigureBackend(Backend):
    FIGURE_PATH = "figures"

    def __init__(self, path=None, default_savefig_kwargs=None) -> None:
        """Backend which saves figures to `<path>/figures`.

        Parameters
        ----------

        path : str
            Parent folder of the figures folder. Required.

        default_savefig_kwargs : dict, default {"dpi":300}
            Arguments passed to matplotlib.figure.Figure.savefig

        """
        if path is None:
            raise ValueError(
                "FigureBackend requires an output folder to be set with the path parameter."
            )

        self.path = path
        self.figures_path = os.path.join(self.path, self.FIGURE_PATH)
        os.makedirs(self.figures_path, exist_ok=True)

        self.default_savefig_kwargs = (
            {"dpi": 300} if default_savefig_kwargs is None else default_savefig_kwargs
        )

    def log_figure(
        self,
        name: str,
        figure: Figure | np.ndarray,
        extension: str = "png",
    ):
        filename = os.path.join(self.figures_path, f"{name}.{extension}")
        _figure_to_buffer(figure, filename, self.default_savefig_kwargs)


class JSONLBackend(Backend):
    EVENTS_PATH = "events.jsonl"
    REQUIRES_CONTEXT = True

    def __init__(
        self,
        path=None,
        enable_figure=True,
        default_savefig_kwargs=None,
    ) -> None:
        """Backend which appends events, metrics, strings and figures to `<path>/events.jsonl`.

        Messages are only written while the backend is inside its context.

        Parameters
        ----------

        path : str
            Folder of the events file. Required.

        enable_figure : bool, default True
            If False, figures are not embedded.

        default_savefig_kwargs : dict, default {"dpi":300}
            Arguments passed to matplotlib.figure.Figure.savefig

        """
        if path is None:
            raise ValueError(
                "JSONLBackend requires an output folder to be set with the path parameter."
            )

        self.path = path
        self.events_path = os.path.join(self.path, self.EVENTS_PATH)
        self.default_savefig_kwargs = (
            {"dpi": 300} if default_savefig_kwargs is None else default_savefig_kwargs
        )
        self.enable_figure = enable_figure
        self.entered_context = False
        self.start_time = 0

    def absolute_time(self):
        return datetime.now().isoformat()

    def relative_time(self):
        return datetime.now().timestamp() - self.start_time

    def __enter__(self):
        self.entered_context = True
        self.start_time = datetime.now().timestamp()

        # truncate events from a previous run
        with open(self.events_path, "w"):
            pass

        self.log_event("start", {})
        return self

    def __exit__(
        self, exc_type: typing.Any, exc_value: typing.Any, exc_traceback: typing.Any
    ):
        if exc_type is not None:
            exc_str = "".join(
                traceback.format_exception(exc_type, exc_value, exc_traceback)
            )
            self.log_event("stop", {"error": exc_str})
        else:
            self.log_event("stop", {})

        self.entered_context = False
        self.start_time = 0

    def _write(self, message_type: str, name: str, value: typing.Any, verbosity=0):
        if not self.entered_context:
            return

        message = {
            "absolute_time": self.absolute_time(),
            "relative_time": self.relative_time(),
            "type": message_type,
            "name": name,
            "value": value,
            "verbosity": verbosity,
        }
        with open(self.events_path, "a") as f:
            f.write(json.dumps(message) + "\n")

    def log_event(self, name: str, value: typing.Any):
        self._write("event", name, value)

    def log_metric(self, name: str, value: float):
        self._write("metric", name, value)

    def log_string(self, value: str, verbosity: str = "info"):
        self._write("string", "string", value, verbosity=verbosity)

    def log_figure(self, name: str, figure: typing.Any):
        if not self.entered_context or not self.enable_figure:
            return

        buffer = BytesIO()
        if not _figure_to_buffer(figure, buffer, self.default_savefig_kwargs):
            return

        self._write("figure", name, base64.b64encode(buffer.getvalue()).decode("utf-8"))


class LogBackend(Backend):
    def __init__(self, path: str | None = None) -> None:
        """Backend which forwards strings to the root logger."""
        if not __is_initiated__ or path is not None:
            init_logging(path)

        self.logger = logging.getLogger()
        super().__init__()

    def log_string(self, value: str, verbosity: str = "info"):
        log_methods = {
            "progress": self.logger.progress,
            "info": self.logger.info,
            "debug": self.logger.debug,
            "warning": self.logger.warning,
            "error": self.logger.error,
            "critical": self.logger.critical,
        }
        if verbosity not in log_methods:
            raise ValueError(f"Unknown verbosity level {verbosity}")
        log_methods[verbosity](value)


class Context:
    def __init__(self, parent: typing.Any) -> None:
        """Context handle which lets a pipeline be instantiated first and entered later."""
        self.parent = parent

    def __enter__(self):
        return self.parent.__enter__()

    def __exit__(self, exc_type, exc_value, exc_traceback):
        return self.parent.__exit__(exc_type, exc_value, exc_traceback)


class Pipeline:
    def __init__(
        self,
        backends: list[Backend] | None = None,
    ):
        """Reporter which forwards every call to a list of backends.

        Parameters
        ----------

        backends : list[Backend], default []
            Instantiated backends.
        """
        self.context = Context(self)
        self.backends = [] if backends is None else backends

    def __enter__(self):
        for backend in self.backends:
            if backend.REQUIRES_CONTEXT:
                backend.__enter__()
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        for backend in self.backends:
            if backend.REQUIRES_CONTEXT:
                backend.__exit__(exc_type, exc_value, exc_traceback)

    def log_figure(self, name: str, figure: typing.Any, *args, **kwargs):
        for backend in self.backends:
            backend.log_figure(name, figure, *args, **kwargs)

    def log_metric(self, name: str, value: float, *args, **kwargs):
        for backend in self.backends:
            backend.log_metric(name, value, *args, **kwargs)

    def log_string(self, value: str, *args, verbosity="info", **kwargs):
        for backend in self.backends:
            backend.log_string(value, *args, verbosity=verbosity, **kwargs)

    def log_data(self, name: str, value: typing.Any, *args, **kwargs):
        for backend in self.backends:
            backend.log_data(name, value, *args, **kwargs)

    def log_event(self, name: str, value: typing.Any, *args, **kwargs):
        for backend in self.backends:
            backend.log_event(name, value, *args, **kwargs)
