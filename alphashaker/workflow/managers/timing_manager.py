import logging

import pandas as pd

from alphashaker.workflow.managers.base import BaseManager

logger = logging.getLogger()


class TimingManager(BaseManager):
    def __init__(
        self,
        path: None | str = None,
        load_from_file: bool = True,
        **kwargs,
    ):
        """Keeps start, end and duration of every pipeline stage."""
        super().__init__(path=path, load_from_file=load_from_file, **kwargs)
        self.reporter.log_event("initializing", {"name": f"{self.__class__.__name__}"})
        if not self.is_loaded_from_file:
            self.timings = {}

    def set_start_time(self, stage: str):
        """Store the start time of a stage, replacing the timing of a previous run of it.

        Parameters
        ----------
        stage : str
            Name under which the timing is stored.
        """
        self.timings[stage] = {"start": pd.Timestamp.now()}

    def set_end_time(self, stage: str):
        """Store the end time of a stage and its duration in minutes."""
        self.timings[stage]["end"] = pd.Timestamp.now()
        self.timings[stage]["duration"] = (
            self.timings[stage]["end"] - self.timings[stage]["start"]
        ).total_seconds() / 60

    def to_df(self) -> pd.DataFrame:
        """Timings as a table with one row per stage."""
        return pd.DataFrame.from_dict(self.timings, orient="index").rename_axis(
            "stage"
        )
