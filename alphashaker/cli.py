#!python
"""CLI for alphaShaker.

The CLI only parses parameters, the validation behaves the same from the CLI or a jupyter notebook.
"""
# ruff: noqa: E402 # Module level import not at top of file

import argparse
import json
import logging
import os
from pathlib import Path

import yaml

from alphashaker import __version__
from alphashaker.constants.keys import ConfigKeys

logging.getLogger("matplotlib.font_manager").setLevel(logging.ERROR)

import matplotlib

logger = logging.getLogger()

EXIT_CODE_USER_ERROR = 1
EXIT_CODE_WRONG_CLI_PARAM = 126
EXIT_CODE_UNKNOWN_ERROR = 127

epilog = "Parameters passed via CLI will overwrite parameters from config file (except for '--fasta': will be merged)."

parser = argparse.ArgumentParser(
    description="Validate peptide and protein identifications with alphaShaker",
    epilog=epilog,
)
parser.add_argument(
    "--version",
    "-v",
    action="store_true",
    help="Print version and exit",
)
parser.add_argument(
    "--check",
    action="store_true",
    help="Check if package can be imported",
)
parser.add_argument(
    "--output",
    "--output-directory",
    "-o",
    type=str,
    help="Output directory.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--repository",
    "--repository-path",
    type=str,
    help="Path to the match repository. An existing repository is loaded and updated.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--psm-table",
    "--psm-table-path",
    type=str,
    help="Path to a tsv, csv or parquet table of assumptions which is imported into the repository.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--fasta",
    "--fasta-path",
    help="Path to fasta file with target and decoy proteins. Can be passed multiple times.",
    action="append",
    default=[],
)
parser.add_argument(
    "--config",
    "-c",
    type=str,
    help="Path to config yaml file which will be used to update the default config.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--config-dict",
    type=str,
    help="Python dictionary which will be used to update the default config. Keys and string values need to be surrounded by "
    'escaped double quotes, e.g. "{\\"key1\\": \\"value1\\"}".',
    nargs="?",
    default="{}",
)
parser.add_argument(
    "--start-stage",
    type=str,
    help="Resume the validation at this stage of a previous run.",
    nargs="?",
    default=None,
)
parser.add_argument(
    "--progress-bar",
    action="store_true",
    help="Show a progress bar per stage instead of logging the progress.",
)


def _recursive_update(full_dict: dict, update_dict: dict):
    """Recursively update a dict with a second dict, in place."""
    for key, value in update_dict.items():
        if key in full_dict and isinstance(value, dict):
            _recursive_update(full_dict[key], value)
        else:
            full_dict[key] = value


def _get_config_from_args(
    args: argparse.Namespace,
) -> tuple[dict, str | None, str | None]:
    """Parse config file from `args.config` if given and update with optional JSON string `args.config_dict`."""
    config = {}
    if args.config is not None:
        with open(args.config) as f:
            config = yaml.safe_load(f) or {}

    if args.config_dict:
        _recursive_update(config, json.loads(args.config_dict))

    return config, args.config, args.config_dict


def _get_from_args_or_config(
    args: argparse.Namespace, config: dict, *, args_key: str, config_key: str
) -> str:
    """Get a value from command line arguments (key: `args_key`) or config file (key: `config_key`), the former taking precedence."""
    value_from_args = args.__dict__.get(args_key)
    return value_from_args if value_from_args is not None else config.get(config_key)


def run(*args, **kwargs):
    args, unknown = parser.parse_known_args()

    if unknown:
        print(f"Unknown arguments: {unknown}")
        parser.print_help()
        return EXIT_CODE_WRONG_CLI_PARAM

    if args.version:
        print(f"{__version__}")
        return

    # load modules only here to speed up -v and -h commands
    from alphashaker.exceptions import CustomError
    from alphashaker.project import ValidationProject
    from alphashaker.workflow.waiting import TqdmWaitingHandler

    if args.check:
        print(f"{__version__}")
        print("Importing alphaShaker works!")
        return

    try:
        user_config, config_file_path, extra_config_dict = _get_config_from_args(args)
    except json.JSONDecodeError as e:
        print(f"Could not parse config update: {e}")
        return EXIT_CODE_WRONG_CLI_PARAM

    output_directory = _get_from_args_or_config(
        args, user_config, args_key="output", config_key=ConfigKeys.OUTPUT_DIRECTORY
    )

    if output_directory is None:
        parser.print_help()
        print("No output directory specified. Please do so via CL-argument or config.")
        return EXIT_CODE_WRONG_CLI_PARAM

    cli_params_config = {
        **(
            {ConfigKeys.REPOSITORY_PATH: args.repository}
            if args.repository is not None
            else {}
        ),
        **(
            {ConfigKeys.PSM_TABLE_PATH: args.psm_table}
            if args.psm_table is not None
            else {}
        ),
        **(
            {ConfigKeys.FASTA_PATHS: user_config.get(ConfigKeys.FASTA_PATHS, []) + args.fasta}
            if args.fasta
            else {}
        ),
    }

    # important to suppress matplotlib output
    matplotlib.use("Agg")

    try:
        project = ValidationProject(output_directory, user_config, cli_params_config)

        logger.info(
            f"Output directory: {Path(output_directory).absolute()}, cwd: {os.getcwd()}."
        )
        if config_file_path:
            logger.info(f"User provided config file: {config_file_path}.")
        if extra_config_dict:
            logger.info(f"User provided config dict: {extra_config_dict}.")

        result = project.run(
            start_stage=args.start_stage,
            waiting_handler=TqdmWaitingHandler() if args.progress_bar else None,
        )
        if not result.is_completed:
            return EXIT_CODE_USER_ERROR

    except Exception as e:
        if isinstance(e, CustomError):
            exit_code = EXIT_CODE_USER_ERROR
        else:
            import traceback

            logger.info(traceback.format_exc())
            exit_code = EXIT_CODE_UNKNOWN_ERROR

        logger.error(e)
        return exit_code


if __name__ == "__main__" and os.getenv("RUN_MAIN") == "1":
    run()
