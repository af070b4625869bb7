import argparse
import os
from pathlib import Path

import numpy as np

import config_loader
from config.constants import (T1_HOURS, T2_HOURS, ESTIMATION_MODE, MAX_NFEV, FIT_TIMEOUT, FIX_KE, DATA_DIR, OUT_DIR,
                              DEV_TEST)
from paramest.errors import InputError
from paramest.toggle import MINIMIZERS


def parse_positive(val):
    """
    Parse a strictly positive float for argparse.

    Args:
        val (str): The string to parse, e.g. "336" or "0.05".
    Returns:
        float: The parsed value.
    """
    try:
        x = float(val)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid number '{val}': {e}")
    if not x > 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got '{val}'")
    return x


def parse_positive_int(val):
    """
    Parse a strictly positive integer for argparse, e.g. an evaluation cap.
    """
    try:
        n = int(val)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid integer '{val}': {e}")
    if n < 1:
        raise argparse.ArgumentTypeError(f"Value must be a positive integer, got '{val}'")
    return n


def parse_args(argv=None):
    """
    Parse command-line arguments for a batch fit.

    Every option defaults to None so that unset options fall through to the
    config.toml dataset block and then to config.constants.

    Args:
        argv (list, optional): Argument list; sys.argv[1:] if None.
    Returns:
        argparse.Namespace: The parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="IsoTK - per-individual uptake and elimination rates from dual-isotope exposure data"
    )
    parser.add_argument("--dataset", type=str, default=None,
                        help="Dataset block in config.toml ([fit.datasets.<name>])")
    parser.add_argument("--conf", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--exposure", type=str, default=None, help="Exposure table (.xlsx or .csv)")
    parser.add_argument("--exposure-sheet", type=str, default=None)
    parser.add_argument("--organisms", type=str, default=None, help="Organism table (.xlsx or .csv)")
    parser.add_argument("--organism-sheet", type=str, default=None)
    parser.add_argument("--species", type=str, default=None, help="Keep only rows of this species")
    parser.add_argument("--t1", type=parse_positive, default=None, help="First sampling time (hours)")
    parser.add_argument("--t2", type=parse_positive, default=None, help="Terminal sampling time (hours)")
    parser.add_argument("--ke-seed", type=parse_positive, default=None,
                        help="Elimination-rate seed (1/day); estimated from T1/T2 medians if omitted")
    parser.add_argument("--fix-ke", action="store_true", default=None, help="Hold ke at its seed")
    parser.add_argument("--mode", choices=sorted(MINIMIZERS), default=None, help="Optimizer backend")
    parser.add_argument("--max-nfev", type=parse_positive_int, default=None, help="Residual evaluations per individual")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Wall-clock cap per individual (seconds); 0 disables it")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes")
    parser.add_argument("--out-dir", type=str, default=None, help="Parent directory of the run folder")
    parser.add_argument("--no-plots", action="store_true", default=False)
    return parser.parse_args(argv)


def _resolve(path, base):
    if path is None:
        return None
    p = Path(path)
    return p if p.is_absolute() or p.exists() else Path(base) / p


def extract_config(args):
    """
    Merge command line, config.toml and built-in defaults into one settings dict.

    Precedence: command line > dataset block > [fit] defaults > config.constants.
    Relative input paths are resolved against the data directory.

    :param args: argparse.Namespace from parse_args
    :return: dict of run settings
    """
    toml = {}
    if args.conf is not None or args.dataset is not None:
        try:
            toml = config_loader.load(args.dataset, "fit", args.conf)
        except (FileNotFoundError, KeyError) as e:
            raise InputError(str(e)) from e

    def pick(name, default):
        val = getattr(args, name, None)
        if val is not None:
            return val
        return toml.get(name, default)

    paths = toml.get("_paths", {})
    root = Path(toml.get("_root", "."))
    data_dir = DATA_DIR if "data_dir" not in paths else root / paths["data_dir"]
    out_dir = args.out_dir or (root / paths["results_dir"] if "results_dir" in paths else OUT_DIR)

    timeout = pick("timeout", FIT_TIMEOUT)
    cfg = {
        "dataset": args.dataset,
        "exposure": _resolve(pick("exposure", None), data_dir),
        "exposure_sheet": pick("exposure_sheet", None),
        "organisms": _resolve(pick("organisms", None), data_dir),
        "organism_sheet": pick("organism_sheet", None),
        "species": pick("species", None),
        "t1": float(pick("t1", T1_HOURS)),
        "t2": float(pick("t2", T2_HOURS)),
        "ke_seed": pick("ke_seed", None),
        "fix_ke": bool(pick("fix_ke", FIX_KE)),
        "mode": pick("mode", ESTIMATION_MODE),
        "max_nfev": int(pick("max_nfev", MAX_NFEV)),
        "timeout": None if not timeout else float(timeout),
        "workers": 1 if DEV_TEST else int(pick("workers", 1)) or os.cpu_count(),
        "out_dir": Path(out_dir),
        "plots": bool(toml.get("plots", True)) and not args.no_plots,
    }

    if cfg["exposure"] is None or cfg["organisms"] is None:
        raise InputError("Both an exposure table and an organism table are required "
                         "(--exposure/--organisms or a --dataset block)")
    if not cfg["t2"] > cfg["t1"]:
        raise InputError(f"T2 ({cfg['t2']} h) must be later than T1 ({cfg['t1']} h)")
    if cfg["max_nfev"] < 1:
        raise InputError(f"max_nfev must be a positive integer, got {cfg['max_nfev']}")
    if cfg["mode"] not in MINIMIZERS:
        raise InputError(f"Unknown estimation mode '{cfg['mode']}'")
    return cfg


def log_config(logger, cfg):
    """
    Log the run settings.

    :param logger: logger from setup_logger
    :param cfg: dict from extract_config
    """
    logger.info("           --------------------------------")
    logger.info("Dual-isotope TK fit configuration")
    logger.info("           --------------------------------")
    logger.info(f"      Dataset            : {cfg['dataset'] or '-'}")
    logger.info(f"      Exposure table     : {cfg['exposure']}")
    logger.info(f"      Organism table     : {cfg['organisms']}")
    logger.info(f"      Species            : {cfg['species'] or 'all'}")
    logger.info(f"      T1 / T2 (h)        : {cfg['t1']} / {cfg['t2']}")
    logger.info(f"      ke seed            : {cfg['ke_seed'] if cfg['ke_seed'] is not None else 'from medians'}")
    logger.info(f"      Fix ke             : {cfg['fix_ke']}")
    logger.info(f"      Optimizer          : {cfg['mode']} (max {cfg['max_nfev']} evaluations, "
                f"timeout {cfg['timeout'] or 'off'})")
    logger.info(f"      Workers            : {cfg['workers']}")
    logger.info("           --------------------------------")
    np.set_printoptions(suppress=True)
