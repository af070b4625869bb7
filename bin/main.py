import sys

from config.config import parse_args, extract_config, log_config
from config.logconf import setup_logger
from paramest.core import run_batch
from paramest.errors import InputError
from plotting import Plotter
from utils.display import load_exposure, load_organisms, save_result
from utils.utils import run_directory

logger = setup_logger()


def main(argv=None):
    """
    Run a batch fit: load both tables, fit every individual sampled at T2,
    write the result table, trajectories and figures into a timestamped run folder.

    Returns:
        int: process exit status (0 on success, 1 on a fatal input error).
    """
    try:
        cfg = extract_config(parse_args(argv))
        log_config(logger, cfg)

        exposure = load_exposure(cfg["exposure"], cfg["exposure_sheet"], cfg["species"])
        organisms = load_organisms(cfg["organisms"], cfg["organism_sheet"], cfg["species"])
        logger.info(f"Loaded {len(exposure)} exposure rows and {len(organisms)} organism rows")

        batch = run_batch(
            exposure, organisms, cfg["t1"], cfg["t2"],
            ke_seed=cfg["ke_seed"],
            fix_ke=cfg["fix_ke"],
            mode=cfg["mode"],
            max_nfev=cfg["max_nfev"],
            timeout=cfg["timeout"],
            max_workers=cfg["workers"],
        )
    except InputError as e:
        logger.error(f"Input error: {e}")
        return 1

    run_dir = run_directory(cfg["out_dir"], cfg["dataset"])
    settings = {k: cfg[k] for k in ("t1", "t2", "fix_ke", "mode", "max_nfev", "timeout", "species")}
    paths = save_result(batch, run_dir, settings)
    logger.info(f"Results written to {paths['xlsx']}")

    if cfg["plots"]:
        plotter = Plotter(cfg["dataset"] or "isotk", str(run_dir))
        plotter.plot_gof(batch.table)
        plotter.plot_parameters(batch.table)
        for row in batch.table.itertuples(index=False):
            if row.ID in batch.trajectories:
                plotter.plot_trajectory(row.ID, batch.trajectories[row.ID], (row.measured_iso1, row.measured_iso2))
        logger.info("Plotting completed.")

    flagged = batch.table[batch.table["status"] != "converged"]
    if not flagged.empty:
        logger.warning(f"{len(flagged)} of {len(batch.table)} fits flagged: "
                       + " ".join(f"[{i}]" for i in flagged["ID"]))

    logger.info("           --------------------------------")
    logger.info(f"Run folder: {run_dir.resolve().as_uri()}")
    logger.info("           --------------------------------")
    return 0


if __name__ == "__main__":
    sys.exit(main())
