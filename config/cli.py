"""
Command-line entry point for the IsoTK pipeline.

Usage
--------------
# run from the project root (where config.toml lives)

# fit a dataset defined in config.toml
isotk fit --dataset daphnia_cd

# fit explicit tables
isotk fit --exposure data/exposure.csv --organisms data/organisms.csv --t1 168 --t2 336

# list datasets defined in config.toml
isotk datasets

# forward-simulate an exposure table for given kin / ke
isotk simulate data/exposure.csv --kin 5 --ke 0.05 --t-end 14
"""
from pathlib import Path
import subprocess as sp
import sys
import typer

import config_loader

# project root
ROOT = Path(__file__).resolve().parent.parent
# current venv's python
PY = sys.executable


def _run(cmd: list[str]) -> None:
    """
    Echo + run a module from the project root.
    Args:
        cmd: List of command line arguments.
    Returns:
        None
    """
    typer.echo(f"$ {' '.join(cmd)}")
    sp.check_call([PY, "-m", *cmd], cwd=ROOT)


def _option(flag: str, value) -> list[str]:
    if value is None or value is False:
        return []
    if value is True:
        return [flag]
    return [flag, str(value)]


app = typer.Typer(help="CLI shortcuts for the IsoTK workflow")


@app.command()
def fit(
        dataset: str | None = typer.Option(None, help="Dataset block in config.toml"),
        conf: Path | None = typer.Option(
            None, "--conf", file_okay=True, dir_okay=False,
            help="Path to config.toml. Uses the project one if omitted."
        ),
        exposure: Path | None = typer.Option(None, help="Exposure table (.xlsx or .csv)"),
        organisms: Path | None = typer.Option(None, help="Organism table (.xlsx or .csv)"),
        species: str | None = typer.Option(None, help="Species filter"),
        t1: float | None = typer.Option(None, help="First sampling time (hours)"),
        t2: float | None = typer.Option(None, help="Terminal sampling time (hours)"),
        ke_seed: float | None = typer.Option(None, help="Elimination-rate seed (1/day)"),
        fix_ke: bool = typer.Option(False, help="Hold ke at its seed"),
        mode: str | None = typer.Option(None, help="lsq | lbfgsb"),
        workers: int | None = typer.Option(None, help="Worker processes"),
        out_dir: Path | None = typer.Option(None, help="Parent directory of the run folder"),
        plots: bool = typer.Option(True, help="Write diagnostic figures"),
):
    """
    Fit kin / ke for every individual of a dataset (bin.main).
    """
    cmd = ["bin.main"]
    cmd += _option("--dataset", dataset)
    cmd += _option("--conf", conf)
    cmd += _option("--exposure", exposure)
    cmd += _option("--organisms", organisms)
    cmd += _option("--species", species)
    cmd += _option("--t1", t1)
    cmd += _option("--t2", t2)
    cmd += _option("--ke-seed", ke_seed)
    cmd += _option("--fix-ke", fix_ke)
    cmd += _option("--mode", mode)
    cmd += _option("--workers", workers)
    cmd += _option("--out-dir", out_dir)
    cmd += _option("--no-plots", not plots)
    _run(cmd)


@app.command()
def datasets(
        conf: Path | None = typer.Option(None, "--conf", help="Path to config.toml"),
):
    """
    List the datasets defined in config.toml.
    """
    for name in config_loader.datasets("fit", str(conf) if conf else None):
        typer.echo(name)


@app.command()
def simulate(
        exposure: Path = typer.Argument(..., help="Exposure table (.xlsx or .csv)"),
        kin: float = typer.Option(..., help="Uptake rate"),
        ke: float = typer.Option(..., help="Elimination rate (1/day)"),
        t_end: float = typer.Option(..., help="Terminal time (days)"),
        sheet: str | None = typer.Option(None, help="Sheet name"),
        species: str | None = typer.Option(None, help="Species filter"),
):
    """
    Forward-simulate both isotopes for a parameter pair and print the terminal contents.
    """
    from models import build_forcing_functions, terminal_state
    from utils.display import load_exposure

    forcing = build_forcing_functions(load_exposure(exposure, sheet, species))
    m1, m2 = terminal_state((kin, ke), forcing, t_end)
    typer.echo(f"iso1\t{m1:.6g}")
    typer.echo(f"iso2\t{m2:.6g}")


if __name__ == "__main__":
    app()
