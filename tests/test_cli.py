import pandas as pd
import pytest
from typer.testing import CliRunner

import config.cli as cli
from bin.main import main
from models.tkmod import terminal_state

runner = CliRunner()


@pytest.fixture
def tables(tmp_path, pulse_exposure, pulse_forcing, simulate_organisms):
    exposure = tmp_path / "exposure.csv"
    organisms = tmp_path / "organisms.csv"
    pulse_exposure.to_csv(exposure, index=False)
    df = simulate_organisms(pulse_forcing, {"d1": (5.0, 0.05), "d2": (3.0, 0.04)},
                            {"s1": (5.0, 0.05), "s2": (4.0, 0.05)})
    df.drop(columns=["SamplingHour", "Hour"]).to_csv(organisms, index=False)
    return exposure, organisms


def test_fit_builds_main_command(monkeypatch):
    calls = []
    monkeypatch.setattr(cli, "_run", calls.append)
    result = runner.invoke(cli.app, ["fit", "--dataset", "zn", "--t2", "240", "--fix-ke", "--no-plots"])
    assert result.exit_code == 0
    assert calls == [["bin.main", "--dataset", "zn", "--t2", "240.0", "--fix-ke", "--no-plots"]]


def test_datasets_lists_blocks(tmp_path):
    conf = tmp_path / "config.toml"
    conf.write_text('[fit]\nt1 = 1.0\n[fit.datasets.b]\nt1 = 2.0\n[fit.datasets.a]\nt1 = 3.0\n')
    result = runner.invoke(cli.app, ["datasets", "--conf", str(conf)])
    assert result.exit_code == 0
    assert result.stdout.split() == ["a", "b"]


def test_simulate_prints_terminal_contents(tables, pulse_forcing):
    exposure, _ = tables
    result = runner.invoke(cli.app, ["simulate", str(exposure), "--kin", "5", "--ke", "0.05", "--t-end", "14"])
    assert result.exit_code == 0
    m1, m2 = terminal_state((5.0, 0.05), pulse_forcing, 14.0)
    assert f"iso1\t{m1:.6g}" in result.stdout
    assert f"iso2\t{m2:.6g}" in result.stdout


def test_main_end_to_end(tmp_path, tables):
    exposure, organisms = tables
    out = tmp_path / "out"
    code = main(["--exposure", str(exposure), "--organisms", str(organisms), "--out-dir", str(out), "--no-plots"])
    assert code == 0

    (run_dir,) = list(out.iterdir())
    assert run_dir.name.startswith("run_")
    results = pd.read_csv(run_dir / "results.csv")
    assert list(results["ID"]) == ["d1", "d2"]
    assert results.loc[0, "kin"] == pytest.approx(5.0, rel=1e-2)
    assert results.loc[1, "ke"] == pytest.approx(0.04, rel=1e-2)
    assert (run_dir / "results.xlsx").exists()


def test_main_writes_figures(tmp_path, tables):
    exposure, organisms = tables
    out = tmp_path / "out"
    assert main(["--exposure", str(exposure), "--organisms", str(organisms), "--out-dir", str(out)]) == 0
    (run_dir,) = list(out.iterdir())
    assert (run_dir / "d1_trajectory.png").exists()
    assert (run_dir / "isotk_goodness_of_fit.png").exists()


def test_main_reports_input_errors(tmp_path, tables):
    exposure, organisms = tables
    bad = pd.read_csv(organisms)
    bad.loc[bad["ID"] == "d2", "DW"] = -1.0
    bad.to_csv(organisms, index=False)
    code = main(["--exposure", str(exposure), "--organisms", str(organisms), "--out-dir", str(tmp_path / "out")])
    assert code == 1
    assert not (tmp_path / "out").exists()
