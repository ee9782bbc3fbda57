"""Tests for the epispread command line."""

import numpy as np
import pandas as pd
import pytest
import yaml

from epispread.cli import build_parser, main


def _write_hosts(path, n=25, seed=0):
    rng = np.random.default_rng(seed)
    lines = ["x y class"]
    for i in range(n):
        lines.append(f"{rng.uniform(0, 3):.4f} {rng.uniform(0, 3):.4f} {1 + i % 2}")
    path.write_text("\n".join(lines) + "\n")


def _write_config(tmp_path, **sections):
    hosts = tmp_path / "hosts.txt"
    _write_hosts(hosts)
    data = {
        'simulation': {'n_iterations': 3, 'seed': 11, 'max_generation': 2},
        'transmission': {'theta_one': 1.5, 'theta_two': 1.0, 'rho_one': 1.0, 'rho_two': 1.0},
        'population': {'host_file': str(hosts)},
        'output': {'out_file': str(tmp_path / "out" / "epi.csv")},
    }
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    path = tmp_path / "run.yaml"
    with open(path, 'w') as f:
        yaml.dump(data, f)
    return path


class TestParser:
    def test_overrides_and_flags(self):
        args = build_parser().parse_args(["run.yaml", "maxGen=4", "kernel.scale=2", "--workers", "3"])
        assert args.config == "run.yaml"
        assert args.overrides == ["maxGen=4", "kernel.scale=2"]
        assert args.workers == 3
        assert not args.profile


class TestMain:
    def test_generation_run(self, tmp_path):
        config = _write_config(tmp_path)
        assert main([str(config)]) == 0
        table = pd.read_csv(tmp_path / "out" / "epi.csv")
        assert list(table['<it>']) == [0, 1, 2]
        assert list(table.columns[1:]) == ['I_1(0)', 'I_2(0)', 'I_1(1)', 'I_2(1)', 'I_1(2)', 'I_2(2)']
        assert (tmp_path / "out" / "epi_param.csv").exists()

    def test_same_seed_same_output(self, tmp_path):
        config = _write_config(tmp_path)
        assert main([str(config), "--workers", "2"]) == 0
        parallel = (tmp_path / "out" / "epi.csv").read_text()
        assert main([str(config)]) == 0
        assert (tmp_path / "out" / "epi.csv").read_text() == parallel

    def test_legacy_overrides(self, tmp_path):
        config = _write_config(tmp_path)
        assert main([str(config), "maxGen=0", "modelType=2", "dumpHostStatus=1"]) == 0
        table = pd.read_csv(tmp_path / "out" / "epi.csv")
        # only seed infections at generation 0
        assert (table['I_1(0)'] == 1).all() and (table['I_2(0)'] == 1).all()
        assert (tmp_path / "out" / "epi_it=0.csv").exists()

    def test_time_course_with_profile(self, tmp_path, capsys):
        config = _write_config(tmp_path, simulation={'max_time': 2.0},
                               output={'dump_type': 'times', 'n_time_steps': 10})
        assert main([str(config), "--profile", "--check-rates", "5"]) == 0
        table = pd.read_csv(tmp_path / "out" / "epi.csv")
        assert len(table) == 3 * 11
        assert "event_loop" in capsys.readouterr().out

    def test_plots(self, tmp_path):
        config = _write_config(tmp_path, simulation={'max_time': 2.0})
        figures = tmp_path / "figures"
        assert main([str(config), "--plots", str(figures)]) == 0
        assert (figures / "generations.png").exists()
        assert (figures / "time_course.png").exists()
        assert (figures / "host_map_it0.png").exists()

    def test_missing_host_file(self, tmp_path):
        config = tmp_path / "run.yaml"
        config.write_text("simulation:\n  n_iterations: 1\n")
        assert main([str(config)]) == 1

    def test_missing_config(self, tmp_path):
        assert main([str(tmp_path / "absent.yaml")]) == 1

    def test_bad_override(self, tmp_path):
        config = _write_config(tmp_path)
        assert main([str(config), "dispA=-1"]) == 1
        assert main([str(config), "noSuchKey=3"]) == 1

    def test_too_many_seeds(self, tmp_path):
        config = _write_config(tmp_path, transmission={'init_one': 100})
        assert main([str(config)]) == 1
