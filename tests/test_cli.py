import json
import sys
from pathlib import Path

import pandas as pd
import pytest

from phylomatch.cli import main
from phylomatch.io import read_table, read_tree


def _write_inputs(tmp_path: Path) -> tuple[Path, Path]:
    tree = tmp_path / "anoles.nwk"
    tree.write_text(
        "(((A_cristatellus:1,A_cooki:1):1,A_gundlachi:2):1,(A_sagrei:1.5,A_ahli:1.5):1.5);\n",
        encoding="utf-8",
    )
    data = tmp_path / "anoles.csv"
    data.write_text(
        "species,ecomorph,SVL\n"
        "A_sagrei,TG,4.1\n"
        "A_cristatellus,TG,4.0\n"
        "A_cooki,TG,NA\n"
        "A_equestris,CG,5.0\n"
        "A_gundlachi,TG,3.9\n",
        encoding="utf-8",
    )
    return tree, data


def test_cli_check_reports_tree_health(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tree, _ = _write_inputs(tmp_path)
    assert main(["check", "--tree", str(tree), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["is_binary"] is True
    assert payload["is_rooted"] is True
    assert payload["is_ultrametric"] is True
    assert payload["n_tips"] == 5


def test_cli_check_flags_polytomy(tmp_path: Path) -> None:
    tree = tmp_path / "poly.nwk"
    tree.write_text("((A:1,B:1,C:1):1,D:2);\n", encoding="utf-8")
    assert main(["check", "--tree", str(tree)]) == 1


def test_cli_reconcile_writes_matched_pair(tmp_path: Path) -> None:
    tree, data = _write_inputs(tmp_path)
    out_tree = tmp_path / "out" / "tree.nwk"
    out_data = tmp_path / "out" / "data.csv"
    mismatch = tmp_path / "out" / "mismatch.json"
    manifest = tmp_path / "out" / "manifest.json"

    code = main(
        [
            "reconcile",
            "--tree",
            str(tree),
            "--data",
            str(data),
            "--key",
            "species",
            "--out-tree",
            str(out_tree),
            "--out-data",
            str(out_data),
            "--mismatch-json",
            str(mismatch),
            "--manifest",
            str(manifest),
        ]
    )
    assert code == 0

    pruned = read_tree(out_tree)
    table = read_table(out_data, "species")
    assert pruned.leaf_names() == ["A_cristatellus", "A_cooki", "A_gundlachi", "A_sagrei"]
    assert table["species"].tolist() == pruned.leaf_names()
    assert pd.isna(table.loc[1, "SVL"])

    report = json.loads(mismatch.read_text(encoding="utf-8"))
    assert report["tree_not_data"] == ["A_ahli"]
    assert report["data_not_tree"] == ["A_equestris"]

    payload = json.loads(manifest.read_text(encoding="utf-8"))
    assert payload["command"] == "reconcile"
    assert str(Path(tree)) in payload["inputs"]
    assert str(out_data) in payload["outputs"]


def test_cli_reconcile_strict_exit_code(tmp_path: Path) -> None:
    tree, data = _write_inputs(tmp_path)
    args = [
        "reconcile",
        "--tree",
        str(tree),
        "--data",
        str(data),
        "--out-tree",
        str(tmp_path / "t.nwk"),
        "--out-data",
        str(tmp_path / "d.csv"),
    ]
    # A mismatch is reported but is not a failure unless --strict is given.
    assert main(args) == 0
    assert main([*args, "--strict"]) == 1


def test_cli_reconcile_empty_intersection_is_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tree, _ = _write_inputs(tmp_path)
    data = tmp_path / "other.csv"
    data.write_text("species,SVL\nX,1\nY,2\n", encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        main(
            [
                "reconcile",
                "--tree",
                str(tree),
                "--data",
                str(data),
                "--out-tree",
                str(tmp_path / "t.nwk"),
                "--out-data",
                str(tmp_path / "d.csv"),
            ]
        )
    assert excinfo.value.code == 2
    assert "share no labels" in capsys.readouterr().err


def test_cli_complete_uses_config_columns(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _, data = _write_inputs(tmp_path)
    config = tmp_path / "phylomatch.yaml"
    config.write_text("required_columns: [SVL]\n", encoding="utf-8")
    out = tmp_path / "complete.csv"
    assert main(["complete", "--config", str(config), "--data", str(data), "--out", str(out), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["dropped_keys"] == ["A_cooki"]
    assert read_table(out, "species")["species"].tolist() == [
        "A_sagrei",
        "A_cristatellus",
        "A_equestris",
        "A_gundlachi",
    ]


def test_cli_complete_requires_columns(tmp_path: Path) -> None:
    _, data = _write_inputs(tmp_path)
    with pytest.raises(SystemExit) as excinfo:
        main(["complete", "--data", str(data), "--out", str(tmp_path / "c.csv")])
    assert excinfo.value.code == 2


def test_cli_ultrametric_repairs_and_refuses(tmp_path: Path) -> None:
    rounded = tmp_path / "rounded.nwk"
    rounded.write_text("((A:0.33333,B:0.33333):0.66667,C:0.999999);\n", encoding="utf-8")
    out = tmp_path / "fixed.nwk"
    assert main(["ultrametric", "--tree", str(rounded), "--out", str(out)]) == 0
    assert main(["check", "--tree", str(out)]) == 0

    fossil = tmp_path / "fossil.nwk"
    fossil.write_text("((A:1,B:1):1,C:0.5);\n", encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        main(
            [
                "ultrametric",
                "--tree",
                str(fossil),
                "--out",
                str(tmp_path / "never.nwk"),
                "--max-relative-spread",
                "0.001",
            ]
        )
    assert excinfo.value.code == 2
    assert not (tmp_path / "never.nwk").exists()


def test_cli_fit_runs_external_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tree, data = _write_inputs(tmp_path)
    script = "import sys, pathlib; print(len(pathlib.Path(sys.argv[1]).read_text().splitlines()) - 1)"
    code = main(
        [
            "fit",
            "--tree",
            str(tree),
            "--data",
            str(data),
            "--workdir",
            str(tmp_path / "work"),
            "--timeout",
            "60",
            "--json",
            "--",
            sys.executable,
            "-c",
            script,
            "{data}",
        ]
    )
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["fit"]["status"] == "OK"
    assert payload["fit"]["n_taxa"] == 4
    assert payload["mismatch"]["data_not_tree"] == ["A_equestris"]
