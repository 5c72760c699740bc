from pathlib import Path

import pytest

from cpcp.cli import EXIT_INVALID_CONFIG, VERSION, _build_parser, expand_aliases, main, parse_preserve
from cpcp.run_service import EXIT_COPY_ERRORS, EXIT_SUCCESS, EXIT_USAGE_ERROR


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_expand_aliases_rewrites_archive_in_place() -> None:
    assert expand_aliases(["-a", "src", "dst"]) == [
        "--no-dereference",
        "--preserve=links",
        "-R",
        "--preserve=all",
        "src",
        "dst",
    ]


def test_expand_aliases_splits_clustered_flags() -> None:
    assert expand_aliases(["-rv", "-dL", "-j4", "x"]) == [
        "-r",
        "-v",
        "--no-dereference",
        "--preserve=links",
        "-L",
        "-j4",
        "x",
    ]


def test_expand_aliases_stops_at_double_dash() -> None:
    assert expand_aliases(["-r", "--", "-a", "dst"]) == ["-r", "--", "-a", "dst"]


def test_last_dereference_flag_wins() -> None:
    parser = _build_parser()

    archive_then_follow = parser.parse_args(expand_aliases(["-a", "-L", "s", "d"]))
    follow_then_archive = parser.parse_args(expand_aliases(["-L", "-a", "s", "d"]))
    default = parser.parse_args(["s", "d"])

    assert archive_then_follow.dereference is True
    assert archive_then_follow.recursive is True
    assert follow_then_archive.dereference is False
    assert default.dereference is True
    assert default.recursive is False


def test_parse_preserve_lists() -> None:
    assert parse_preserve([]) == (False, False)
    assert parse_preserve(["links,"]) == (True, False)
    assert parse_preserve(["mode", ""]) == (False, True)
    assert parse_preserve(["all"]) == (True, True)
    with pytest.raises(ValueError, match='unsupported preserve specification "xattr"'):
        parse_preserve(["links,xattr"])


def test_main_copies_tree_recursively(tmp_path: Path, capsys) -> None:
    source = tmp_path / "proj"
    _write(source / "a.txt", "a")
    _write(source / "nested" / "b.txt", "b")
    destination = tmp_path / "backup"

    exit_code = main(["-r", "-v", "-j", "3", str(source), str(destination)])

    output = capsys.readouterr().out
    assert exit_code == EXIT_SUCCESS
    assert (destination / "nested" / "b.txt").read_text(encoding="utf-8") == "b"
    assert f"{source} -> {destination}" in output


def test_main_reports_error_total(tmp_path: Path, capsys) -> None:
    target_dir = tmp_path / "target"
    target_dir.mkdir()

    exit_code = main(["-j", "2", str(tmp_path / "x"), str(tmp_path / "y"), str(target_dir)])

    err = capsys.readouterr().err
    assert exit_code == EXIT_COPY_ERRORS
    assert f"cpcp: {tmp_path / 'x'}: " in err
    assert "cpcp: there were 2 errors" in err


def test_main_omits_directory_without_recursion(tmp_path: Path, capsys) -> None:
    source = tmp_path / "proj"
    _write(source / "a.txt", "a")

    exit_code = main(["-j", "2", str(source), str(tmp_path / "copy")])

    err = capsys.readouterr().err
    assert exit_code == EXIT_COPY_ERRORS
    assert f'omitting directory "{source}"' in err
    assert not (tmp_path / "copy").exists()


@pytest.mark.parametrize(
    ("argv", "message"),
    [
        ([], "nothing specified to copy"),
        (["only"], 'missing destination parameter after "only"'),
        (["--preserve", "owner", "a", "b"], "unsupported preserve specification"),
    ],
)
def test_main_usage_errors(argv: list[str], message: str, capsys) -> None:
    exit_code = main(argv)

    assert exit_code == EXIT_USAGE_ERROR
    assert message in capsys.readouterr().err


def test_main_uses_tuning_file(tmp_path: Path) -> None:
    source = tmp_path / "a.txt"
    _write(source, "a")
    tuning_file = tmp_path / "cpcp.yaml"
    tuning_file.write_text("parallelTasks: 2\ncopyBuffer: 3\n", encoding="utf-8")

    exit_code = main(["--config", str(tuning_file), str(source), str(tmp_path / "b.txt")])

    assert exit_code == EXIT_SUCCESS
    assert (tmp_path / "b.txt").read_text(encoding="utf-8") == "a"


def test_main_rejects_invalid_tuning_file(tmp_path: Path, capsys) -> None:
    tuning_file = tmp_path / "cpcp.yaml"
    tuning_file.write_text("parallelTasks: -1\n", encoding="utf-8")

    exit_code = main(["--config", str(tuning_file), "a", "b"])

    assert exit_code == EXIT_INVALID_CONFIG
    assert "Invalid config: parallelTasks must be a positive integer" in capsys.readouterr().err


def test_main_rejects_bad_parallel_value(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["-j", "0", "a", "b"])

    assert exc_info.value.code == 2
    assert "must be a positive integer" in capsys.readouterr().err


def test_version_flag_reports_package_version(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])

    assert exc_info.value.code == 0
    assert capsys.readouterr().out.strip() == f"cpcp {VERSION}"
