from unittest.mock import MagicMock, patch

import pytest

import main
from pipeline import EXIT_PARTIAL, EXIT_STARTUP


@pytest.fixture(autouse=True)
def no_dotenv():
    with patch("main.load_dotenv"):
        yield


def test_parse_args_defaults() -> None:
    args = main.parse_args(["-q", "python"])

    assert args.query == "python"
    assert args.lang == "en"
    assert args.count == 15
    assert args.result_type == "mixed"
    assert args.max_id == 0
    assert args.output == main.CSV_OUTPUT_PATH


def test_parse_args_reads_credentials_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TWITTER_CONSUMER_KEY", "env-key")
    monkeypatch.setenv("TWITTER_CONSUMER_SECRET", "env-secret")

    args = main.parse_args(["-q", "python"])

    assert (args.token, args.secret) == ("env-key", "env-secret")


@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["-q", "x" * 501],
        ["-q", "python", "--lang", "eng"],
    ],
)
def test_fatal_input_aborts_before_pipeline(argv: list[str]) -> None:
    with patch("main.run_pipeline") as run_pipeline:
        assert main.main(argv) == EXIT_STARTUP

    run_pipeline.assert_not_called()


def test_main_runs_pipeline_with_validated_query(tmp_path) -> None:
    output = tmp_path / "out.csv"
    result = MagicMock(exit_code=EXIT_PARTIAL)

    with patch("main.run_pipeline", return_value=result) as run_pipeline:
        code = main.main([
            "-q", "python",
            "--count", "150",
            "--result_type", "BOGUS",
            "--until", "not-a-date",
            "--token", "ck",
            "--secret", "cs",
            "--output", str(output),
        ])

    assert code == EXIT_PARTIAL
    query, auth = run_pipeline.call_args.args
    assert query.count == 15
    assert query.result_type == "mixed"
    assert query.until is None
    assert auth.client.client_key == "ck"
    assert run_pipeline.call_args.kwargs["output_path"] == str(output)
