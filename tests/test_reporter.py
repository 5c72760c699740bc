import errno

from cpcp.reporter import LineSink, Reporter, format_error


def test_format_error_uses_path_and_os_message() -> None:
    exc = FileNotFoundError(errno.ENOENT, "No such file or directory", "/x/missing")

    assert format_error("/x/missing", exc) == "/x/missing: No such file or directory"


def test_format_error_falls_back_for_empty_messages() -> None:
    assert format_error("p", RuntimeError()) == "p: unknown error"
    assert format_error("", RuntimeError("boom")) == "boom"


def test_line_sink_emits_in_receipt_order() -> None:
    received: list[str] = []
    sink = LineSink("messages", received.append, capacity=2)
    sink.start()

    for index in range(10):
        sink.put(f"line {index}")
    sink.close()

    assert received == [f"line {index}" for index in range(10)]
    assert sink.count == 0


def test_reporter_counts_only_errors() -> None:
    messages: list[str] = []
    errors: list[str] = []
    reporter = Reporter(emit_message=messages.append, emit_error=errors.append)
    reporter.start()

    reporter.message("a -> b")
    reporter.error("a: broken")
    reporter.error("c: broken")
    total = reporter.close()

    assert total == 2
    assert reporter.error_count == 2
    assert messages == ["a -> b"]
    assert errors == ["a: broken", "c: broken"]


def test_reporter_close_is_idempotent() -> None:
    reporter = Reporter(emit_message=lambda line: None, emit_error=lambda line: None)
    reporter.start()
    reporter.error("x")

    assert reporter.close() == 1
    assert reporter.close() == 1
