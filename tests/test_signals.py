from __future__ import annotations

from ce.schema import RetrievalContext, SignalType
from ce.signals import SignalExtractor, extract_signals


def values(signals, signal_type: SignalType) -> list[str]:
    return [signal.value for signal in signals if signal.type is signal_type]


def test_paths_errors_and_symbols_from_text() -> None:
    signals = extract_signals("fix the TypeError in src/auth.ts when `validateToken` calls parse_header()")

    assert values(signals, SignalType.PATH) == ["src/auth.ts"]
    assert values(signals, SignalType.ERROR_TOKEN) == ["TypeError"]
    assert set(values(signals, SignalType.SYMBOL)) >= {"validateToken", "parse_header"}


def test_error_codes_are_error_tokens() -> None:
    signals = extract_signals("the build fails with ENOENT and ERR_MODULE_NOT_FOUND")

    assert values(signals, SignalType.ERROR_TOKEN) == ["ENOENT", "ERR_MODULE_NOT_FOUND"]


def test_duplicates_collapse_keeping_highest_confidence() -> None:
    signals = extract_signals("`loadUser` then loadUser again")

    symbols = [signal for signal in signals if signal.type is SignalType.SYMBOL]
    assert len(symbols) == 1
    assert symbols[0].confidence == 1.0


def test_node_stack_frames_carry_zero_based_positions() -> None:
    trace = "\n".join(
        [
            "TypeError: Cannot read properties of undefined",
            "    at validateToken (src/auth.ts:42:7)",
            "    at handler (src/routes/login.ts:10:3)",
        ]
    )

    signals = SignalExtractor().extract("why does login break", RetrievalContext(error_output=trace))

    frames = [signal for signal in signals if signal.type is SignalType.STACK_FRAME]
    assert [frame.value for frame in frames] == ["validateToken", "handler"]
    assert frames[0].metadata == {
        "path": "src/auth.ts",
        "line": 41,
        "character": 6,
        "depth": 0,
        "function": "validateToken",
    }
    assert frames[1].depth == 1
    assert "TypeError" in values(signals, SignalType.ERROR_TOKEN)


def test_python_tracebacks_put_the_raising_frame_first() -> None:
    trace = "\n".join(
        [
            "Traceback (most recent call last):",
            '  File "app/main.py", line 8, in run',
            "    login()",
            '  File "app/auth.py", line 3, in login',
            "    raise ValueError('nope')",
            "ValueError: nope",
        ]
    )

    signals = extract_signals("", RetrievalContext(error_output=trace))

    frames = {signal.value: signal for signal in signals if signal.type is SignalType.STACK_FRAME}
    assert frames["login"].depth == 0
    assert frames["login"].metadata["line"] == 2
    assert frames["run"].depth == 1


def test_working_set_paths_have_lower_confidence() -> None:
    signals = extract_signals("tidy up", RetrievalContext(working_set=("src\\views\\home.tsx",)))

    working = [signal for signal in signals if signal.source == "working_set"]
    assert [signal.value for signal in working] == ["src/views/home.tsx"]
    assert working[0].confidence < 1.0


def test_abbreviations_are_not_paths() -> None:
    assert values(extract_signals("e.g. this or i.e. that"), SignalType.PATH) == []
