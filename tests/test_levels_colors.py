"""
Tests for level tables, colors and rendering helpers.

Covers:
- Level table validation and priority lookup
- Seeded colors and WCAG contrast shading
- Context prefix, plain/pretty rendering, value stringify
- LogRecord
- Stream line splitting
"""

import io
import re
import threading

import pytest

from timberline.colors import (
    RESET,
    ansi,
    contrast_ratio,
    ensure_contrast,
    hex_to_rgb,
    luminance,
    paint,
    seed_color,
    shade_color,
)
from timberline.constants import DARK_BACKGROUND, LIGHT_BACKGROUND, MIN_CONTRAST_RATIO
from timberline.errors import ConfigurationError
from timberline.formatters import (
    Context,
    build_context,
    format_timestamp,
    join_message,
    render_plain,
    render_pretty,
    stringify,
)
from timberline.levels import (
    DEFAULT_LEVELS,
    LOG_ALIAS,
    dump_levels,
    level_names,
    priority_table,
    resolve_level,
    validate_levels,
)
from timberline.records import LogRecord
from timberline.streams import follow, iter_lines


# ═══════════════════════════════════════════════════════════════════
#  Levels
# ═══════════════════════════════════════════════════════════════════

class TestLevels:
    def test_default_table_validates(self):
        table = validate_levels(DEFAULT_LEVELS)
        assert list(table) == ["error", "warn", "info", "verbose", "debug", "silly"]
        assert table["error"].priority == 0
        assert table["silly"].color == "#808080"

    def test_priority_table_has_log_alias(self):
        priority = priority_table(validate_levels(DEFAULT_LEVELS))
        assert priority[LOG_ALIAS] == priority["info"] == 2

    def test_no_alias_without_info(self):
        priority = priority_table(validate_levels({"fatal": {"priority": 0, "color": "#AA0000"}}))
        assert LOG_ALIAS not in priority

    def test_level_names_inverse(self):
        names = level_names(validate_levels(DEFAULT_LEVELS))
        assert names[0] == "error"
        assert names[4] == "debug"

    def test_dump_round_trips(self):
        table = validate_levels(DEFAULT_LEVELS)
        assert dump_levels(table) == DEFAULT_LEVELS

    def test_empty_table_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_levels({})

    def test_duplicate_priority_rejected(self):
        with pytest.raises(ConfigurationError, match="share priority"):
            validate_levels({
                "a": {"priority": 1, "color": "#000000"},
                "b": {"priority": 1, "color": "#FFFFFF"},
            })

    def test_negative_priority_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_levels({"a": {"priority": -1, "color": "#000000"}})

    def test_bad_color_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_levels({"a": {"priority": 0, "color": "red"}})

    def test_log_is_reserved(self):
        with pytest.raises(ConfigurationError):
            validate_levels({"log": {"priority": 0, "color": "#000000"}})

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_levels({"a": {"priority": 0}})


class TestResolveLevel:
    priority = priority_table(validate_levels(DEFAULT_LEVELS))

    def test_by_name(self):
        assert resolve_level(self.priority, "debug") == 4

    def test_log_alias(self):
        assert resolve_level(self.priority, "log") == 2

    def test_known_priority(self):
        assert resolve_level(self.priority, 3) == 3

    def test_unknown_name(self):
        with pytest.raises(ConfigurationError, match="Unknown log level"):
            resolve_level(self.priority, "loud")

    def test_unknown_priority(self):
        with pytest.raises(ConfigurationError):
            resolve_level(self.priority, 42)

    def test_bool_rejected(self):
        with pytest.raises(ConfigurationError):
            resolve_level(self.priority, True)


# ═══════════════════════════════════════════════════════════════════
#  Colors
# ═══════════════════════════════════════════════════════════════════

class TestColors:
    def test_seed_color_deterministic(self):
        assert seed_color("COORDINATOR") == seed_color("COORDINATOR")
        assert re.fullmatch(r"#[0-9A-F]{6}", seed_color("db"))

    def test_seed_color_varies(self):
        assert len({seed_color(name) for name in ("a", "b", "c", "d")}) > 1

    def test_hex_to_rgb(self):
        assert hex_to_rgb("#FF8000") == (255, 128, 0)

    def test_luminance_extremes(self):
        assert luminance("#000000") == 0
        assert luminance("#FFFFFF") == pytest.approx(1.0)

    def test_contrast_black_white(self):
        assert contrast_ratio(luminance("#FFFFFF"), luminance("#000000")) == pytest.approx(21.0)

    def test_shade_directions(self):
        assert shade_color("#808080", 0.5) == "#C0C0C0"
        assert shade_color("#808080", -0.5) == "#404040"

    def test_yellow_darkened_on_light_theme(self):
        color = ensure_contrast("#FFFF00", dark_theme=False)
        assert color != "#FFFF00"
        assert contrast_ratio(luminance(LIGHT_BACKGROUND), luminance(color)) >= MIN_CONTRAST_RATIO

    def test_blue_lightened_on_dark_theme(self):
        color = ensure_contrast("#0000FF", dark_theme=True)
        assert contrast_ratio(luminance(DARK_BACKGROUND), luminance(color)) >= MIN_CONTRAST_RATIO

    def test_legible_color_untouched(self):
        assert ensure_contrast("#000000", dark_theme=False) == "#000000"

    def test_shading_stops_when_not_improving(self):
        # Lightening black first moves it toward the dark background.
        assert ensure_contrast("#000000", dark_theme=True) == "#000000"

    def test_ansi_truecolor(self):
        assert ansi("#010203") == "\033[38;2;1;2;3m"
        assert paint("#010203", "x").endswith(RESET)


# ═══════════════════════════════════════════════════════════════════
#  Formatting
# ═══════════════════════════════════════════════════════════════════

OPTIONS = {"separator": "›", "timestamp": False, "prettify": "context"}


class TestFormatting:
    def test_build_context_pads(self):
        context = build_context("a", "coordinator", ("  ", ""), "#112233", "#445566")
        assert context.plain == "  a [coordinator]"
        assert "\033[38;2;17;34;51ma" in context.pretty

    def test_render_plain(self):
        context = Context(plain="db [worker 01]", pretty="")
        assert render_plain(context, OPTIONS, ("hello", 3)) == "db [worker 01] › hello 3"

    def test_render_plain_empty_message(self):
        context = Context(plain="db [coordinator]", pretty="")
        assert render_plain(context, OPTIONS, ()) == "db [coordinator] ›"

    def test_render_plain_time_stamp(self):
        context = Context(plain="db [coordinator]", pretty="")
        text = render_plain(context, {**OPTIONS, "timestamp": "time"}, ("x",))
        assert re.match(r"^\[\d{2}:\d{2}:\d{2}\] db \[coordinator\] › x$", text)

    def test_render_pretty_colors_separator(self):
        context = Context(plain="", pretty="db")
        text = render_pretty(context, OPTIONS, "#FF0000", ("boom",))
        assert paint("#FF0000", "›") in text
        assert text.endswith("boom")

    def test_render_pretty_all_paints_strings(self):
        context = Context(plain="", pretty="db")
        text = render_pretty(context, {**OPTIONS, "prettify": "all"}, "#FF0000", ("boom",))
        assert text.endswith(paint("#FF0000", "boom"))

    def test_iso_timestamp(self):
        assert "T" in format_timestamp("iso")

    def test_bad_timestamp(self):
        with pytest.raises(ValueError):
            format_timestamp("epoch")

    def test_join_message_stringifies(self):
        assert join_message(["n =", 1, None]) == "n = 1 None"

    def test_stringify_mapping_sorted(self):
        text = stringify({"b": 1, "a": True})
        lines = text.splitlines()
        assert lines[0] == "{"
        assert lines[1].strip() == "a: True"
        assert lines[2].strip() == "b: 1"
        assert lines[-1] == "}"

    def test_stringify_empty(self):
        assert stringify([]) == "[]"

    def test_stringify_pretty_scalars(self):
        assert stringify(5, prettify=True) != "5"
        assert stringify(5) == "5"


# ═══════════════════════════════════════════════════════════════════
#  LogRecord
# ═══════════════════════════════════════════════════════════════════

class TestLogRecord:
    def test_create(self):
        record = LogRecord.create(
            level="info", priority=2, logger="db", side="worker",
            worker_id=3, message="hi", text="db [worker 03] › hi",
        )
        assert record.timestamp.tzinfo is not None
        assert record.pretty is False

    def test_immutable(self):
        record = LogRecord.create("info", 2, "db", "coordinator", None, "hi", "hi")
        with pytest.raises(AttributeError):
            record.message = "changed"


# ═══════════════════════════════════════════════════════════════════
#  Streams
# ═══════════════════════════════════════════════════════════════════

class TestStreams:
    def test_text_lines(self):
        assert list(iter_lines(io.StringIO("a\nb\r\nc"))) == ["a", "b", "c"]

    def test_byte_lines(self):
        assert list(iter_lines(io.BytesIO("é\nx\n".encode()))) == ["é", "x"]

    def test_follow_runs_in_thread(self):
        lines = []
        thread = follow(io.StringIO("one\ntwo\n"), lines.append)
        assert isinstance(thread, threading.Thread)
        thread.join(timeout=5)
        assert lines == ["one", "two"]
