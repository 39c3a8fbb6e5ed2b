"""Unit tests for container helper functions."""

from datetime import datetime, timedelta, timezone

import pytest

from codeforge.services.container.utils import (
    backoff_delays,
    iter_json_lines,
    maybe_await,
    parse_docker_timestamp,
    parse_labels,
)


class TestParseDockerTimestamp:
    def test_ps_format(self):
        parsed = parse_docker_timestamp("2024-05-01 10:00:00 +0000 UTC")
        assert parsed == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_ps_format_with_offset(self):
        parsed = parse_docker_timestamp("2024-05-01 12:30:00 +0200 CEST")
        assert parsed.utcoffset() == timedelta(hours=2)
        assert parsed.astimezone(timezone.utc).hour == 10

    def test_inspect_nanoseconds(self):
        parsed = parse_docker_timestamp("2024-05-01T10:00:00.123456789Z")
        assert parsed == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)

    def test_inspect_short_fraction_with_offset(self):
        parsed = parse_docker_timestamp("2024-05-01T10:00:00.5+00:00")
        assert parsed.microsecond == 500000
        assert parsed.utcoffset() == timedelta(0)

    def test_inspect_without_fraction(self):
        parsed = parse_docker_timestamp("2024-05-01T10:00:00Z")
        assert parsed.year == 2024

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_unparseable_falls_back_to_now(self, value):
        before = datetime.now(timezone.utc)
        assert parse_docker_timestamp(value) >= before


class TestHelpers:
    def test_backoff_delays(self):
        assert list(backoff_delays(3, 1.0)) == [0.0, 1.5, 2.25]

    def test_parse_labels_text(self):
        labels = parse_labels("codeforge.type=terminal,maintainer=dev")
        assert labels == {"codeforge.type": "terminal", "maintainer": "dev"}

    def test_parse_labels_dict(self):
        assert parse_labels({"a": 1}) == {"a": "1"}

    def test_iter_json_lines_skips_noise(self):
        rows = list(iter_json_lines('{"ID": "abc"}\nWARNING: something\n\n{"ID": "def"}\n'))
        assert [r["ID"] for r in rows] == ["abc", "def"]

    @pytest.mark.asyncio
    async def test_maybe_await(self):
        async def coro():
            return 2

        assert await maybe_await(1) == 1
        assert await maybe_await(coro()) == 2
