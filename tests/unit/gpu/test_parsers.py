"""Unit tests for the nvidia-smi line parsers."""

import pytest

from smi2mqtt.gpu.parsers import (
    is_valid_gpu_uuid,
    parse_device_line,
    parse_int,
    parse_poll_line,
    parse_stream_line,
)
from smi2mqtt.gpu.types import Device, PollSample, StreamSample
from tests.infrastructure.mocks.source_mocks import dmon_line


class TestParseInt:
    """Test the shared lenient integer parser."""

    @pytest.mark.parametrize("text,expected", [
        ("42", 42),
        ("  7 ", 7),
        ("-3", -3),
        ("+5", 5),
        ("0", 0),
    ])
    def test_valid_values(self, text, expected):
        assert parse_int(text) == expected

    @pytest.mark.parametrize("text", ["-", " - ", "", "N/A", "1.5", "12W", "[N/A]"])
    def test_unparseable_values_become_zero(self, text):
        assert parse_int(text) == 0

    def test_none_is_zero(self):
        assert parse_int(None) == 0


class TestParseStreamLine:
    """Test dmon row parsing."""

    def test_full_row(self):
        line = "0, 85, 62, -, 97, 45, 0, 0, 0, 0, 9501, 1905, 0, 0, 10240, 5, 0, 0, 0, 120, 4000, 300"

        sample = parse_stream_line(line)

        assert sample.id == 0
        assert sample.pwr == 85
        assert sample.gtemp == 62
        assert sample.mtemp == 0
        assert sample.sm == 97
        assert sample.mem == 45
        assert sample.mclk == 9501
        assert sample.pclk == 1905
        assert sample.fb == 10240
        assert sample.bar1 == 5
        assert sample.pci == 120
        assert sample.rxpci == 4000
        assert sample.txpci == 300

    def test_fields_are_trimmed(self):
        sample = parse_stream_line(dmon_line(pwr=55, gtemp=40).replace(", ", " ,  "))

        assert sample.pwr == 55
        assert sample.gtemp == 40

    def test_placeholders_are_zero(self):
        assert parse_stream_line(dmon_line()) == StreamSample()

    @pytest.mark.parametrize("line", [
        "",
        "garbage",
        "0, 85, 62",
        dmon_line(pwr=10) + ", 99",
        "# gpu   pwr gtemp mtemp",
    ])
    def test_wrong_field_count_yields_zero_sample(self, line):
        assert parse_stream_line(line) == StreamSample()

    def test_garbage_field_is_zero_but_others_parse(self):
        line = dmon_line(pwr=120, sm=30).replace("120", "abc")

        sample = parse_stream_line(line)

        assert sample.pwr == 0
        assert sample.sm == 30


class TestParsePollLine:
    """Test query-gpu line parsing."""

    def test_valid_line(self):
        sample = parse_poll_line(" 45, 1024, 7168, 550.54.14, 30, P2 \n")

        assert sample == PollSample(
            utilgpu=45,
            memused=1024,
            memfree=7168,
            drivver="550.54.14",
            fanspe=30,
            pstat="P2",
        )

    def test_not_supported_fan_is_zero(self):
        sample = parse_poll_line("0, 1, 2, 535.10, [N/A], P8")

        assert sample.fanspe == 0
        assert sample.pstat == "P8"

    @pytest.mark.parametrize("line", ["", "45, 1024", "1, 2, 3, 4, 5, 6, 7"])
    def test_wrong_field_count_yields_zero_sample(self, line):
        assert parse_poll_line(line) == PollSample()


class TestGpuUuid:
    """Test GPU UUID validation."""

    @pytest.mark.parametrize("uuid", [
        "GPU-00000000-0000-0000-0000-000000000000",
        "GPU-abcdef01-2345-6789-ABCD-ef0123456789",
    ])
    def test_valid(self, uuid):
        assert is_valid_gpu_uuid(uuid)

    @pytest.mark.parametrize("uuid", [
        "",
        "GPU-1234",
        "00000000-0000-0000-0000-000000000000",
        "GPU-00000000-0000-0000-0000-00000000000g",
        "GPU-00000000-0000-0000-0000-000000000000; rm -rf /",
        "MIG-00000000-0000-0000-0000-000000000000",
    ])
    def test_invalid(self, uuid):
        assert not is_valid_gpu_uuid(uuid)


class TestParseDeviceLine:
    """Test discovery row parsing."""

    def test_valid(self):
        device = parse_device_line("1, NVIDIA RTX A4000, GPU-11111111-2222-3333-4444-555555555555")

        assert device == Device(1, "NVIDIA RTX A4000", "GPU-11111111-2222-3333-4444-555555555555")

    @pytest.mark.parametrize("line", ["", "0, name", "x, name, GPU-1", "0, a, b, c"])
    def test_malformed(self, line):
        assert parse_device_line(line) is None
