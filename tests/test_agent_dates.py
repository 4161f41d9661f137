"""
Tests for SQL Agent integer date decoding and output file tokens.
"""

from datetime import datetime

from autodbadmin.domain.agent_dates import (
    agent_datetime,
    agent_duration_seconds,
    end_date,
    format_agent_date,
    format_agent_time,
    resolve_output_file,
)


class TestAgentDates:

    def test_decode_run_date_and_time(self):
        assert agent_datetime(20240315, 93005) == datetime(2024, 3, 15, 9, 30, 5)

    def test_midnight_run_time(self):
        assert agent_datetime(20240315, 0) == datetime(2024, 3, 15)

    def test_zero_date_is_none(self):
        assert agent_datetime(0, 120000) is None
        assert agent_datetime(None, None) is None

    def test_duration_hours_can_exceed_99(self):
        assert agent_duration_seconds(1234502) == 123 * 3600 + 45 * 60 + 2

    def test_short_duration(self):
        assert agent_duration_seconds(105) == 65
        assert agent_duration_seconds(None) == 0

    def test_encode(self):
        value = datetime(2024, 3, 15, 9, 30, 5)

        assert format_agent_date(value) == 20240315
        assert format_agent_time(value) == 93005

    def test_end_date(self):
        assert end_date(datetime(2024, 1, 1, 23, 59, 0), 120) == datetime(2024, 1, 2, 0, 1, 0)
        assert end_date(None, 120) is None


class TestResolveOutputFile:

    def _resolve(self, template, **overrides):
        values = dict(
            job_id="6F9619FF-8B86-D011-B42D-00C04FC964FF",
            job_name="Nightly",
            step_id=2,
            step_name="Backup",
            start=datetime(2024, 3, 15, 9, 30, 5),
            server_name="SQL01\\INST1",
            instance_name="INST1",
            computer_name="SQL01",
        )
        values.update(overrides)
        return resolve_output_file(template, **values)

    def test_escape_macros(self):
        result = self._resolve(
            "L:\\Logs\\$(ESCAPE_SQUOTE(JOBNAME))_$(ESCAPE_SQUOTE(STEPID))_"
            "$(ESCAPE_SQUOTE(STRTDT))_$(ESCAPE_SQUOTE(STRTTM)).txt"
        )

        assert result == "L:\\Logs\\Nightly_2_20240315_93005.txt"

    def test_bare_tokens(self):
        assert self._resolve("$(MACH)-$(INST)-$(SRVR).log") == "SQL01-INST1-SQL01\\INST1.log"

    def test_bare_token_leaves_following_paren(self):
        assert self._resolve("L:\\($(JOBNAME)).txt") == "L:\\(Nightly).txt"
        assert self._resolve("$(ESCAPE_NONE(STEPID)))") == "2)"

    def test_job_id_uses_binary_guid_layout(self):
        result = self._resolve("$(ESCAPE_SQUOTE(JOBID)).txt")

        assert result == "0xFF19966F868B11D0B42D00C04FC964FF.txt"

    def test_default_instance_name(self):
        assert self._resolve("$(INST)", instance_name="") == "MSSQLSERVER"

    def test_unknown_token_kept(self):
        assert self._resolve("C:\\$(WMI(Foo))\\$(UNKNOWN).txt").endswith("$(UNKNOWN).txt")

    def test_empty_template(self):
        assert self._resolve(None) is None
        assert self._resolve("") == ""
