from datetime import datetime

import pytest

from campus_platform.core.errors import ConflictError, InvalidStateError, ValidationError
from campus_platform.exams import slot_distribution as dist


class TestTimeParsing:

    def test_parse_and_format(self):
        assert dist.parse_time("09:30") == 570
        assert dist.parse_time("00:00") == 0
        assert dist.format_time(570) == "09:30"
        assert dist.format_time(dist.parse_time("17:05")) == "17:05"

    @pytest.mark.parametrize("value", ["9.30", "24:00", "12:60", "", "ab:cd", None])
    def test_malformed_times_rejected(self, value):
        with pytest.raises(ValidationError):
            dist.parse_time(value)


class TestMentorCapacity:

    def test_window_too_small_reports_numbers(self):
        with pytest.raises(InvalidStateError) as exc:
            dist.check_mentor_capacity(5, 20, 5, "09:00", "10:30")

        assert exc.value.extra == {"total_time_needed": 120, "available_time": 90}
        assert "Total time needed (120 min) exceeds available time (90 min)" in exc.value.message

    def test_exact_fit_is_accepted(self):
        assert dist.check_mentor_capacity(4, 20, 10, "09:00", "10:50") == (110, 110)

    def test_single_team_needs_no_buffer(self):
        assert dist.required_minutes(1, 30, 15) == 30


class TestRoundRobin:

    def test_seven_teams_three_mentors(self):
        teams = [f"T{i}" for i in range(7)]
        mentors = ["M0", "M1", "M2"]

        slots = dist.round_robin_slots(teams, mentors, datetime(2026, 3, 2, 14, 0), 30)

        assert len(slots) == 7
        assert [s["mentor_id"] for s in slots] == ["M0", "M1", "M2", "M0", "M1", "M2", "M0"]
        assert [s["team_id"] for s in slots] == teams
        assert [s["scheduled_time"] for s in slots] == [
            "09:00", "09:40", "10:20", "11:00", "11:40", "12:20", "13:00"
        ]
        assert all(s["scheduled_date"] == datetime(2026, 3, 2) for s in slots)
        assert len({s["slot_id"] for s in slots}) == 7

    def test_clock_rolls_to_next_day(self):
        slots = dist.round_robin_slots([f"T{i}" for i in range(9)], ["M0"], datetime(2026, 3, 2), 60)

        assert slots[7]["scheduled_time"] == "17:10"
        assert slots[7]["scheduled_date"] == datetime(2026, 3, 2)
        assert slots[8]["scheduled_time"] == "09:00"
        assert slots[8]["scheduled_date"] == datetime(2026, 3, 3)

    def test_reaching_day_end_exactly_rolls(self):
        slots = dist.round_robin_slots([f"T{i}" for i in range(10)], ["M0"], datetime(2026, 3, 2), 50)

        assert slots[8]["scheduled_time"] == "17:00"
        assert slots[9]["scheduled_time"] == "09:00"
        assert slots[9]["scheduled_date"] == datetime(2026, 3, 3)

    def test_no_mentors(self):
        with pytest.raises(InvalidStateError):
            dist.round_robin_slots(["T0"], [], datetime(2026, 3, 2), 30)


class TestMentorLayout:

    def test_back_to_back_with_buffer(self):
        slots = dist.layout_mentor_slots(["A", "B", "C"], "09:00", 20, 5)

        assert [(s["start_time"], s["end_time"]) for s in slots] == [
            ("09:00", "09:20"), ("09:25", "09:45"), ("09:50", "10:10")
        ]
        assert [s["slot_number"] for s in slots] == [1, 2, 3]
        assert all(s["status"] == "scheduled" for s in slots)


class TestScheduleViews:

    def schedule(self):
        return {
            "slots": [
                {"slot_id": "S1", "team_id": "T1", "status": "scheduled"},
                {"slot_id": "S2", "team_id": None, "status": "scheduled"},
            ],
            "mentor_schedules": [
                {"slots": [
                    {"slot_id": "S3", "team_id": "T3", "status": "completed"},
                    {"slot_id": "S4", "team_id": "T4", "status": "rescheduled"},
                ]},
            ],
        }

    def test_assigned_teams_span_both_lists(self):
        assert dist.assigned_team_ids(self.schedule()) == {"T1", "T3", "T4"}
        assert dist.assigned_team_ids(self.schedule(), exclude_slot_id="S3") == {"T1", "T4"}

    def test_ensure_team_free(self):
        schedule = self.schedule()
        dist.ensure_team_free(schedule, "T9")
        dist.ensure_team_free(schedule, "T3", exclude_slot_id="S3")
        with pytest.raises(ConflictError):
            dist.ensure_team_free(schedule, "T3")

    def test_statistics(self):
        assert dist.compute_statistics(self.schedule()) == {
            "total_slots": 4,
            "scheduled_slots": 2,
            "completed_slots": 1,
            "pending_slots": 1,
        }

    def test_statistics_of_empty_schedule(self):
        assert dist.compute_statistics({}) == {
            "total_slots": 0, "scheduled_slots": 0, "completed_slots": 0, "pending_slots": 0,
        }
