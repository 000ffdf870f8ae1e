"""
Tests for template rendering, execution logs, step helpers, locks and timezone utilities.
"""
import random
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from cadence.database import _engine_options
from cadence.schemas.execution_log import (
    Branched,
    Deferred,
    Sent,
    append_log,
    extended_logs,
    last_log_entry,
    parse_logs,
)
from cadence.services.steps import add_delay, evaluate_condition
from cadence.utils.locks import LockTimeoutError, campaign_lock, campaign_lock_key
from cadence.utils.redis import write_heartbeat
from cadence.utils.templates import SafeDict, render_message, resolve_spintax
from cadence.utils.timezone import as_utc, get_zoneinfo

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


class TestTemplates:
    def test_variables(self):
        lead = SimpleNamespace(name="Ana Souza", company="Acme", email=None, phone="+1512")
        assert render_message("Hi {first_name} from {company}", lead) == "Hi Ana from Acme"
        assert render_message("{name} / {email}", lead) == "Ana Souza / "

    def test_unknown_placeholder_kept(self):
        lead = SimpleNamespace(name="Ana")
        assert render_message("Hi {first_name}, code {promo}", lead) == "Hi Ana, code {promo}"

    def test_missing_name(self):
        assert render_message("Hi {first_name}!", SimpleNamespace(name=None)) == "Hi !"

    def test_spintax_first_option_without_humanize(self):
        assert resolve_spintax("{Hi|Hello|Hey} there", humanize=False) == "Hi there"

    def test_spintax_random_with_humanize(self):
        rng = random.Random(3)
        seen = {resolve_spintax("{Hi|Hello|Hey}", humanize=True, rng=rng) for _ in range(50)}
        assert seen == {"Hi", "Hello", "Hey"}

    def test_nested_spintax(self):
        assert resolve_spintax("{Hi {there|friend}|Hello}", humanize=False) == "Hi there"

    def test_spintax_then_variables(self):
        lead = SimpleNamespace(name="Ana Souza")
        assert render_message("{Hi|Hello} {first_name}", lead) == "Hi Ana"

    def test_stray_brace_does_not_raise(self):
        lead = SimpleNamespace(name="Ana")
        assert render_message("Price: {", lead) == "Price: {"

    def test_safe_dict(self):
        assert "{x}".format_map(SafeDict()) == "{x}"


class TestExecutionLog:
    def test_entries_serialize_to_json(self):
        step_id = uuid.uuid4()
        [entry] = extended_logs([], Sent(timestamp=NOW, step_id=step_id, channel="sms", external_id="SM1"))
        assert entry == {
            "timestamp": "2026-03-02T10:00:00Z",
            "step_id": str(step_id),
            "kind": "sent",
            "channel": "sms",
            "external_id": "SM1",
        }

    def test_extended_logs_leaves_input(self):
        existing = [{"kind": "completed", "timestamp": "2026-03-02T10:00:00Z"}]
        extended = extended_logs(existing, Branched(timestamp=NOW, outcome=True, to_step_index=2))
        assert len(existing) == 1
        assert len(extended) == 2

    def test_append_reassigns(self):
        enrollment = SimpleNamespace(execution_logs=None)
        append_log(enrollment, Deferred(timestamp=NOW, reason="throughput", until=NOW + timedelta(minutes=10)))
        assert enrollment.execution_logs[0]["reason"] == "throughput"

    def test_parse_round_trip_kinds(self):
        raw = extended_logs(
            None,
            Sent(timestamp=NOW, channel="email"),
            Branched(timestamp=NOW, outcome=False),
        )
        parsed = parse_logs(raw)
        assert isinstance(parsed[0], Sent)
        assert isinstance(parsed[1], Branched)

    def test_parse_rejects_unknown_kind(self):
        with pytest.raises(ValidationError):
            parse_logs([{"kind": "exploded", "timestamp": "2026-03-02T10:00:00Z"}])

    def test_last_entry(self):
        assert last_log_entry([]) is None
        assert last_log_entry(None) is None
        assert last_log_entry([{"kind": "sent"}, {"kind": "completed"}]) == {"kind": "completed"}


class TestAddDelay:
    @pytest.mark.parametrize("config,expected", [
        ({"value": 30, "unit": "minutes"}, NOW + timedelta(minutes=30)),
        ({"value": 2, "unit": "hours"}, NOW + timedelta(hours=2)),
        ({"value": 3, "unit": "days"}, NOW + timedelta(days=3)),
        ({"value": 1, "unit": "weeks"}, NOW + timedelta(weeks=1)),
        (None, NOW + timedelta(days=1)),
        ({"value": 2, "unit": "fortnights"}, NOW + timedelta(days=2)),
        ({"value": "soon", "unit": "hours"}, NOW + timedelta(hours=1)),
    ])
    def test_units(self, config, expected):
        assert add_delay(NOW, config) == expected

    def test_months_are_calendar_months(self):
        end_of_january = datetime(2026, 1, 31, 9, 0, tzinfo=timezone.utc)
        assert add_delay(end_of_january, {"value": 1, "unit": "months"}) == datetime(
            2026, 2, 28, 9, 0, tzinfo=timezone.utc,
        )


class TestEvaluateCondition:
    def _lead(self, **fields):
        data = {"status": "qualified", "score": 70, "tags": ["vip"], "email": None}
        data.update(fields)
        return SimpleNamespace(**data)

    def _enrollment(self, sent: int = 0):
        return SimpleNamespace(execution_logs=[{"kind": "sent"}] * sent + [{"kind": "waiting"}])

    @pytest.mark.parametrize("config,expected", [
        ({"field": "status", "operator": "eq", "value": "qualified"}, True),
        ({"field": "lead.status", "operator": "neq", "value": "qualified"}, False),
        ({"field": "score", "operator": "gte", "value": 70}, True),
        ({"field": "score", "operator": "gt", "value": 70}, False),
        ({"field": "score", "operator": "lt", "value": 80}, True),
        ({"field": "status", "operator": "in", "value": ["won", "qualified"]}, True),
        ({"field": "status", "operator": "not_in", "value": ["won"]}, True),
        ({"field": "tags", "operator": "contains", "value": "vip"}, True),
        ({"field": "email", "operator": "exists"}, False),
        ({"field": "email", "operator": "not_exists"}, True),
    ])
    def test_operators(self, config, expected):
        assert evaluate_condition(config, self._lead(), self._enrollment()) is expected

    def test_messages_sent_counts_log(self):
        config = {"field": "messages_sent", "operator": "gte", "value": 2}
        assert evaluate_condition(config, self._lead(), self._enrollment(sent=2)) is True
        assert evaluate_condition(config, self._lead(), self._enrollment(sent=1)) is False

    def test_none_never_satisfies_ordering(self):
        config = {"field": "score", "operator": "lt", "value": 50}
        assert evaluate_condition(config, self._lead(score=None), self._enrollment()) is False

    def test_malformed_config_is_false(self):
        assert evaluate_condition(None, self._lead(), self._enrollment()) is False
        assert evaluate_condition({"field": "status", "operator": "matches"}, self._lead(), self._enrollment()) is False


class TestCampaignLock:
    async def test_acquire_and_release(self, mock_redis):
        campaign_id = str(uuid.uuid4())
        async with campaign_lock(campaign_id):
            pass
        key = f"cadence:lock:campaign:{campaign_id}"
        assert mock_redis.set.call_args.args[0] == key
        assert mock_redis.set.call_args.kwargs == {"nx": True, "ex": 60}
        assert mock_redis.eval.call_args.args[2] == key

    async def test_accepts_uuid(self, mock_redis):
        campaign_id = uuid.uuid4()
        async with campaign_lock(campaign_id):
            pass
        assert mock_redis.set.call_args.args[0] == campaign_lock_key(campaign_id)

    async def test_timeout(self, mock_redis):
        mock_redis.set.return_value = False
        campaign_id = str(uuid.uuid4())
        with pytest.raises(LockTimeoutError) as exc_info:
            async with campaign_lock(campaign_id, wait=0.2):
                pass
        assert exc_info.value.campaign_id == campaign_id
        assert mock_redis.set.await_count >= 2
        mock_redis.eval.assert_not_called()

    async def test_redis_outage_proceeds(self):
        entered = False
        with patch("cadence.utils.redis.get_redis", side_effect=ConnectionError("redis down")):
            async with campaign_lock(str(uuid.uuid4())):
                entered = True
        assert entered

    async def test_heartbeat_never_raises(self):
        with patch("cadence.utils.redis.get_redis", side_effect=ConnectionError("redis down")):
            await write_heartbeat("sequence_runner", 300)

    async def test_heartbeat_key(self, mock_redis):
        await write_heartbeat("sequence_runner", 300)
        assert mock_redis.set.call_args.args[0] == "cadence:worker_health:sequence_runner"
        assert mock_redis.set.call_args.kwargs == {"ex": 300}


class TestTimezone:
    def test_as_utc(self):
        assert as_utc(None) is None
        assert as_utc("2026-03-02") is None
        assert as_utc(datetime(2026, 3, 2, 10, 0)) == NOW
        eastern = datetime(2026, 3, 2, 5, 0, tzinfo=get_zoneinfo("America/New_York"))
        assert as_utc(eastern) == NOW

    def test_invalid_zone_falls_back(self):
        assert str(get_zoneinfo("Mars/Olympus_Mons")) == "America/Chicago"
        assert str(get_zoneinfo(None)) == "America/Chicago"


class TestEngineOptions:
    def _settings(self, url: str, env: str = "production"):
        return SimpleNamespace(
            database_url=url, app_env=env, database_pool_size=20, database_max_overflow=10,
        )

    def test_postgres_gets_pool_sizing(self):
        options = _engine_options(self._settings("postgresql+asyncpg://u:p@db/cadence"))
        assert options == {
            "echo": False, "pool_size": 20, "max_overflow": 10, "pool_pre_ping": True,
        }

    def test_sqlite_skips_pool_sizing(self):
        options = _engine_options(self._settings("sqlite+aiosqlite:///:memory:", env="development"))
        assert options == {"echo": True}
