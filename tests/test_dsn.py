"""Tests for DSN construction, redaction and spec derivation."""

import pytest

from kubexds.dsn import (
    build_dsn,
    build_endpoint,
    engine_for_dsn,
    materialize_dsn,
    redact_dsn,
    root_config_to_start_spec,
)
from kubexds.errors import ConfigInvalid
from kubexds.logging_config import redact_credentials, resolve_level
from kubexds.schemas.stack_v1 import DBConfig, Engine, RootConfig


class TestRedaction:
    """Only the password segment is masked."""

    def test_postgres(self):
        assert (
            redact_dsn("postgres://u:secret@h:5432/db")
            == "postgres://u:***@h:5432/db"
        )

    def test_empty_user(self):
        assert redact_dsn("redis://:secret@127.0.0.1:6379") == "redis://:***@127.0.0.1:6379"

    def test_nothing_to_mask(self):
        assert redact_dsn("redis://127.0.0.1:6379") == "redis://127.0.0.1:6379"
        assert redact_dsn("not a dsn") == "not a dsn"

    @pytest.mark.parametrize(
        "dsn",
        ["redis://h:6379/0?x=a@b", "amqp://h:5672/vhost#frag@x", "mongodb://h:27017/?u=a:b@c"],
    )
    def test_at_sign_after_authority_is_left_alone(self, dsn):
        assert redact_dsn(dsn) == dsn

    def test_masks_only_up_to_first_at(self):
        assert (
            redact_dsn("redis://:pw@h:6379/0?x=a@b") == "redis://:***@h:6379/0?x=a@b"
        )

    @pytest.mark.parametrize("engine", ["postgres", "mongodb", "redis", "rabbitmq"])
    def test_generated_dsn_never_leaks(self, engine):
        db = DBConfig(
            name="svc", type=engine, port="1234", user="admin", password="p@ss:w/rd", db_name="d"
        )
        dsn = build_dsn(db)
        assert "p%40ss%3Aw%2Frd" in dsn
        assert "p%40ss" not in redact_dsn(dsn)

    def test_log_processor(self):
        event = {"event": "x", "dsn": "amqp://admin:pw@h:5672/", "count": 3}
        redacted = redact_credentials(None, "info", event)
        assert redacted["dsn"] == "amqp://admin:***@h:5672/"
        assert redacted["count"] == 3


class TestBuildDsn:
    """One DSN shape per engine."""

    def test_shapes(self):
        common = dict(host="127.0.0.1", user="u", password="p", db_name="d")
        assert (
            build_dsn(DBConfig(type="postgres", port="5432", **common))
            == "postgres://u:p@127.0.0.1:5432/d?sslmode=disable"
        )
        assert build_dsn(DBConfig(type="mongo", port="27017", **common)) == "mongodb://u:p@127.0.0.1:27017"
        assert build_dsn(DBConfig(type="redis", port="6379", **common)) == "redis://:p@127.0.0.1:6379"
        assert build_dsn(DBConfig(type="amqp", port="5672", **common)) == "amqp://u:p@127.0.0.1:5672/"
        assert build_dsn(DBConfig(type="mysql", port="3306", **common)) == ""

    def test_sslmode_option(self):
        db = DBConfig(
            type="postgres", port="5432", user="u", password="p", db_name="d",
            options={"sslmode": "require"},
        )
        assert build_dsn(db).endswith("?sslmode=require")

    @pytest.mark.parametrize(
        "dsn,engine",
        [
            ("postgresql://x", Engine.POSTGRES),
            ("mongodb://x", Engine.MONGODB),
            ("rediss://x", Engine.REDIS),
            ("amqp://x", Engine.RABBITMQ),
            ("mysql://x", None),
            ("nonsense", None),
        ],
    )
    def test_engine_for_dsn(self, dsn, engine):
        assert engine_for_dsn(dsn) is engine

    def test_materialize_fills_once(self):
        db = DBConfig(name="c", type="redis", port="6379", password="p")
        assert materialize_dsn(db) == "redis://:p@127.0.0.1:6379"
        db.password = "changed"
        assert materialize_dsn(db) == "redis://:p@127.0.0.1:6379"

    def test_materialize_requires_fields(self):
        with pytest.raises(ConfigInvalid):
            materialize_dsn(DBConfig(name="c", type="redis", port="not-a-port"))

    def test_endpoint(self):
        db = DBConfig(name="c", type="redis", port="6380", password="p")
        endpoint = build_endpoint(db)
        assert endpoint.port == 6380
        assert endpoint.redacted == "redis://:***@127.0.0.1:6380"
        assert "p@" not in str(endpoint.to_dict())


class TestStartSpec:
    """RootConfig to StartSpec derivation."""

    def test_derivation(self):
        root = RootConfig.model_validate(
            {
                "databases": {
                    "main": {"type": "postgresql", "port": 5433, "pass": "pw"},
                    "cache": {"type": "redis", "port": "bogus"},
                    "legacy": {"type": "mysql", "port": "3306"},
                    "off": {"type": "mongodb", "enabled": False},
                }
            }
        )

        spec = root_config_to_start_spec(root)

        assert [(s.name, s.engine) for s in spec.services] == [
            ("main", Engine.POSTGRES),
            ("cache", Engine.REDIS),
        ]
        assert spec.preferred_port == {"main": 5433}
        assert spec.secrets == {"main_pass": "pw"}
        assert spec.labels == {"db_main": "postgresql", "db_cache": "redis"}

    def test_none_root(self):
        spec = root_config_to_start_spec(None)
        assert spec.services == [] and spec.labels == {}


class TestLogLevels:
    @pytest.mark.parametrize(
        "name,level", [("debug", 10), ("notice", 20), ("warn", 30), ("ERROR", 40), ("fatal", 50)]
    )
    def test_aliases(self, name, level):
        assert resolve_level(name) == level

    def test_unknown(self):
        with pytest.raises(ValueError):
            resolve_level("chatty")
