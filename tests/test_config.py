import pytest

from dynevents.config import RegistryConfig, load_config
from dynevents.schema import FallbackPolicy, SchemaError
from tests.helpers import write_json


def test_defaults():
    config = RegistryConfig()

    assert config.debug_mode is False
    assert config.max_actions_per_evaluation == 10
    assert config.default_fallback is FallbackPolicy.SKIP
    assert config.max_evaluation_ms == 5000
    assert config.cache_ttl_seconds == 60
    assert config.batch_deadline_seconds is None


def test_load_config_parses_settings(tmp_path):
    path = write_json(
        tmp_path,
        {"debug_mode": True, "max_actions_per_evaluation": 3, "default_fallback": "NOTIFY_USER", "batch_deadline_seconds": 2},
        "config.json",
    )

    config = load_config(path)

    assert config.debug_mode is True
    assert config.max_actions_per_evaluation == 3
    assert config.default_fallback is FallbackPolicy.NOTIFY_USER
    assert config.batch_deadline_seconds == 2.0


@pytest.mark.parametrize(
    ("data", "message"),
    [
        ({"verbose": True}, r"config\.verbose: unknown setting"),
        ({"debug_mode": "yes"}, r"config\.debug_mode: expected boolean"),
        ({"max_actions_per_evaluation": 0}, r"config\.max_actions_per_evaluation: must be >= 1"),
        ({"max_actions_per_evaluation": 2.5}, r"config\.max_actions_per_evaluation: expected integer"),
        ({"max_evaluation_ms": -5}, r"config\.max_evaluation_ms: must be > 0"),
        ({"default_fallback": "RETRY"}, r"config\.default_fallback: must be one of"),
    ],
)
def test_from_dict_rejects_bad_settings(data, message):
    with pytest.raises(SchemaError, match=message):
        RegistryConfig.from_dict(data)


def test_load_config_rejects_non_object_root(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(SchemaError, match="config: root must be a JSON object"):
        load_config(path)


def test_with_changes_returns_new_config():
    config = RegistryConfig()
    changed = config.with_changes(max_workers=4, cache_ttl_seconds=5)

    assert changed.max_workers == 4
    assert changed.cache_ttl_seconds == 5.0
    assert config.max_workers is None
