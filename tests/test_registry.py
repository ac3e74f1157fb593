import pytest

from quotagate.config import HALF_GIB
from quotagate.errors import (
    InvalidPartition,
    InvalidRuleSet,
    PartitionExists,
    PartitionNotExists,
    PartitionsEmpty,
    UnknownKey,
)
from quotagate.registry import PartitionDefinition, parse_size


@pytest.mark.parametrize(
    "value,expected",
    [
        ("10", 10),
        ("10b", 10),
        ("2kb", 2048),
        ("3MB", 3 * 1024**2),
        (" 1 gb ", 1024**3),
        ("1tb", 1024**4),
    ],
)
def test_parse_size(value, expected):
    assert parse_size(value) == expected


@pytest.mark.parametrize("value", ["", "mb", "10pb", "-1", "1.5mb"])
def test_parse_size_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_size(value)


def test_rule_set_with_every_rule():
    definition = PartitionDefinition.from_rule_set(
        "avatars", "prefix=avatars/, max-size=10mb, ensure=png+1:1"
    )
    assert definition == PartitionDefinition(
        name="avatars",
        path_prefix="avatars/",
        exact=False,
        max_size=10 * 1024**2,
        validates="png+1:1",
    )


def test_rule_set_exact_path_and_default_size():
    definition = PartitionDefinition.from_rule_set("logo", "exact=static/logo.svg,")
    assert definition.exact is True
    assert definition.path_prefix == "static/logo.svg"
    assert definition.max_size == HALF_GIB


@pytest.mark.parametrize(
    "rule_set",
    ["prefix", "prefix=a/,color=red", "prefix=a/,max-size=lots"],
)
def test_rule_set_rejects_malformed_rules(rule_set):
    with pytest.raises(InvalidRuleSet):
        PartitionDefinition.from_rule_set("p", rule_set)


def test_rule_set_requires_name():
    with pytest.raises(InvalidPartition):
        PartitionDefinition.from_rule_set("", "prefix=a/")


def test_create_partition_persists_definition(make_partition, registry):
    make_partition("images", max_size=123, validates="jpeg")
    stored = registry.get_partition("images")
    assert (stored.max_size, stored.path_prefix, stored.exact, stored.validates) == (
        123,
        "images/",
        False,
        "jpeg",
    )


def test_create_partition_rejects_duplicate_name(make_partition):
    make_partition("images")
    with pytest.raises(PartitionExists):
        make_partition("images")


@pytest.mark.parametrize(
    "definition",
    [
        PartitionDefinition(name="p", path_prefix=""),
        PartitionDefinition(name="p", path_prefix="p/", max_size=0),
        PartitionDefinition(name="p", path_prefix="p/", validates="gif"),
        PartitionDefinition(name="p", path_prefix="p/", validates="jpeg+"),
    ],
)
def test_create_partition_rejects_invalid_definitions(registry, definition):
    with pytest.raises(InvalidRuleSet):
        registry.create_partition(definition)
    assert registry.get_partition("p") is None


def test_resolve_partitions_for_key(make_partition, registry):
    make_partition("a")
    make_partition("b")
    make_partition("c")
    key = registry.create_key(["a", "b", "a"])

    assert sorted(p.name for p in registry.resolve_partitions(key)) == ["a", "b"]
    assert registry.authorize(key, "b").name == "b"
    with pytest.raises(InvalidPartition):
        registry.authorize(key, "c")


def test_unknown_key_is_rejected(registry):
    with pytest.raises(UnknownKey):
        registry.resolve_partitions("not-a-key")


def test_create_key_requires_partitions(registry):
    with pytest.raises(PartitionsEmpty):
        registry.create_key([])


def test_create_key_rejects_missing_partition(make_partition, registry):
    make_partition("a")
    with pytest.raises(InvalidPartition):
        registry.create_key(["a", "missing"])


def test_delete_key(make_partition, registry):
    make_partition("a")
    key = registry.create_key(["a"])
    registry.delete_key(key)
    registry.delete_key(key)
    with pytest.raises(UnknownKey):
        registry.resolve_partitions(key)


def test_delete_partition_strips_key_grants(make_partition, registry):
    make_partition("a")
    key = registry.create_key(["a"])
    registry.delete_partition("a")
    assert registry.get_partition("a") is None
    # A key with no partitions left is indistinguishable from an unknown one.
    with pytest.raises(UnknownKey):
        registry.resolve_partitions(key)


def test_delete_missing_partition(registry):
    with pytest.raises(PartitionNotExists):
        registry.delete_partition("missing")


def test_file_records_outlive_partition(make_partition, registry):
    make_partition("a")
    registry.record_file("a", "a/1.png")
    registry.record_file("a", "a/1.png")
    registry.record_file("a", "a/2.png")
    registry.delete_partition("a")

    assert sorted(registry.list_files("a")) == ["a/1.png", "a/2.png"]
    registry.forget_file("a", "a/1.png")
    assert registry.list_files("a") == ["a/2.png"]
