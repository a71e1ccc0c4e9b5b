import pytest

from app.core.errors import ValidationError
from app.features.permissions.patterns import (
    category_of,
    expand,
    is_valid_code,
    matches,
    matching_patterns,
    validate_patterns,
)


CODES = ["production.create", "production.view", "productionline.view", "inventory.view"]


@pytest.mark.parametrize("pattern,code,expected", [
    ("*", "production.create", True),
    ("*", "anything.at.all", True),
    ("production.*", "production.create", True),
    ("production.*", "production.batch.split", True),
    ("production.*", "productionline.view", False),
    ("production.*", "production", False),
    ("production.create", "production.create", True),
    ("production.create", "Production.create", False),
    ("production.create", "production.created", False),
    ("production", "production.create", False),
])
def test_matches(pattern, code, expected):
    assert matches(pattern, code) is expected


def test_expand_category_wildcard():
    assert expand(["production.*"], CODES) == {"production.create", "production.view"}


def test_expand_global_wildcard_and_exact_codes():
    assert expand(["*"], CODES) == set(CODES)
    assert expand(["inventory.view", "missing.code"], CODES) == {"inventory.view"}
    assert expand([], CODES) == set()


def test_matching_patterns_keeps_order():
    patterns = ["inventory.view", "*", "production.*", "production.create"]
    assert matching_patterns(patterns, "production.create") == ["*", "production.*", "production.create"]


def test_validate_patterns_deduplicates():
    known = set(CODES)
    assert validate_patterns(
        ["production.*", "inventory.view", "production.*", "*"], known
    ) == ["production.*", "inventory.view", "*"]


def test_validate_patterns_allows_category_without_features_yet():
    assert validate_patterns(["reports.*"], set(CODES)) == ["reports.*"]


@pytest.mark.parametrize("pattern", [
    "missing.code",
    ".*",
    "*.create",
    "production*",
    "prod*.view",
    "Production.*",
])
def test_validate_patterns_rejects(pattern):
    with pytest.raises(ValidationError):
        validate_patterns([pattern], set(CODES))


def test_code_helpers():
    assert is_valid_code("production.create")
    assert is_valid_code("reference_data.view")
    assert not is_valid_code("Production.create")
    assert not is_valid_code("production..create")
    assert category_of("production.batch.split") == "production"
    assert category_of("standalone") == "standalone"
