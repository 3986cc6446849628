"""
Tests for endpoint descriptors, parameter normalization and cache keys.
"""

import re

import pytest

from service_reflector.app.domain.endpoints import (
    EndpointCatalogue,
    EndpointDescriptor,
    ParamSpec,
    ParameterError,
    build_grepolis_catalogue,
)


@pytest.fixture
def search_endpoint():
    return EndpointDescriptor(
        name="search",
        path_template="/search",
        params=(
            ParamSpec("town", kind="int", required=True, min_value=0, max_value=1_000_000),
            ParamSpec("name", lowercase=True),
            ParamSpec("region", pattern=re.compile(r"^[A-Z]{2}$")),
        ),
    )


@pytest.fixture
def catalogue():
    return build_grepolis_catalogue({"islands": 3600}, default_ttl=900)


def test_default_catalogue_contents(catalogue):
    assert catalogue.names() == ["players", "alliances", "towns", "islands"]
    assert len(catalogue) == 4
    assert catalogue.resolve("players").path_template == "/data/players.txt"
    assert catalogue.resolve("Players.TXT") is catalogue.resolve("players")
    assert catalogue.resolve("conquers") is None


def test_catalogue_ttls(catalogue):
    assert catalogue.resolve("islands").ttl_seconds == 3600
    assert catalogue.resolve("towns").ttl_seconds == 900


def test_catalogue_rejects_duplicate_names():
    first = EndpointDescriptor(name="players", path_template="/a")
    second = EndpointDescriptor(name="other", path_template="/b", aliases=("PLAYERS",))

    with pytest.raises(ValueError):
        EndpointCatalogue([first, second])


@pytest.mark.parametrize("world", ["de123", "DE123", "en1", "zz99"])
def test_world_parameter_accepts_valid_ids(catalogue, world):
    params = catalogue.resolve("players").normalize_params([("world", world)])
    assert params == {"world": world.lower()}


@pytest.mark.parametrize("world", ["d123", "de1234", "de", "123", "de-1", "../de1"])
def test_world_parameter_rejects_invalid_ids(catalogue, world):
    with pytest.raises(ParameterError):
        catalogue.resolve("players").normalize_params([("world", world)])


def test_missing_required_parameter(catalogue):
    with pytest.raises(ParameterError, match="world"):
        catalogue.resolve("players").normalize_params([])


def test_unknown_parameter_rejected(search_endpoint):
    with pytest.raises(ParameterError, match="Unknown parameter"):
        search_endpoint.normalize_params([("town", "1"), ("callback", "x")])


def test_integer_range_checks(search_endpoint):
    assert search_endpoint.normalize_params([("town", "007")]) == {"town": 7}
    with pytest.raises(ParameterError):
        search_endpoint.normalize_params([("town", "-1")])
    with pytest.raises(ParameterError):
        search_endpoint.normalize_params([("town", "1000001")])
    with pytest.raises(ParameterError):
        search_endpoint.normalize_params([("town", "twelve")])


def test_pattern_check_is_case_sensitive_when_not_lowercased(search_endpoint):
    assert search_endpoint.normalize_params([("town", "1"), ("region", "EU")])["region"] == "EU"
    with pytest.raises(ParameterError):
        search_endpoint.normalize_params([("town", "1"), ("region", "eu")])


def test_repeated_parameter_must_agree(search_endpoint):
    assert search_endpoint.normalize_params([("town", "5"), ("TOWN", "05")]) == {"town": 5}
    with pytest.raises(ParameterError, match="Conflicting"):
        search_endpoint.normalize_params([("town", "5"), ("town", "6")])


def test_empty_value_rejected(search_endpoint):
    with pytest.raises(ParameterError):
        search_endpoint.normalize_params([("town", " ")])


def test_cache_key_ignores_order_and_casing(search_endpoint):
    first = search_endpoint.normalize_params([("town", "12"), ("name", "Sparta")])
    second = search_endpoint.normalize_params([("NAME", "sparta"), ("Town", "012")])

    assert search_endpoint.cache_key(first) == search_endpoint.cache_key(second)
    assert search_endpoint.cache_key(first) == "search?name=sparta&town=12"


def test_cache_key_distinguishes_resources(search_endpoint, catalogue):
    base = search_endpoint.cache_key(search_endpoint.normalize_params([("town", "12")]))
    other_value = search_endpoint.cache_key(search_endpoint.normalize_params([("town", "13")]))
    with_name = search_endpoint.cache_key(search_endpoint.normalize_params([("town", "12"), ("name", "x")]))

    players = catalogue.resolve("players")
    towns = catalogue.resolve("towns")
    params = players.normalize_params([("world", "de1")])

    assert len({base, other_value, with_name}) == 3
    assert players.cache_key(params) != towns.cache_key(params)


def test_cache_key_escapes_separators(search_endpoint):
    tricky = search_endpoint.cache_key(search_endpoint.normalize_params([("town", "1"), ("name", "a&town=2")]))
    plain = search_endpoint.cache_key(search_endpoint.normalize_params([("town", "1"), ("name", "a")]))

    assert tricky != plain
    assert "a%26town%3D2" in tricky


def test_path_and_query_param_split():
    descriptor = EndpointDescriptor(
        name="report",
        path_template="/data/{world}/report",
        params=(
            ParamSpec("world", required=True, location="path"),
            ParamSpec("day", kind="int"),
        ),
    )
    params = descriptor.normalize_params([("world", "de1"), ("day", "3")])

    assert descriptor.path_params(params) == {"world": "de1"}
    assert descriptor.query_params(params) == {"day": 3}


def test_catalogue_rejects_ttls_for_unknown_endpoints():
    with pytest.raises(ValueError, match="player"):
        build_grepolis_catalogue({"player": 60})
