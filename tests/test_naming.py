"""
Identifier derivation tests.
"""
import re

import pytest

from infrasynth.naming import (
    bicep_name,
    compact_name,
    platform_name,
    resource_token,
    scoped_name,
    screaming_snake,
    secret_name,
)

_PLATFORM_RE = re.compile(r"^[a-z][a-z0-9-]*$")


class TestPlatformName:
    def test_lowercases_and_hyphenates(self):
        assert platform_name("My_Service") == "my-service"

    def test_runs_collapse_to_one_hyphen(self):
        assert platform_name("api..v2__beta") == "api-v2-beta"

    def test_strips_edge_hyphens(self):
        assert platform_name("--web--") == "web"

    def test_leading_digit_is_prefixed(self):
        assert platform_name("2fa") == "r-2fa"

    def test_distinct_raw_names_can_collapse(self):
        assert platform_name("My-Service") == platform_name("my_service")

    @pytest.mark.parametrize("raw", ["", "___", "a" * 80, "Ünïcödé-服务", "9" * 40])
    def test_always_legal(self, raw):
        name = platform_name(raw)
        assert _PLATFORM_RE.match(name), name
        assert len(name) <= 32
        assert not name.endswith("-")

    def test_truncated_names_stay_distinct(self):
        a = platform_name("orders-processing-service-" + "a" * 20)
        b = platform_name("orders-processing-service-" + "b" * 20)
        assert a != b
        assert len(a) == len(b) == 32

    def test_deterministic(self):
        assert platform_name("x" * 50) == platform_name("x" * 50)


class TestScreamingSnake:
    def test_basic(self):
        assert screaming_snake("my-db.host") == "MY_DB_HOST"

    def test_leading_digit(self):
        assert screaming_snake("1st") == "_1ST"

    def test_empty(self):
        assert screaming_snake("") == "_"


class TestOtherIdentifiers:
    def test_bicep_name_is_camel_case(self):
        assert bicep_name("my-db") == "myDb"
        assert bicep_name("order_queue.v2") == "orderQueueV2"

    def test_bicep_name_never_starts_with_digit(self):
        assert bicep_name("2fa")[0].isalpha()

    def test_bicep_name_of_symbols_only(self):
        assert re.match(r"^r[0-9a-f]{8}$", bicep_name("--"))

    def test_secret_name(self):
        assert secret_name("ConnectionStrings__db") == "connectionstrings--db"
        assert secret_name("__").startswith("secret-")

    def test_resource_token_shape(self):
        token = resource_token("sub/dev")
        assert re.match(r"^[a-z2-7]{13}$", token)
        assert token == resource_token("sub/dev")
        assert token != resource_token("sub/prod")

    def test_scoped_name_respects_limit(self):
        name = scoped_name("kv", "a-very-long-key-vault-name", "abcdefghijklm", 24)
        assert len(name) <= 24
        assert name.startswith("kv-") and name.endswith("-abcdefghijklm")

    def test_compact_name_is_alphanumeric(self):
        name = compact_name("st", "My-Storage_Account", "abcdefghijklm")
        assert re.match(r"^[a-z0-9]+$", name)
        assert len(name) <= 24

    def test_compact_name_truncation_keeps_names_apart(self):
        a = compact_name("st", "assetsstore1", "abcdefghijklm")
        b = compact_name("st", "assetsstore2", "abcdefghijklm")
        assert a != b
        assert len(a) == len(b) == 24
        assert a.startswith("stasset")

    def test_compact_name_short_names_untouched(self):
        assert compact_name("st", "Data", "abcdefghijklm") == "stdataabcdefghijklm"
        assert compact_name("acr", "", "abcdefghijklm") == "acrabcdefghijklm"
