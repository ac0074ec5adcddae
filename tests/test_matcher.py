"""Tests for route matching."""

import random

import pytest

from proxmux.proxy.matcher import (
    match, path_matches, sort_routes, split_host, strip_prefix, strip_raw_prefix, subdomain_label,
)
from proxmux.rules.models import RouteRule, RuleKind


def rule(kind, key, target="http://127.0.0.1:3000", port=None):
    return RouteRule(kind=kind, key=key, target=target, port=port)


class TestSplitHost:

    @pytest.mark.parametrize("header,expected", [
        ("example.com", ("example.com", None)),
        ("Example.COM:8080", ("example.com", 8080)),
        ("[::1]:9000", ("::1", 9000)),
        ("[::1]", ("::1", None)),
        ("", ("", None)),
        ("host:notaport", ("host", None)),
    ])
    def test_split(self, header, expected):
        assert split_host(header) == expected


class TestPathMatching:

    def test_prefix_is_segment_aware(self):
        assert path_matches("/api", "/api")
        assert path_matches("/api", "/api/users")
        assert not path_matches("/api", "/apiary")

    def test_trailing_slash_key(self):
        assert path_matches("/static/", "/static/app.js")
        assert not path_matches("/static/", "/static")

    def test_root_key_matches_everything(self):
        assert path_matches("/", "/")
        assert path_matches("/", "/anything/at/all")

    def test_strip_prefix_never_empty(self):
        assert strip_prefix("/api", "/api") == "/"
        assert strip_prefix("/api/users", "/api") == "/users"
        assert strip_prefix("/static/app.js", "/static/") == "/app.js"

    @pytest.mark.parametrize("raw,prefix,expected", [
        ("/api/a%2Fb", "/api", "/a%2Fb"),
        ("/api/a%3Fb", "/api", "/a%3Fb"),
        ("/api", "/api", "/"),
        ("/%61pi/x", "/api", "/x"),
        ("/caf%C3%A9/menu", "/caf\u00e9", "/menu"),
        ("/other", "/api", None),
    ])
    def test_strip_raw_prefix_keeps_escapes(self, raw, prefix, expected):
        assert strip_raw_prefix(raw, prefix) == expected


class TestSubdomainMatching:

    def test_first_label_of_multi_label_host(self):
        assert subdomain_label("admin.example.com") == "admin"

    def test_single_label_host_has_no_subdomain(self):
        assert subdomain_label("localhost") is None

    def test_label_must_equal_key(self):
        rules = [rule(RuleKind.SUBDOMAIN, "admin")]
        assert match(rules, "admin.example.com", "/") is not None
        assert match(rules, "administrator.example.com", "/") is None
        assert match(rules, "ADMIN.example.com:8080", "/") is not None


class TestMatch:

    def test_domain_exact_match_ignores_port(self):
        rules = [rule(RuleKind.DOMAIN, "example.com")]
        assert match(rules, "example.com:8080", "/x") == rules[0]
        assert match(rules, "www.example.com", "/x") is None

    def test_no_match_returns_none(self):
        rules = [rule(RuleKind.PATH, "/api")]
        assert match(rules, "example.com", "/other") is None

    def test_kind_precedence(self):
        path_rule = rule(RuleKind.PATH, "/", target="http://path")
        sub_rule = rule(RuleKind.SUBDOMAIN, "app", target="http://sub")
        domain_rule = rule(RuleKind.DOMAIN, "app.example.com", target="http://domain")
        rules = sort_routes([path_rule, sub_rule, domain_rule])

        assert match(rules, "app.example.com", "/").target == "http://domain"
        assert match(rules, "app.other.com", "/").target == "http://sub"
        assert match(rules, "other.com", "/").target == "http://path"

    def test_longest_path_first(self):
        rules = sort_routes([
            rule(RuleKind.PATH, "/", target="http://root"),
            rule(RuleKind.PATH, "/api", target="http://api"),
            rule(RuleKind.PATH, "/api/v2", target="http://v2"),
        ])
        assert match(rules, "h", "/api/v2/items").target == "http://v2"
        assert match(rules, "h", "/api/v1").target == "http://api"
        assert match(rules, "h", "/index.html").target == "http://root"

    def test_port_bound_rule_precedes_unbound(self):
        unbound = rule(RuleKind.PATH, "/api", target="http://unbound")
        bound = rule(RuleKind.PATH, "/api", target="http://bound", port=8080)
        assert match(sort_routes([unbound, bound]), "h", "/api").target == "http://bound"

    def test_deterministic_regardless_of_input_order(self):
        rules = [
            rule(RuleKind.PATH, "/a", target="http://a"),
            rule(RuleKind.PATH, "/b", target="http://b"),
            rule(RuleKind.PATH, "/ab", target="http://ab"),
            rule(RuleKind.SUBDOMAIN, "x", target="http://x"),
            rule(RuleKind.DOMAIN, "x.example.com", target="http://dx"),
        ]
        expected = sort_routes(rules)
        shuffled = list(rules)
        for seed in range(10):
            random.Random(seed).shuffle(shuffled)
            assert sort_routes(shuffled) == expected
            assert match(sort_routes(shuffled), "x.example.com", "/a").target == "http://dx"

    def test_rules_are_tried_in_given_order(self):
        short = rule(RuleKind.PATH, "/", target="http://root")
        long = rule(RuleKind.PATH, "/api", target="http://api")
        assert match([short, long], "h", "/api").target == "http://root"
        assert match(sort_routes([short, long]), "h", "/api").target == "http://api"
