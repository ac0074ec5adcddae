"""Tests for deriving per-port bindings and the sniff table from a RuleSet."""

import json

from proxmux.ports.models import derive_port_bindings, derive_sniff_table
from proxmux.rules import RuleKind, parse_document


def ruleset(document):
    return parse_document(json.dumps(document))


class TestDerivePortBindings:

    def test_unbound_rules_replicate_to_every_allowed_port(self):
        bindings = derive_port_bindings(ruleset({
            "path": {"/api": "http://127.0.0.1:3000"},
            "allowed_ports": [8080, 9090],
        }))
        assert sorted(bindings) == [8080, 9090]
        assert [r.key for r in bindings[8080].routes] == ["/api"]
        assert [r.key for r in bindings[9090].routes] == ["/api"]

    def test_bound_rule_lands_only_on_its_port(self):
        bindings = derive_port_bindings(ruleset({
            "domain": {"example.com": {"target": "http://127.0.0.1:4000", "port": 9090}},
            "allowed_ports": [8080, 9090],
        }))
        assert bindings[8080].is_empty
        assert [r.key for r in bindings[9090].routes] == ["example.com"]

    def test_rule_on_disallowed_port_is_ignored(self):
        bindings = derive_port_bindings(ruleset({
            "path": {"/": {"target": "http://127.0.0.1:3000", "port": 7000}},
            "allowed_ports": [8080],
        }))
        assert list(bindings) == [8080]
        assert bindings[8080].is_empty

    def test_tcp_targets_are_not_http_routes(self):
        bindings = derive_port_bindings(ruleset({
            "subdomain": {
                "git": "tcp://127.0.0.1:22",
                "app": "http://127.0.0.1:3000",
            },
            "tcp": {"db": "tcp://127.0.0.1:5432"},
            "allowed_ports": [8080],
        }))
        routes = bindings[8080].routes
        assert [(r.kind, r.key) for r in routes] == [(RuleKind.SUBDOMAIN, "app")]

    def test_routes_are_in_matching_order(self):
        bindings = derive_port_bindings(ruleset({
            "path": {"/": "http://a", "/api": "http://b"},
            "domain": {"example.com": "http://c"},
            "allowed_ports": [8080],
        }))
        assert [r.key for r in bindings[8080].routes] == ["example.com", "/api", "/"]

    def test_no_allowed_ports_means_no_bindings(self):
        assert derive_port_bindings(ruleset({"path": {"/": "http://a"}})) == {}


class TestDeriveSniffTable:

    def test_only_tcp_subdomain_rules(self):
        table = derive_sniff_table(ruleset({
            "subdomain": {"Git": "tcp://10.0.0.5:22", "app": "http://127.0.0.1:3000"},
            "tcp": {"db": "tcp://127.0.0.1:5432"},
            "domain": {"example.com": "http://127.0.0.1:4000"},
        }))
        assert table == {"git": ("10.0.0.5", 22)}

    def test_empty_without_tcp_subdomains(self):
        assert derive_sniff_table(ruleset({"path": {"/": "http://a"}})) == {}
