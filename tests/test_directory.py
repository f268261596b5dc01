from __future__ import annotations

import uuid
from types import SimpleNamespace

import pytest

from billing_access.domain.directory import TenantDirectory, normalize_host


@pytest.fixture
def directory(world) -> TenantDirectory:
    return TenantDirectory(world.tenants)


def test_each_host_resolves_to_one_tenant(world, directory):
    assert directory.resolve_tenant_by_host("aiken.dev-1.example.com") == world.aiken.tenant_id
    assert directory.resolve_tenant_by_host("aiken.uat-1.example.com") == world.aiken.tenant_id
    assert directory.resolve_tenant_by_host("demo.dev-1.example.com") == world.demo.tenant_id


def test_unknown_host_is_not_an_error(directory):
    assert directory.resolve_tenant_by_host("unknown.example.com") is None
    assert directory.resolve_tenant_by_host("") is None
    assert directory.resolve_tenant_by_host(None) is None


def test_no_subdomain_or_wildcard_matching(directory):
    assert directory.resolve_tenant_by_host("www.aiken.dev-1.example.com") is None
    assert directory.resolve_tenant_by_host("dev-1.example.com") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Aiken.Dev-1.Example.com", "aiken.dev-1.example.com"),
        ("aiken.dev-1.example.com:8443", "aiken.dev-1.example.com"),
        ("aiken.dev-1.example.com.", "aiken.dev-1.example.com"),
        ("[::1]:8000", "::1"),
        ("  ", None),
    ],
)
def test_normalize_host(raw, expected):
    assert normalize_host(raw) == expected


def test_resolve_current_tenant_uses_host_header(world, directory):
    request = SimpleNamespace(headers={"host": "AIKEN.uat-1.example.com:443"})
    tenant = directory.resolve_current_tenant(request)
    assert tenant is not None
    assert tenant.name == "Aiken"


def test_resolve_current_tenant_falls_back_to_url(world, directory):
    request = SimpleNamespace(headers={}, url=SimpleNamespace(hostname="demo.dev-1.example.com"))
    assert directory.resolve_current_tenant(request).tenant_id == world.demo.tenant_id


def test_disabled_tenant_does_not_resolve(world, directory):
    world.aiken.disabled = True
    request = SimpleNamespace(headers={"host": "aiken.dev-1.example.com"})
    assert directory.resolve_current_tenant(request) is None
    assert directory.resolve_tenant_by_id(world.aiken.tenant_id) is None


def test_explicit_tenant_id_wins_over_host(world, directory):
    request = SimpleNamespace(headers={"host": "aiken.dev-1.example.com"})
    assert directory.resolve_acting_tenant(request, world.demo.tenant_id).name == "Demo"
    assert directory.resolve_acting_tenant(request).name == "Aiken"
    assert directory.resolve_acting_tenant(request, uuid.uuid4()) is None


def test_list_hosts(world, directory):
    assert directory.list_hosts(world.aiken.tenant_id) == [
        "aiken.dev-1.example.com",
        "aiken.uat-1.example.com",
    ]
