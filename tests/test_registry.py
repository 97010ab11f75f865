"""Tests for the provider registry and server providers."""

import threading

import pytest

from exceptions import ProviderNotFound
from providers import BUILTIN_PROVIDER_IDS, ProviderRegistry, ServerProvider
from tests.conftest import REDIRECT_URI, make_provider


class TestBuiltinProviders:
    def test_seeded_on_first_run(self, registry):
        assert {p.id for p in registry.list_providers()} == set(BUILTIN_PROVIDER_IDS)

    def test_seeding_keeps_existing_entries(self, registry):
        github = registry.get_provider("github").model_copy(update={"client_id": "mine"})
        registry.upsert(github)
        assert registry.seed_builtin_providers() == []
        assert registry.get_provider("github").client_id == "mine"

    def test_builtin_defaults(self, registry):
        google = registry.get_provider("google")
        assert google.use_pkce
        assert google.additional_params == {"access_type": "offline", "prompt": "consent"}
        assert google.redirect_uri == REDIRECT_URI
        assert not registry.get_provider("github").use_pkce
        assert "User.Read" in registry.get_provider("microsoft").scopes


class TestProviderRegistry:
    def test_get_unknown_provider(self, registry):
        assert registry.find_provider("nope") is None
        with pytest.raises(ProviderNotFound):
            registry.get_provider("nope")

    def test_list_sorted_by_name_case_insensitive(self, registry):
        registry.upsert(make_provider(id="zeta", name="zeta"))
        registry.upsert(make_provider(id="alpha", name="Alpha"))
        names = [p.name for p in registry.list_providers()]
        assert names == sorted(names, key=str.lower)
        assert names[0] == "Alpha"

    def test_list_available_requires_client_id(self, registry):
        registry.upsert(make_provider())
        registry.upsert(make_provider(id="blank", name="Blank", client_id="   "))
        available = [p.id for p in registry.list_available()]
        assert "acme" in available
        assert "blank" not in available

    def test_upsert_preserves_created_at(self, registry):
        first = registry.upsert(make_provider())
        second = registry.upsert(make_provider(name="Acme Renamed"))
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert registry.get_provider("acme").name == "Acme Renamed"

    def test_scopes_are_deduplicated(self, registry):
        stored = registry.upsert(make_provider(scopes=["email", "openid", "email", ""]))
        assert stored.scopes == ["email", "openid"]

    def test_persisted_across_instances(self, registry, provider_store):
        registry.upsert(make_provider())
        reopened = ProviderRegistry(provider_store, redirect_uri=REDIRECT_URI)
        assert reopened.get_provider("acme").client_id == "acme-client"

    def test_remove_custom_provider(self, registry):
        registry.upsert(make_provider())
        registry.remove("acme")
        assert not registry.has_provider("acme")

    def test_remove_builtin_restores_defaults(self, registry):
        google = registry.get_provider("google")
        registry.upsert(google.model_copy(update={"client_id": "custom-id", "scopes": ["email"]}))

        registry.remove("google")
        restored = registry.get_provider("google")
        assert restored.client_id == google.client_id
        assert restored.scopes == google.scopes

    def test_remove_unknown_is_noop(self, registry, provider_store):
        before = provider_store.path.read_bytes()
        registry.remove("does-not-exist")
        assert provider_store.path.read_bytes() == before

    def test_remove_checks_existence_under_store_lock(self, registry, provider_store, monkeypatch):
        registry.upsert(make_provider())
        lock_free = []
        has_provider = registry.has_provider

        def checking(provider_id):
            outcome = {}

            def contend():
                outcome["acquired"] = provider_store.lock.acquire(blocking=False)
                if outcome["acquired"]:
                    provider_store.lock.release()

            contender = threading.Thread(target=contend)
            contender.start()
            contender.join()
            lock_free.append(outcome["acquired"])
            return has_provider(provider_id)

        monkeypatch.setattr(registry, "has_provider", checking)
        registry.remove("acme")
        assert lock_free == [False]
        assert registry.find_provider("acme") is None

    def test_custom_edits_reject_builtins(self, registry):
        with pytest.raises(ValueError):
            registry.update_custom(make_provider(id="github", name="GitHub"))
        with pytest.raises(ValueError):
            registry.remove_custom("google")

    def test_update_custom_marks_provider(self, registry):
        stored = registry.update_custom(make_provider(is_custom=False))
        assert stored.is_custom
        registry.remove_custom("acme")
        assert not registry.has_provider("acme")


class TestServerProviders:
    def test_add_keeps_registration_order(self, registry):
        registry.add_server_provider(ServerProvider(id="b", name="B", url="https://b.test/"))
        registry.add_server_provider(ServerProvider(id="a", name="A", url="https://a.test"))
        servers = registry.list_server_providers()
        assert [s.id for s in servers] == ["b", "a"]
        assert servers[0].url == "https://b.test"

    def test_add_existing_id_replaces_in_place(self, registry):
        registry.add_server_provider(ServerProvider(id="a", name="A", url="https://a.test"))
        registry.add_server_provider(ServerProvider(id="b", name="B", url="https://b.test"))
        registry.add_server_provider(ServerProvider(id="a", name="A2", url="https://a2.test"))
        servers = registry.list_server_providers()
        assert [s.id for s in servers] == ["a", "b"]
        assert registry.get_server_provider("a").url == "https://a2.test"

    def test_remove(self, registry):
        registry.add_server_provider(ServerProvider(id="a", name="A", url="https://a.test"))
        assert registry.remove_server_provider("a") is True
        assert registry.remove_server_provider("a") is False
        assert registry.get_server_provider("a") is None

    def test_shares_document_with_providers(self, registry):
        registry.add_server_provider(ServerProvider(id="a", name="A", url="https://a.test"))
        registry.upsert(make_provider())
        assert registry.get_server_provider("a") is not None
        assert registry.has_provider("acme")
