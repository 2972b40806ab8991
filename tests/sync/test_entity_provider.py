"""Tests for SyncEntityProvider, the per-type front door of the engine."""

import pytest

from src.entsync.api.exceptions import LogicError, OperationNotImplemented, SyncEntityNotFound
from src.entsync.sync import HydrationPolicy, SyncEntityProvider, SyncOperation
from src.entsync.sync.adapters.deferred import DeferredEntity
from src.entsync.sync.adapters.resolver import SyncEntityFuzzyResolver, SyncEntityResolver
from tests.sync.blog_app import BlogApi, Comment, Post, User

MIRROR_URL = "https://mirror.example.com"


class UsersOnlyApi(BlogApi):
    entity_types = (User,)


class TestConstruction:
    """Type checks made when binding a type to a provider."""

    def test_not_an_entity(self, api):
        with pytest.raises(LogicError):
            SyncEntityProvider(dict, api, None)

    def test_unserviced_type(self, store, backend):
        users_only = UsersOnlyApi(store, base_url=MIRROR_URL, transport=backend.transport())
        with pytest.raises(LogicError) as exc_info:
            SyncEntityProvider(Post, users_only, None)
        assert "UsersOnlyApi does not service Post" in str(exc_info.value)
        users_only.close()

    def test_repr(self, api):
        assert repr(api.with_entity(User)) == "<SyncEntityProvider User via BlogApi>"


class TestRun:
    """run() and run_a()."""

    def test_run_a_needs_a_list_operation(self, api):
        with pytest.raises(LogicError, match="Not a list operation"):
            api.with_entity(User).run_a(SyncOperation.READ, 1)

    def test_operation_not_implemented(self, api, backend):
        with pytest.raises(OperationNotImplemented):
            api.with_entity(User).create(User(name="Clementine Bauch"))
        assert backend.requests == []

    def test_get_list(self, api, backend):
        users = api.with_entity(User).get_list()
        assert [u.id for u in users] == [1, 2]
        assert backend.paths == ["/users"]


class TestOfflineModes:
    """Store lookups before READ."""

    def test_store_is_checked_first(self, api, backend):
        users = api.with_entity(User)
        first = users.get(1)
        assert users.get(1) is first
        assert backend.paths == ["/users/1"]

    def test_offline_miss(self, api, backend):
        with pytest.raises(SyncEntityNotFound):
            api.with_entity(User).offline().get(1)
        assert backend.requests == []

    def test_offline_hit(self, api, backend):
        user = api.with_entity(User).get(1)
        assert api.with_entity(User).offline().get(1) is user
        assert len(backend.requests) == 1

    def test_online_skips_store(self, api, backend):
        first = api.with_entity(User).get(1)
        second = api.with_entity(User).online().get(1)

        assert second is first
        assert backend.paths == ["/users/1", "/users/1"]

    def test_offline_first_restores_default(self, api, backend):
        api.with_entity(User).get(2)
        api.with_entity(User).online().offline_first().get(2)
        assert backend.paths == ["/users/2"]


class TestPolicies:
    """Deferral and hydration mutators."""

    def test_resolve_late(self, api, backend):
        posts = api.with_entity(Post).resolve_late().do_not_hydrate().get_list()
        assert backend.requests == []

        posts = list(posts)

        assert backend.paths[0] == "/posts"
        assert sorted(backend.paths[1:]) == ["/users/1", "/users/2"]
        assert all(isinstance(post.user, User) for post in posts)
        assert posts[0].user is posts[1].user

    def test_resolve_late_single_entity(self, api, backend):
        post = api.with_entity(Post).resolve_late().do_not_hydrate().get(3)
        assert post.user.name == "Ervin Howell"
        assert backend.paths == ["/posts/3", "/users/2"]

    def test_do_not_resolve(self, api, backend):
        post = api.with_entity(Post).do_not_resolve().do_not_hydrate().get(1)
        assert isinstance(post.user, DeferredEntity)
        assert backend.paths == ["/posts/1"]

    def test_mutators_chain(self, api):
        users = api.with_entity(User)
        assert users.do_not_resolve().resolve_early().do_not_hydrate() is users

    def test_hydrate_per_entity_type(self, api):
        users = api.with_entity(User).hydrate(HydrationPolicy.EAGER, Post)

        assert users.ctx.get_hydration_policy(Post) == HydrationPolicy.EAGER
        assert users.ctx.get_hydration_policy(Comment) == HydrationPolicy.DEFER

    def test_hydrate_depth(self, api):
        with pytest.raises(LogicError):
            api.with_entity(User).hydrate(HydrationPolicy.EAGER, depth=0)


class TestNames:
    """Resolvers and id_from_name_or_id()."""

    def test_get_resolver(self, api):
        users = api.with_entity(User)

        assert isinstance(users.get_resolver("username"), SyncEntityResolver)
        assert isinstance(users.get_resolver("name", weight_property="id"), SyncEntityFuzzyResolver)
        assert isinstance(users.get_resolver(), SyncEntityFuzzyResolver)

    def test_valid_ids_are_returned_as_is(self, api, backend):
        users = api.with_entity(User)
        assert users.id_from_name_or_id(2) == 2
        assert users.id_from_name_or_id(None) is None
        assert backend.requests == []

    def test_exact_name(self, api):
        users = api.with_entity(User)
        assert users.id_from_name_or_id("Antonette", "username") == 2
        assert users.id_from_name_or_id("Leanne Graham") == 1

    def test_approximate_name(self, api):
        assert api.with_entity(User).id_from_name_or_id("ervin howel", uncertainty_threshold=0.3) == 2

    def test_unknown_name(self, api):
        users = api.with_entity(User)
        with pytest.raises(SyncEntityNotFound):
            users.id_from_name_or_id("Nobody")
        with pytest.raises(SyncEntityNotFound):
            users.id_from_name_or_id("Nobody", uncertainty_threshold=0.3)
