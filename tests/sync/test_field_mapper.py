"""Tests for mapping backend records to entities."""

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from src.entsync.sync.adapters.deferred import DeferredEntity, DeferredRelationship
from src.entsync.sync.adapters.field_mapper import SyncEntityMapper
from src.entsync.sync.domain.context import SyncContext
from src.entsync.sync.domain.entities import SyncEntity
from src.entsync.sync.domain.enums import DeferralPolicy, HydrationPolicy, ListConformity
from tests.sync.blog_app import Comment, Post, User


@dataclass(eq=False)
class Contact(SyncEntity):
    name: str | None = None
    email: str | None = None

    field_aliases = {"full_name": "name"}


@pytest.fixture
def ctx():
    return SyncContext()


class TestKeyTargets:
    """Where backend keys end up."""

    def test_classification(self):
        targets = SyncEntityMapper(Post, None).get_key_targets(
            ["id", "userId", "title", "createdAt", "views"]
        )

        assert targets.id_key == "id"
        assert targets.fields == {"title": "title", "createdAt": "created_at"}
        assert list(targets.relationships) == ["userId"]
        assert targets.relationships["userId"][0] == "user"
        assert targets.relationships["userId"][2] is True
        assert targets.meta == ["views"]

    def test_many_relationship_by_ids(self):
        targets = SyncEntityMapper(Post, None).get_key_targets(["comment_ids"])
        assert targets.relationships["comment_ids"][0] == "comments"

    def test_id_suffix_must_match_cardinality(self):
        """user_ids is not a list of authors; comment_id is not a relationship."""
        targets = SyncEntityMapper(Post, None).get_key_targets(["user_ids", "comment_id"])
        assert targets.relationships == {}
        assert targets.meta == ["user_ids", "comment_id"]

    def test_direct_relationship_wins_over_id_key(self):
        targets = SyncEntityMapper(Post, None).get_key_targets(["user", "user_id"])
        assert list(targets.relationships) == ["user"]
        assert targets.meta == ["user_id"]

    def test_type_prefix_is_stripped(self):
        mapper = SyncEntityMapper(User, None)
        assert mapper.normalise_key("userName") == "name"
        assert mapper.normalise_key("userId") == "id"
        assert mapper.normalise_key("user_timezone") == "user_timezone"

    def test_aliases(self):
        mapper = SyncEntityMapper(Contact, None)
        assert mapper.normalise_key("FullName") == "name"
        assert mapper.normalise_key("contactFullName") == "name"


class TestMapWithoutProvider:
    """Records mapped with no provider (no store, no deferral)."""

    def test_fields_dates_and_meta(self, ctx):
        post = SyncEntityMapper(Post, None).map(
            {"id": 1, "userId": 7, "title": "x", "createdAt": "2024-01-15T10:30:00Z", "views": 5},
            ctx,
        )

        assert post.id == 1
        assert post.user == 7
        assert post.title == "x"
        assert post.created_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert post.meta == {"views": 5}
        assert post.provider is None

    def test_closures_are_cached_per_signature(self):
        mapper = SyncEntityMapper(Post, None)
        assert mapper.get_closure(["id", "title"]) is mapper.get_closure(("id", "title"))
        assert mapper.get_closure(["title", "id"]) is not mapper.get_closure(["id", "title"])

    def test_complete_conformity_reuses_first_closure(self, ctx):
        records = [{"id": 1, "title": "a"}, {"id": 2, "title": "b", "body": "ignored"}]
        posts = list(SyncEntityMapper(Post, None).map_list(records, ctx, ListConformity.COMPLETE))

        assert [p.title for p in posts] == ["a", "b"]
        assert posts[1].body is None

    def test_partial_conformity_checks_signature(self, ctx):
        records = [{"id": 1, "title": "a"}, {"id": 2, "title": "b", "body": "kept"}]
        posts = list(SyncEntityMapper(Post, None).map_list(records, ctx, ListConformity.PARTIAL))
        assert posts[1].body == "kept"


class TestMapWithProvider:
    """Records mapped through a provider and its store."""

    def test_entities_are_unique_per_id(self, api):
        mapper = api.get_mapper(Post)
        ctx = api.get_context().with_hydration_policy(HydrationPolicy.SUPPRESS)

        first = mapper.map({"id": 9, "title": "a"}, ctx)
        second = mapper.map({"id": 9, "title": "b"}, ctx)

        assert first is second
        assert first.title == "b"
        assert api.store.get_entity(api.provider_id, Post, "9") is first

    def test_nested_record_becomes_entity(self, api, backend):
        ctx = api.get_context().with_hydration_policy(HydrationPolicy.SUPPRESS)
        post = api.get_mapper(Post).map({"id": 10, "user": {"id": 3, "name": "Clementine"}}, ctx)

        assert isinstance(post.user, User)
        assert post.user.name == "Clementine"
        assert api.store.get_entity(api.provider_id, User, 3) is post.user
        assert backend.requests == []

    def test_ids_are_deferred(self, api, backend):
        ctx = (
            api.get_context()
            .with_deferral_policy(DeferralPolicy.DO_NOT_RESOLVE)
            .with_hydration_policy(HydrationPolicy.SUPPRESS)
        )
        post = api.get_mapper(Post).map({"id": 10, "userId": 1, "comment_ids": [1, 2]}, ctx)

        assert isinstance(post.user, DeferredEntity)
        assert post.user.entity_id == 1
        assert [c.entity_id for c in post.comments] == [1, 2]
        assert backend.requests == []

    def test_known_entity_is_delivered_at_once(self, api, backend):
        ctx = api.get_context().with_deferral_policy(DeferralPolicy.DO_NOT_RESOLVE)
        user = api.get_mapper(User).map({"id": 1, "name": "Leanne"}, ctx.with_hydration_policy(HydrationPolicy.SUPPRESS))

        post = api.get_mapper(Post).map({"id": 10, "userId": 1}, ctx)

        assert post.user is user
        assert backend.requests == []

    def test_resolve_early_fetches_references(self, api, backend):
        ctx = api.get_context().with_hydration_policy(HydrationPolicy.SUPPRESS)
        post = api.get_mapper(Post).map({"id": 10, "userId": 2}, ctx)

        assert isinstance(post.user, User)
        assert post.user.name == "Ervin Howell"
        assert backend.paths == ["/users/2"]


class TestHydration:
    """Missing one-to-many relationships of new entities."""

    def test_defer_queues_relationship(self, api, backend, store):
        post = api.get_mapper(Post).map({"id": 1, "title": "x"}, api.get_context())

        assert isinstance(post.comments, DeferredRelationship)
        assert backend.requests == []

        store.resolve_deferred()

        assert backend.paths == ["/posts/1/comments"]
        assert [c.id for c in post.comments] == [1, 2]
        assert all(c.post is post for c in post.comments)

    def test_suppress(self, api, backend, store):
        ctx = api.get_context().with_hydration_policy(HydrationPolicy.SUPPRESS)
        post = api.get_mapper(Post).map({"id": 1, "title": "x"}, ctx)

        assert post.comments is None
        assert store.resolve_deferred() == []
        assert backend.requests == []

    def test_eager(self, api, backend):
        ctx = api.get_context().with_hydration_policy(HydrationPolicy.EAGER, Comment)
        post = api.get_mapper(Post).map({"id": 3, "title": "x"}, ctx)

        assert backend.paths == ["/posts/3/comments"]
        assert [c.id for c in post.comments] == [3]

    def test_lazy_waits_for_first_use(self, api, backend, store):
        ctx = api.get_context().with_hydration_policy(HydrationPolicy.LAZY, Comment)
        post = api.get_mapper(Post).map({"id": 1, "title": "x"}, ctx)

        store.resolve_deferred()
        assert backend.requests == []

        assert len(post.comments) == 2
        assert backend.paths == ["/posts/1/comments"]
        assert isinstance(post.comments, list)

    def test_existing_entities_are_not_hydrated_again(self, api, store):
        mapper = api.get_mapper(Post)
        ctx = api.get_context()
        first = mapper.map({"id": 1, "title": "x"}, ctx)

        # A second registration of the same relationship would raise
        assert mapper.map({"id": 1, "title": "y"}, ctx) is first
        assert first.title == "y"
