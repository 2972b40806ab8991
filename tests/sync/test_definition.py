"""Tests for SyncDefinition: closure precedence, filter policy and pipelines."""

from dataclasses import dataclass

import pytest

from src.entsync.api.exceptions import (
    FilterPolicyViolation,
    InvalidEntitySource,
    LogicError,
    SyncEntityNotFound,
)
from src.entsync.sync import SyncEntity, SyncEntityProvider, declared_operation
from src.entsync.sync.adapters.definition import key_map_stage
from src.entsync.sync.adapters.http_definition import HttpSyncDefinition
from src.entsync.sync.adapters.pipeline import Pipeline
from src.entsync.sync.domain.context import SyncContext
from src.entsync.sync.domain.enums import (
    EntitySource,
    FilterPolicy,
    ListConformity,
    SyncOperation,
)
from tests.sync.blog_app import BASE_URL, BlogApi, User


class DeclaringApi(BlogApi):
    """Blog API that serves READ for users from a declared method."""

    @declared_operation(SyncOperation.READ, "User")
    def read_user(self, ctx, user_id, *args):
        return self.run(ctx, lambda: User(id=user_id, name="declared"))


class LenientApi(BlogApi):
    def get_filter_policy(self):
        return FilterPolicy.IGNORE


class LenientDeclaringApi(LenientApi, DeclaringApi):
    pass


@dataclass(eq=False)
class Tag(SyncEntity):
    label: str | None = None


def local_tag_type():
    """A second entity class named Tag, defined in a function."""

    @dataclass(eq=False)
    class Tag(SyncEntity):
        label: str | None = None

    return Tag


class TaggingApi(BlogApi):
    @declared_operation(SyncOperation.READ, Tag)
    def read_tag(self, ctx, tag_id, *args):
        return Tag(id=tag_id)


def users_definition(api, **kwargs):
    kwargs.setdefault("operations", [SyncOperation.READ, SyncOperation.READ_LIST])
    return HttpSyncDefinition(User, api, path="/users", **kwargs)


def filtered(operation=SyncOperation.READ_LIST, **filters):
    args = (filters,) if operation.is_list else (1, filters)
    return SyncContext().with_args(operation, *args)


def make(api_class, store, backend):
    return api_class(store, base_url=BASE_URL, transport=backend.transport())


class TestClosurePrecedence:
    """Overrides, declared methods, read_from_read_list and generated closures."""

    def test_generated_closure(self, api, backend):
        closure = users_definition(api).get_sync_operation_closure(SyncOperation.READ)
        assert closure(api.get_context(), 2).name == "Ervin Howell"
        assert backend.paths == ["/users/2"]

    def test_closures_are_cached(self, api):
        definition = users_definition(api)
        assert definition.get_sync_operation_closure(SyncOperation.READ) is (
            definition.get_sync_operation_closure(SyncOperation.READ)
        )

    def test_unlisted_operation(self, api):
        assert users_definition(api).get_sync_operation_closure(SyncOperation.DELETE) is None

    def test_override_wins(self, api, backend):
        calls = []

        def override(definition, operation, ctx, *args):
            calls.append((operation, args))
            return "overridden"

        definition = users_definition(api, overrides={SyncOperation.READ: override})

        assert definition.get_sync_operation_closure(SyncOperation.READ)(api.get_context(), 1) == "overridden"
        assert calls == [(SyncOperation.READ, (1,))]
        assert backend.requests == []

    def test_override_adds_operation(self, api):
        definition = users_definition(api, overrides={SyncOperation.DELETE: lambda d, op, ctx, e: e})
        assert SyncOperation.DELETE in definition.operations

    def test_override_can_delegate_to_fallback(self, api):
        def override(definition, operation, ctx, *args):
            user = definition.get_fallback_closure(operation)(ctx, *args)
            user.meta["seen"] = True
            return user

        definition = users_definition(api, overrides={SyncOperation.READ: override})
        user = definition.get_sync_operation_closure(SyncOperation.READ)(api.get_context(), 1)

        assert user.name == "Leanne Graham"
        assert user.meta["seen"] is True

    def test_duplicate_override(self, api):
        with pytest.raises(LogicError):
            users_definition(api, overrides={
                (SyncOperation.READ, SyncOperation.READ_LIST): lambda *a: None,
                SyncOperation.READ: lambda *a: None,
            })

    def test_declared_method(self, store, backend):
        api = make(DeclaringApi, store, backend)
        user = api.with_entity(User).get(5)

        assert user.name == "declared"
        assert backend.requests == []
        assert api.get_declared_operation(User, SyncOperation.READ_LIST) is None

    def test_declared_method_applies_filter_policy(self, store, backend):
        api = make(DeclaringApi, store, backend)
        with pytest.raises(FilterPolicyViolation):
            api.with_entity(User).get(5, {"group": 3})
        assert backend.requests == []

    def test_declared_method_receives_filters(self, store, backend):
        api = make(LenientDeclaringApi, store, backend)
        user = api.with_entity(User).get(5, {"group": 3})

        assert user.name == "declared"
        assert backend.requests == []

    def test_declared_types_match_by_qualified_name(self, store, backend):
        """Same-named classes from different scopes do not share declared methods."""
        api = make(TaggingApi, store, backend)
        other = local_tag_type()

        assert other.__name__ == Tag.__name__
        assert api.get_declared_operation(Tag, SyncOperation.READ) is not None
        assert api.get_declared_operation(other, SyncOperation.READ) is None
        assert api.get_declared_operation(Tag, SyncOperation.READ_LIST) is None

    def test_override_beats_declared_method(self, store, backend):
        api = make(DeclaringApi, store, backend)
        definition = users_definition(api, overrides={SyncOperation.READ: lambda d, op, ctx, i: "override"})
        assert definition.get_sync_operation_closure(SyncOperation.READ)(api.get_context(), 5) == "override"

    def test_read_from_read_list(self, api, backend):
        users = SyncEntityProvider(User, api, api.get_definition(User).with_read_from_read_list())

        assert users.get(2).name == "Ervin Howell"
        assert backend.paths == ["/users"]

        with pytest.raises(SyncEntityNotFound):
            users.get(99)


class TestClones:
    """with_* methods return modified copies."""

    def test_original_is_untouched(self, api):
        definition = users_definition(api)
        complete = definition.with_conformity(ListConformity.COMPLETE)

        assert complete is not definition
        assert complete.conformity == ListConformity.COMPLETE
        assert definition.conformity == ListConformity.NONE

    def test_clone_has_its_own_closures(self, api):
        definition = users_definition(api)
        closure = definition.get_sync_operation_closure(SyncOperation.READ)
        assert definition.with_read_from_read_list().get_sync_operation_closure(SyncOperation.READ) is not closure


class TestFilterPolicy:
    """Unclaimed filters."""

    def test_default_throws(self, api):
        definition = users_definition(api)
        assert definition.filter_policy == FilterPolicy.THROW_EXCEPTION
        with pytest.raises(FilterPolicyViolation) as exc_info:
            definition.apply_filter_policy(SyncOperation.READ_LIST, filtered(group=3))
        assert "group" in str(exc_info.value)

    def test_no_filters(self, api):
        assert users_definition(api).apply_filter_policy(SyncOperation.READ_LIST, SyncContext()) == (False, None)

    def test_ignore(self, api):
        definition = users_definition(api, filter_policy=FilterPolicy.IGNORE)
        assert definition.apply_filter_policy(SyncOperation.READ_LIST, filtered(group=3)) == (False, None)

    def test_return_empty(self, api):
        definition = users_definition(api, filter_policy=FilterPolicy.RETURN_EMPTY)
        assert definition.apply_filter_policy(SyncOperation.READ_LIST, filtered(group=3)) == (True, [])
        assert definition.apply_filter_policy(
            SyncOperation.READ, filtered(SyncOperation.READ, group=3)
        ) == (True, None)

    def test_filter_is_not_implemented(self, api):
        definition = users_definition(api, filter_policy=FilterPolicy.FILTER)
        with pytest.raises(LogicError):
            definition.apply_filter_policy(SyncOperation.READ_LIST, filtered(group=3))

    def test_provider_default(self, store, backend):
        api = make(LenientApi, store, backend)
        assert users_definition(api).filter_policy == FilterPolicy.IGNORE

    def test_return_empty_skips_request(self, api, backend):
        definition = api.get_definition(User).with_filter_policy(FilterPolicy.RETURN_EMPTY)
        assert SyncEntityProvider(User, api, definition).get_list_a({"group": 3}) == []
        assert backend.requests == []


class TestEntitySource:
    """Where write operations get the entities they return."""

    def test_default(self, api):
        assert users_definition(api).check_entity_source(SyncOperation.CREATE) == EntitySource.PROVIDER_OUTPUT

    def test_unset(self, api):
        definition = users_definition(api).with_return_entities_from(None)
        with pytest.raises(InvalidEntitySource):
            definition.check_entity_source(SyncOperation.CREATE)


class TestPipelines:
    """Pipeline and key_map_stage."""

    def test_key_map_stage(self):
        stage = key_map_stage({"userId": ["user_id", "author_id"], "ts": "created_at"})
        assert stage({"userId": 1, "ts": "t", "x": 2}, None) == {
            "user_id": 1, "author_id": 1, "created_at": "t", "x": 2,
        }

    def test_key_map_stage_without_unmapped(self):
        stage = key_map_stage({"ts": "created_at"}, add_unmapped=False)
        assert stage({"ts": "t", "x": 2}, None) == {"created_at": "t"}

    def test_pipeline_is_immutable(self):
        base = Pipeline()
        extended = base.through(lambda payload, arg: payload + 1)

        assert len(base) == 0
        assert extended.run(1) == 2
        assert extended.then(lambda payload, arg: payload * 10).run(1) == 20

    def test_none_drops_payload(self):
        odd_only = Pipeline().through(lambda n, arg: n if n % 2 else None).then(lambda n, arg: n * 2)
        assert odd_only.run(2) is None
        assert list(odd_only.stream([1, 2, 3])) == [2, 6]

    def test_definition_key_map(self, api):
        definition = users_definition(api, key_map={"username": "handle"})
        user = SyncEntityProvider(User, api, definition).get(1)

        assert user.username is None
        assert user.meta["handle"] == "Bret"
