"""Tests for SyncContext: filters, values, policies and recursion checks."""

import pytest

from src.entsync.api.exceptions import InvalidFilterSignature, LogicError, SyncEntityRecursion
from src.entsync.sync.domain.context import SyncContext
from src.entsync.sync.domain.enums import DeferralPolicy, HydrationPolicy, SyncOperation
from tests.sync.blog_app import Comment, Post, User


@pytest.fixture
def ctx():
    return SyncContext()


class TestWithArgs:
    """Filters derived from operation arguments."""

    def test_first_argument_is_never_a_filter(self, ctx):
        assert ctx.with_args(SyncOperation.READ, 7).get_filters() == {}

    def test_read_list_dict(self, ctx):
        filtered = ctx.with_args(SyncOperation.READ_LIST, {"userId": 1, "Status": "open"})
        assert filtered.get_filters() == {"user_id": 1, "status": "open"}

    def test_non_identifier_keys_are_kept_verbatim(self, ctx):
        filtered = ctx.with_args(SyncOperation.READ_LIST, {"created_at>": "2024-01-01"})
        assert filtered.get_filters() == {"created_at>": "2024-01-01"}

    def test_entities_are_reduced_to_ids(self, ctx):
        user = User(id=5)
        filtered = ctx.with_args(SyncOperation.READ_LIST, {"author": user, "tags": [Post(id=1), Post(id=2)]})
        assert filtered.get_filters() == {"author": 5, "tags": [1, 2]}

    def test_ids(self, ctx):
        assert ctx.with_args(SyncOperation.READ_LIST, 1, 2, "x").get_filters() == {"id": [1, 2, "x"]}

    def test_entities_grouped_by_type(self, ctx):
        filtered = ctx.with_args(SyncOperation.READ_LIST, User(id=1), User(id=2), Post(id=9))
        assert filtered.get_filters() == {"user": [1, 2], "post": [9]}

    def test_filters_after_the_mandatory_argument(self, ctx):
        filtered = ctx.with_args(SyncOperation.READ, 3, {"expand": "comments"})
        assert filtered.get_filters() == {"expand": "comments"}

    @pytest.mark.parametrize("args", [
        (1.5,),
        ({"a": 1}, {"b": 2}),
        (1, User(id=1)),
        ({1: "x"},),
    ])
    def test_invalid_signatures(self, ctx, args):
        with pytest.raises(InvalidFilterSignature):
            ctx.with_args(SyncOperation.READ_LIST, *args)

    def test_is_a_copy(self, ctx):
        ctx.with_args(SyncOperation.READ_LIST, {"a": 1})
        assert ctx.get_filters() == {}


class TestClaimFilter:
    """Claiming filters, including *_id aliases."""

    def test_claim_removes_filter(self, ctx):
        filtered = ctx.with_args(SyncOperation.READ_LIST, {"status": "open"})
        assert filtered.claim_filter("status") == "open"
        assert filtered.get_filters() == {}

    def test_short_name_matches_id_filter(self, ctx):
        filtered = ctx.with_args(SyncOperation.READ_LIST, {"user_id": 4})
        assert filtered.claim_filter("user") is None
        assert filtered.claim_filter("user_id") == 4
        assert filtered.get_filters() == {}

    def test_id_name_matches_short_filter(self, ctx):
        filtered = ctx.with_args(SyncOperation.READ_LIST, {"user": 4})
        assert filtered.get_filter("userId") == 4
        assert filtered.claim_filter("user_id") == 4
        assert filtered.get_filters() == {}

    def test_falls_back_to_values(self, ctx):
        valued = ctx.with_value("tenant_id", "acme")
        assert valued.claim_filter("tenant_id") == "acme"
        assert valued.claim_filter("tenant_id", or_value=False) is None
        assert valued.get_value("tenant") == "acme"


class TestValuesAndStack:
    """Entity stack, values and recursion detection."""

    def test_push_adds_id_values(self, ctx):
        pushed = ctx.push(User(id=3))
        assert pushed.get_value("user_id") == 3
        assert pushed.get_value("user") == 3
        assert pushed.has_value("userId")
        assert ctx.stack == ()

    def test_last(self, ctx):
        user, post = User(id=1), Post(id=2)
        assert ctx.push(user).push(post).last is post
        assert ctx.last is None

    def test_recursion_is_detected_on_reentry(self, ctx):
        user = User(id=1)
        once = ctx.push_with_recursion_check(user)
        once.maybe_throw_recursion_exception()

        twice = once.push_with_recursion_check(user)
        with pytest.raises(SyncEntityRecursion):
            twice.maybe_throw_recursion_exception()


class TestPolicies:
    """Online/offline, deferral and hydration policies."""

    def test_offline_modes(self, ctx):
        assert ctx.offline_mode is None
        assert ctx.online().offline_mode is False
        assert ctx.offline().offline_mode is True
        assert ctx.offline().offline_first().offline_mode is None

    def test_default_deferral_policy(self, ctx):
        assert ctx.deferral_policy == DeferralPolicy.RESOLVE_EARLY
        assert ctx.with_deferral_policy(DeferralPolicy.RESOLVE_LATE).deferral_policy == DeferralPolicy.RESOLVE_LATE

    def test_default_hydration_policy(self, ctx):
        assert ctx.get_hydration_policy(Post) == HydrationPolicy.DEFER

    def test_global_hydration_policy(self, ctx):
        suppressed = ctx.with_hydration_policy(HydrationPolicy.SUPPRESS)
        assert suppressed.get_hydration_policy(Post) == HydrationPolicy.SUPPRESS
        assert suppressed.get_hydration_policy(None) == HydrationPolicy.SUPPRESS

    def test_per_entity_policy(self, ctx):
        eager = ctx.with_hydration_policy(HydrationPolicy.EAGER, Comment)
        assert eager.get_hydration_policy(Comment) == HydrationPolicy.EAGER
        assert eager.get_hydration_policy(Post) == HydrationPolicy.DEFER

    def test_per_depth_policy(self, ctx):
        """Depth 1 applies to the relationships of entities returned next."""
        lazy = ctx.with_hydration_policy(HydrationPolicy.LAZY, depth=1)
        assert lazy.get_hydration_policy(Post) == HydrationPolicy.LAZY

        nested = lazy.push(User(id=1))
        assert nested.get_hydration_policy(Post) == HydrationPolicy.DEFER

    def test_depth_must_be_positive(self, ctx):
        with pytest.raises(LogicError):
            ctx.with_hydration_policy(HydrationPolicy.EAGER, depth=0)

    def test_filter_policy_callback(self, ctx):
        assert ctx.apply_filter_policy() == (False, None)
        bound = ctx.with_filter_policy_callback(lambda c: (True, []))
        assert bound.apply_filter_policy() == (True, [])
