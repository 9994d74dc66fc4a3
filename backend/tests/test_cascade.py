"""Tests for leaf record invalidation."""

import pytest

from webhook_ca.domain.models import SecretRecord
from webhook_ca.domain.states import OperationResult, ResourceKind
from webhook_ca.repository.store import ConflictError, StoreError
from webhook_ca.services.cascade import CascadeError, invalidate_leaf_certificate

from conftest import CA_NAMESPACE, TLS_SECRET_NAME

LEAF_DATA = {"tls.crt": b"leaf-cert", "tls.key": b"leaf-key"}


async def seed_leaf(store, data=None):
    await store.create(
        SecretRecord(name=TLS_SECRET_NAME, namespace=CA_NAMESPACE, data=dict(data or LEAF_DATA))
    )


class TestInvalidateLeafCertificate:
    """Tests for invalidate_leaf_certificate()."""

    @pytest.mark.asyncio
    async def test_clears_leaf_data(self, recording_store, policy):
        """Test that the leaf record is emptied so it gets re-issued."""
        await seed_leaf(recording_store)

        result = await invalidate_leaf_certificate(
            recording_store, CA_NAMESPACE, TLS_SECRET_NAME, policy
        )

        assert result == OperationResult.UPDATED
        leaf = await recording_store.get(ResourceKind.SECRET, TLS_SECRET_NAME, CA_NAMESPACE)
        assert leaf.data == {}
        assert leaf.version == 2

    @pytest.mark.asyncio
    async def test_missing_leaf_is_a_no_op(self, recording_store, policy):
        """Test that an absent leaf record is tolerated and nothing is created."""
        result = await invalidate_leaf_certificate(
            recording_store, CA_NAMESPACE, TLS_SECRET_NAME, policy
        )

        assert result is None
        assert recording_store.writes == []

    @pytest.mark.asyncio
    async def test_already_empty_leaf_is_not_rewritten(self, recording_store, policy):
        """Test UNCHANGED, with no write, for an already cleared record."""
        await seed_leaf(recording_store, data={})

        result = await invalidate_leaf_certificate(
            recording_store, CA_NAMESPACE, TLS_SECRET_NAME, policy
        )

        assert result == OperationResult.UNCHANGED
        assert recording_store.update_attempts == {}

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, recording_store, policy):
        """Test that a concurrent write to the leaf record is retried."""
        await seed_leaf(recording_store)
        recording_store.fail_updates(
            ResourceKind.SECRET,
            TLS_SECRET_NAME,
            lambda: ConflictError(ResourceKind.SECRET, TLS_SECRET_NAME, CA_NAMESPACE),
            times=1,
        )

        result = await invalidate_leaf_certificate(
            recording_store, CA_NAMESPACE, TLS_SECRET_NAME, policy
        )

        assert result == OperationResult.UPDATED
        assert recording_store.update_attempts[(ResourceKind.SECRET, TLS_SECRET_NAME)] == 2

    @pytest.mark.asyncio
    async def test_exhausted_conflicts_raise(self, recording_store, policy):
        """Test that persistent conflicts surface as CascadeError."""
        await seed_leaf(recording_store)
        recording_store.fail_updates(
            ResourceKind.SECRET,
            TLS_SECRET_NAME,
            lambda: ConflictError(ResourceKind.SECRET, TLS_SECRET_NAME, CA_NAMESPACE),
        )

        with pytest.raises(CascadeError):
            await invalidate_leaf_certificate(
                recording_store, CA_NAMESPACE, TLS_SECRET_NAME, policy
            )

    @pytest.mark.asyncio
    async def test_store_failure_raises(self, recording_store, policy):
        """Test that any other failure surfaces as CascadeError."""
        await seed_leaf(recording_store)
        recording_store.fail_updates(
            ResourceKind.SECRET, TLS_SECRET_NAME, lambda: StoreError("read-only")
        )

        with pytest.raises(CascadeError) as exc_info:
            await invalidate_leaf_certificate(
                recording_store, CA_NAMESPACE, TLS_SECRET_NAME, policy
            )

        assert isinstance(exc_info.value.__cause__, StoreError)
