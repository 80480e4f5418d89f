"""Tests for AssetWriter."""

import pytest

from assetflow_core.domain.exceptions import ConcurrentModificationError
from assetflow_core.runtime.retry import RetryPolicy
from tests.app.reliability.fakes import FIXED_NOW, FakeAssetRepository, make_asset

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False)


def test_update_applies_mutation_and_bumps_version():
    from app.pipeline.services.asset_writer import AssetWriter

    repo = FakeAssetRepository(make_asset(version=4))
    writer = AssetWriter(repo, retry_policy=NO_WAIT)

    saved = writer.update("asset-1", lambda a: setattr(a, "failure_count", 2))

    assert saved.failure_count == 2
    assert saved.version == 5
    assert repo.get("asset-1").failure_count == 2


def test_update_rereads_on_conflict():
    from app.pipeline.services.asset_writer import AssetWriter

    repo = FakeAssetRepository(make_asset())
    repo.conflicts_to_raise = 2
    writer = AssetWriter(repo, retry_policy=NO_WAIT)
    calls = []

    def mutate(asset):
        calls.append(asset.version)
        asset.failure_count += 1

    saved = writer.update("asset-1", mutate)

    assert len(calls) == 3
    assert saved.failure_count == 1


def test_update_gives_up_after_policy_attempts():
    from app.pipeline.services.asset_writer import AssetWriter

    repo = FakeAssetRepository(make_asset())
    repo.conflicts_to_raise = 10
    writer = AssetWriter(repo, retry_policy=NO_WAIT)

    with pytest.raises(ConcurrentModificationError):
        writer.update("asset-1", lambda a: None)

    assert repo.conflicts_to_raise == 7


@pytest.mark.parametrize("asset", [None, make_asset(deleted_at=FIXED_NOW)])
def test_update_skips_missing_or_deleted(asset):
    from app.pipeline.services.asset_writer import AssetWriter

    repo = FakeAssetRepository(*([asset] if asset else []))
    writer = AssetWriter(repo, retry_policy=NO_WAIT)
    mutations = []

    assert writer.update("asset-1", mutations.append) is None
    assert mutations == []
    assert repo.saves == []
