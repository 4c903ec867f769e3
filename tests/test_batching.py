"""
Unit tests for the batch fetcher.

Tests:
- Deduplication of requested keys
- Retry of only the missing subset
- Bounded retries
"""

import pytest

from smartlogs.application.batching import BatchFetcher
from smartlogs.domain.errors import TransientFetchMiss
from conftest import make_tx, tx_hash


@pytest.fixture
def fetcher(rpc):
    return BatchFetcher(rpc, max_attempts=3, backoff=0)


@pytest.mark.asyncio
async def test_duplicates_collapse_and_only_missing_are_retried(rpc, fetcher):
    h1, h2, h3 = tx_hash(1), tx_hash(2), tx_hash(3)
    for i, h in enumerate((h1, h2, h3)):
        rpc.transactions[h] = make_tx(h, 10, i)
    rpc.misses[h2] = 1

    out = await fetcher.fetch_transactions([h1, h2, h3, h1])

    assert len(rpc.tx_batches) == 2
    assert sorted(rpc.tx_batches[0]) == sorted([h1, h2, h3])
    assert rpc.tx_batches[1] == [h2]
    assert set(out) == {h1, h2, h3}
    assert out[h2]["transactionIndex"] == 1


@pytest.mark.asyncio
async def test_blocks_resolved_in_one_call(rpc, fetcher):
    rpc.blocks = {5: {"number": 5}, 6: {"number": 6}}

    out = await fetcher.fetch_blocks([5, 6, 5])

    assert rpc.block_batches == [[5, 6]] or rpc.block_batches == [[6, 5]]
    assert out == {5: {"number": 5}, 6: {"number": 6}}


@pytest.mark.asyncio
async def test_persistent_miss_raises_after_max_attempts(rpc, fetcher):
    h = tx_hash(9)
    rpc.transactions[h] = make_tx(h, 1, 0)
    rpc.misses[h] = 100

    with pytest.raises(TransientFetchMiss) as exc:
        await fetcher.fetch_transactions([h])

    assert len(rpc.tx_batches) == 3
    assert exc.value.missing == [h]
    assert exc.value.attempts == 3


@pytest.mark.asyncio
async def test_empty_request_makes_no_call(rpc, fetcher):
    assert await fetcher.fetch_transactions([]) == {}
    assert rpc.tx_batches == []


def test_max_attempts_must_be_positive(rpc):
    with pytest.raises(ValueError):
        BatchFetcher(rpc, max_attempts=0)
