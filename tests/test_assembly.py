"""
Unit tests for log assembly.

Tests:
- Filter matching by address and topic-0
- Function call decoding and selector mismatches
- Transaction/block field inclusion
- All-or-nothing ordering
"""

from eth_utils import to_checksum_address

from smartlogs.application.assembly import assemble_logs, sort_logs
from smartlogs.application.filters import format_filters
from smartlogs.domain.models import IncludeOptions
from conftest import (
    APPROVAL_EVENT, APPROVAL_TOPIC, BOB, TOKEN_A, TOKEN_B, TRANSFER_FN, include_tx, make_filter,
    make_raw_log, make_tx, transfer_calldata, tx_hash,
)


def _txs(*raw_logs, input_="0x"):
    return {
        r.transaction_hash: make_tx(r.transaction_hash, r.block_number, r.transaction_index, input_)
        for r in raw_logs
    }


class TestMatching:

    def test_only_matching_address_and_topic_are_kept(self, codec):
        wanted = make_raw_log(address=TOKEN_A, log_index=1)
        other_token = make_raw_log(address=TOKEN_B, log_index=2)
        other_event = make_raw_log(address=TOKEN_A, topic0=APPROVAL_TOPIC, log_index=3)
        formatted = format_filters([make_filter()], codec)

        logs = assemble_logs(formatted, [wanted, other_token, other_event], codec)

        assert [l.log_index for l in logs] == [1]
        assert logs[0].filter_id == "f1"
        assert logs[0].address == to_checksum_address(TOKEN_A)
        assert logs[0].event.name == "Transfer"
        assert logs[0].function is None
        assert logs[0].transaction is None and logs[0].block is None

    def test_address_match_ignores_case(self, codec):
        raw = make_raw_log(address=to_checksum_address(TOKEN_A))
        formatted = format_filters([make_filter(address=TOKEN_A)], codec)

        assert len(assemble_logs(formatted, [raw], codec)) == 1

    def test_each_matching_filter_gets_its_own_log(self, codec):
        raw = make_raw_log()
        formatted = format_filters([make_filter("a"), make_filter("b", tag="dup")], codec)

        assert [l.filter_id for l in assemble_logs(formatted, [raw], codec)] == ["a", "b"]

    def test_filter_id_override(self, codec):
        formatted = format_filters([make_filter()], codec)

        logs = assemble_logs(formatted, [make_raw_log()], codec, filter_id="")

        assert logs[0].filter_id == ""


class TestFunctionDecoding:

    def test_selector_match_decodes_inputs(self, codec):
        raw = make_raw_log()
        formatted = format_filters([make_filter(function_abi=TRANSFER_FN)], codec)

        logs = assemble_logs(formatted, [raw], codec, _txs(raw, input_=transfer_calldata(BOB, 5)))

        fn = logs[0].function
        assert fn.name == "transfer"
        assert fn.signature == "0xa9059cbb"
        assert fn.inputs == {"to": to_checksum_address(BOB), "amount": 5}

    def test_selector_mismatch_records_actual_selector(self, codec):
        raw = make_raw_log()
        formatted = format_filters([make_filter(function_abi=TRANSFER_FN)], codec)

        logs = assemble_logs(formatted, [raw], codec, _txs(raw, input_="0xdeadbeef" + "00" * 32))

        fn = logs[0].function
        assert fn.signature == "0xdeadbeef"
        assert fn.name is None
        assert fn.inputs == {}

    def test_no_transaction_means_no_function(self, codec):
        formatted = format_filters([make_filter(function_abi=TRANSFER_FN)], codec)

        assert assemble_logs(formatted, [make_raw_log()], codec)[0].function is None


class TestInclude:

    def test_field_list_selects_subset(self, codec):
        raw = make_raw_log(block=7, tx_index=2)
        formatted = format_filters([make_filter(include=include_tx(["blockNumber", "hash", "missing"]))], codec)

        tx = assemble_logs(formatted, [raw], codec, _txs(raw))[0].transaction

        assert tx == {"blockNumber": 7, "hash": raw.transaction_hash}

    def test_include_all_and_block(self, codec):
        raw = make_raw_log(block=7)
        include = IncludeOptions.from_dict({"transaction": True, "block": ["number", "timestamp"]})
        formatted = format_filters([make_filter(include=include)], codec)
        blocks = {7: {"number": 7, "timestamp": 1700000000, "hash": "0xbb"}}

        log = assemble_logs(formatted, [raw], codec, _txs(raw), blocks)[0]

        assert log.transaction == make_tx(raw.transaction_hash, 7, 0)
        assert log.block == {"number": 7, "timestamp": 1700000000}


class TestOrdering:

    def test_sorted_by_block_tx_index_log_index(self, codec):
        l1 = make_raw_log(block=5, tx_index=1, log_index=0)
        l2 = make_raw_log(block=5, tx_index=0, log_index=2)
        l3 = make_raw_log(block=4, tx_index=9, log_index=9)
        formatted = format_filters([make_filter(include=include_tx())], codec)

        logs = assemble_logs(formatted, [l1, l2, l3], codec, _txs(l1, l2, l3))

        assert [l.transaction_hash for l in logs] == [l3.transaction_hash, l2.transaction_hash, l1.transaction_hash]

    def test_without_transaction_fields_node_order_is_kept(self, codec):
        l1 = make_raw_log(block=5, log_index=3)
        l2 = make_raw_log(block=4, log_index=1)
        formatted = format_filters([make_filter()], codec)

        logs = assemble_logs(formatted, [l1, l2], codec)

        assert [l.log_index for l in logs] == [3, 1]

    def test_one_incomplete_entry_disables_sorting_entirely(self, codec):
        l1 = make_raw_log(block=5, tx_index=1, log_index=0)
        l2 = make_raw_log(block=4, tx_index=0, log_index=1)
        l3 = make_raw_log(block=3, tx_index=0, log_index=2)
        txs = _txs(l1, l2, l3)
        del txs[l3.transaction_hash]["transactionIndex"]
        formatted = format_filters([make_filter(include=include_tx())], codec)

        logs = assemble_logs(formatted, [l1, l2, l3], codec, txs)

        assert [l.log_index for l in logs] == [0, 1, 2]

    def test_sort_logs_empty(self):
        assert sort_logs([]) == []


def test_approval_filter_decodes_its_own_inputs(codec):
    raw = make_raw_log(topic0=APPROVAL_TOPIC, value=3, tx=tx_hash(77))
    formatted = format_filters([make_filter(event=APPROVAL_EVENT)], codec)

    log, = assemble_logs(formatted, [raw], codec)

    assert set(log.event.inputs) == {"owner", "spender", "value"}
    assert log.event.inputs["value"] == 3
