import pytest
from eth_abi import encode

from smartlogs.adapters.codec_eth_abi import EthAbiCodec
from smartlogs.domain.models import Filter, IncludeOptions, RawLog

TOKEN_A = "0x" + "aa" * 20
TOKEN_B = "0x" + "bb" * 20
ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
APPROVAL_TOPIC = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"
TRANSFER_SELECTOR = "0xa9059cbb"

TRANSFER_EVENT = {
    "anonymous": False,
    "name": "Transfer",
    "type": "event",
    "inputs": [
        {"indexed": True, "name": "from", "type": "address"},
        {"indexed": True, "name": "to", "type": "address"},
        {"indexed": False, "name": "value", "type": "uint256"},
    ],
}
APPROVAL_EVENT = {
    "anonymous": False,
    "name": "Approval",
    "type": "event",
    "inputs": [
        {"indexed": True, "name": "owner", "type": "address"},
        {"indexed": True, "name": "spender", "type": "address"},
        {"indexed": False, "name": "value", "type": "uint256"},
    ],
}
TRANSFER_FN = {
    "name": "transfer",
    "type": "function",
    "inputs": [
        {"name": "to", "type": "address"},
        {"name": "amount", "type": "uint256"},
    ],
}


def address_topic(addr: str) -> str:
    return "0x" + "00" * 12 + addr[2:].lower()


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def transfer_calldata(to: str, amount: int) -> str:
    return TRANSFER_SELECTOR + encode(["address", "uint256"], [to, amount]).hex()


def make_raw_log(
    *,
    address=TOKEN_A,
    topic0=TRANSFER_TOPIC,
    frm=ALICE,
    to=BOB,
    value=1,
    block=1,
    tx_index=0,
    log_index=0,
    tx=None,
) -> RawLog:
    return RawLog(
        address=address,
        topics=(topic0, address_topic(frm), address_topic(to)),
        data="0x" + encode(["uint256"], [value]).hex(),
        block_number=block,
        transaction_hash=tx or tx_hash(block * 1000 + tx_index),
        transaction_index=tx_index,
        log_index=log_index,
    )


def make_tx(hash_: str, block: int, index: int, input_: str = "0x") -> dict:
    return {
        "hash": hash_,
        "blockNumber": block,
        "transactionIndex": index,
        "from": ALICE,
        "to": TOKEN_A,
        "input": input_,
        "value": 0,
    }


def make_filter(id_="f1", address=TOKEN_A, event=TRANSFER_EVENT, **kw) -> Filter:
    return Filter(id=id_, address=address, event_abi=event, **kw)


def include_tx(fields=True) -> IncludeOptions:
    return IncludeOptions.from_dict({"transaction": fields})


class FakeRPC:
    """In-memory node; `misses[key] = n` answers None for the first n lookups of key."""

    def __init__(self, chain_id=1, head=0):
        self.chain = chain_id
        self.head = head
        self.logs: list[RawLog] = []
        self.transactions: dict[str, dict] = {}
        self.blocks: dict[int, dict] = {}
        self.receipts: dict[str, dict] = {}
        self.misses: dict = {}
        self.get_logs_calls: list[tuple] = []
        self.tx_batches: list[list[str]] = []
        self.block_batches: list[list[int]] = []
        self.closed = False

    async def chain_id(self):
        return self.chain

    async def block_number(self):
        return self.head

    async def get_logs(self, addresses, topics0, from_block, to_block):
        self.get_logs_calls.append((list(addresses), list(topics0), from_block, to_block))
        addrs = {a.lower() for a in addresses}
        tops = {t.lower() for t in topics0}
        return [
            l for l in self.logs
            if from_block <= l.block_number <= to_block and l.address.lower() in addrs and l.topic0 in tops
        ]

    def _answer(self, key, store):
        if self.misses.get(key, 0) > 0:
            self.misses[key] -= 1
            return None
        return store.get(key)

    async def get_transactions(self, hashes):
        self.tx_batches.append(list(hashes))
        return [self._answer(h, self.transactions) for h in hashes]

    async def get_blocks(self, numbers):
        self.block_batches.append(list(numbers))
        return [self._answer(n, self.blocks) for n in numbers]

    async def get_transaction_receipt(self, tx_hash):
        return self.receipts.get(tx_hash)

    async def aclose(self):
        self.closed = True


class MemorySave:
    def __init__(self):
        self.batches = []
        self.filter_writes = []
        self.option_writes = []
        self.block_numbers = []

    async def logs(self, logs):
        self.batches.append(list(logs))

    async def filters(self, filters):
        self.filter_writes.append(list(filters))

    async def options(self, options):
        self.option_writes.append(options)

    async def block_number(self, block_number):
        self.block_numbers.append(block_number)


class MemoryLoad:
    def __init__(self, filters=None, options=None, block_number=0):
        self._filters = list(filters or [])
        self._options = options
        self._block_number = block_number

    async def filters(self):
        return list(self._filters)

    async def options(self):
        return self._options

    async def block_number(self):
        return self._block_number


@pytest.fixture
def codec():
    return EthAbiCodec()


@pytest.fixture
def rpc():
    return FakeRPC()


@pytest.fixture
def save():
    return MemorySave()
