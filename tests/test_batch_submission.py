from decimal import Decimal

from conftest import FakeWallet, make_round
from roundengine.schemas.rounds import GameType
from roundengine.services.batch_service import BatchSubmitter, flatten_cart, new_idempotency_key


def test_flatten_splits_amount_evenly(cart):
    cart.add_item("r1", GameType.NUMBER, ["10", "20", "30"], 150)
    trades = flatten_cart(cart.items, "r1", GameType.NUMBER)
    assert [(t.selection, t.amount) for t in trades] == [("10", 50.0), ("20", 50.0), ("30", 50.0)]
    assert {t.trade_type for t in trades} == {"number"}
    assert trades[0].model_dump(by_alias=True) == {
        "roundId": "r1", "tradeType": "number", "selection": "10", "amount": 50.0,
    }


def test_flatten_uses_colour_on_the_wire(cart):
    cart.add_item("r1", GameType.COLOR, ["red"], 10)
    assert flatten_cart(cart.items, "r1", GameType.COLOR)[0].trade_type == "colour"


def test_flatten_targets_selected_round(cart):
    cart.add_item("old", GameType.COLOR, ["red"], 10)
    trades = flatten_cart(cart.items, "current", GameType.COLOR)
    assert trades[0].round_id == "current"


def test_idempotency_keys_are_unique():
    assert new_idempotency_key() != new_idempotency_key()


async def test_no_round_selected(submitter, cart):
    cart.add_item("r1", GameType.COLOR, ["red"], 10)
    res = await submitter.submit(cart, None, GameType.COLOR)
    assert res.success is False
    assert res.message == "No round selected!"


async def test_shortfall_makes_no_network_call(backend, cache, cart):
    wallet = FakeWallet("100")
    submitter = BatchSubmitter(backend, wallet, cache)
    cart.add_item("r1", GameType.COLOR, ["red"], 145)

    res = await submitter.submit(cart, "r1", GameType.COLOR)

    assert res.success is False
    assert res.message.startswith("Insufficient balance!")
    assert backend.calls["batch"] == 0
    assert cart.total_items == 1


async def test_no_items_for_game_type(submitter, cart):
    cart.add_item("r1", GameType.COLOR, ["red"], 10)
    res = await submitter.submit(cart, "n1", GameType.NUMBER)
    assert res.message == "No number orders in cart"


async def test_success_clears_cart_and_refreshes(backend, cache, cart, clock):
    backend.active[GameType.NUMBER] = [make_round("r1", GameType.NUMBER)]
    wallet = FakeWallet("1000", backend=backend)
    backend.balance = Decimal("835")
    submitter = BatchSubmitter(backend, wallet, cache, key_factory=lambda: "key-1")
    cart.add_item("r1", GameType.NUMBER, ["10", "20", "30"], 150)
    cart.open_review()

    res = await submitter.submit(cart, "r1", GameType.NUMBER)

    assert res.success is True
    assert res.message == "Successfully placed 3 trades for ₹165.00!"
    assert res.partial is False
    assert res.idempotency_key == "key-1"
    assert cart.items == []
    assert cart.is_review_open is False
    assert wallet.refreshes == 1
    assert wallet.balance == Decimal("835")
    assert backend.calls["active"] == 1
    trades, key = backend.batch_calls[0]
    assert key == "key-1"
    assert [t.amount for t in trades] == [50.0, 50.0, 50.0]


async def test_single_trade_message(submitter, cart):
    cart.add_item("r1", GameType.COLOR, ["red"], 10)
    res = await submitter.submit(cart, "r1", GameType.COLOR)
    assert res.message == "Successfully placed 1 trade for ₹15.00!"


async def test_zero_success_keeps_cart(backend, submitter, cart):
    backend.accept = 0
    cart.add_item("r1", GameType.COLOR, ["red"], 10)
    res = await submitter.submit(cart, "r1", GameType.COLOR)
    assert res.success is False
    assert res.message == "Failed to place trades"
    assert cart.total_items == 1


async def test_transport_error_keeps_cart(backend, cart, cache):
    backend.fail_batch = True
    wallet = FakeWallet("1000")
    submitter = BatchSubmitter(backend, wallet, cache)
    cart.add_item("r1", GameType.COLOR, ["red", "blue"], 20)

    res = await submitter.submit(cart, "r1", GameType.COLOR)

    assert res.success is False
    assert res.message == "Failed to place orders. Please try again."
    assert cart.total_items == 1
    assert wallet.refreshes == 0


async def test_partial_success_is_reported(backend, submitter, cart):
    backend.accept = 2
    cart.add_item("r1", GameType.NUMBER, ["1", "2", "3"], 30)

    res = await submitter.submit(cart, "r1", GameType.NUMBER)

    assert res.success is True
    assert res.partial is True
    assert (res.success_count, res.total) == (2, 3)
    assert res.message.endswith("1 of 3 were rejected.")
    assert [r.success for r in res.results] == [True, True, False]
    assert cart.items == []


async def test_each_attempt_gets_a_new_key(backend, cache, cart):
    keys = iter(["k1", "k2"])
    backend.fail_batch = True
    submitter = BatchSubmitter(backend, FakeWallet("1000"), cache, key_factory=lambda: next(keys))
    cart.add_item("r1", GameType.COLOR, ["red"], 10)

    await submitter.submit(cart, "r1", GameType.COLOR)
    await submitter.submit(cart, "r1", GameType.COLOR)

    assert [k for _, k in backend.batch_calls] == ["k1", "k2"]


async def test_reconcile_failure_does_not_undo_success(backend, submitter, cart):
    cart.add_item("r1", GameType.COLOR, ["red"], 10)
    backend.fail_rounds = True
    res = await submitter.submit(cart, "r1", GameType.COLOR)
    assert res.success is True
    assert cart.items == []
