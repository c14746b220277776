import pytest

from nft_watch_agent.errors import ValidationError
from nft_watch_agent.validation import validate_transaction_plans

TO = "0x" + "ab" * 20


def test_accepts_minimal_plan_and_keeps_extra_fields() -> None:
    plans = validate_transaction_plans(
        [{"to": TO, "data": "0xdeadbeef", "from": "0x" + "11" * 20, "gasLimit": 21000}]
    )

    assert len(plans) == 1
    assert plans[0].to == TO
    assert plans[0].data == "0xdeadbeef"
    assert plans[0].value is None
    assert plans[0].extra == {"from": "0x" + "11" * 20, "gasLimit": 21000}


def test_value_accepts_decimal_and_hex_strings() -> None:
    plans = validate_transaction_plans(
        [
            {"to": TO, "data": "0x", "value": "1000"},
            {"to": TO, "data": "0x", "value": "0x10"},
            {"to": TO, "data": "0x", "value": 5},
        ]
    )

    assert [p.value_wei for p in plans] == [1000, 16, 5]


@pytest.mark.parametrize(
    "raw",
    [
        None,
        {"to": TO, "data": "0x"},
        [],
        [None],
        [{"data": "0x"}],
        [{"to": TO}],
        [{"to": "0x1234", "data": "0x"}],
        [{"to": TO, "data": "deadbeef"}],
        [{"to": TO, "data": "0xabc"}],
        [{"to": TO, "data": "0x", "value": "-1"}],
        [{"to": TO, "data": "0x", "value": 1.5}],
        [{"to": TO + "\n", "data": "0x"}],
        [{"to": TO, "data": "0x00\n"}],
        [{"to": TO, "data": "0x", "value": "²"}],
        [{"to": TO, "data": "0x", "value": "١٢"}],
    ],
)
def test_rejects_malformed_batches(raw) -> None:
    with pytest.raises(ValidationError):
        validate_transaction_plans(raw)


def test_one_bad_plan_fails_the_whole_batch() -> None:
    raw = [{"to": TO, "data": "0x01"}, {"to": TO, "data": "not-hex"}]

    with pytest.raises(ValidationError, match="Transaction 1"):
        validate_transaction_plans(raw)
