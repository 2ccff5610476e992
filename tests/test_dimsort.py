from gatewaycore.dimsort import Ordering


def test_new_ordering():
    comp = Ordering(["name", "ignored", "value"])
    dims = {
        "name": "jack",
        "a": "test",
        "value": "big",
        "part2": "goodbye",
        "part1": "hello",
    }
    assert comp.sort(dims) == ["name", "value", "a", "part1", "part2"]


def test_less_orderer():
    v = Ordering(["b"])
    assert v.less(["a", "b"], 0, 1) is False
    assert v.less(["a", "b"], 1, 0) is True


def test_less_alphabetical_when_unordered():
    v = Ordering([])
    assert v.less(["a", "b"], 0, 1) is True
    assert v.less(["a", "b"], 1, 0) is False


def test_sort_empty():
    assert Ordering(["x"]).sort({}) == []


def test_duplicate_order_uses_last_position():
    comp = Ordering(["a", "b", "a"])
    assert comp.sort({"a": "1", "b": "2"}) == ["b", "a"]