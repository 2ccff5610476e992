from gatewaycore.flags import StringFlag


def test_new_flag_is_unset_and_empty():
    flag = StringFlag()
    assert flag.is_set() is False
    assert str(flag) == ""


def test_set_flag_reports_value():
    flag = StringFlag()
    flag.set("hello world")
    assert flag.is_set() is True
    assert str(flag) == "hello world"


def test_empty_string_counts_as_set():
    flag = StringFlag()
    flag.set("")
    assert flag.is_set() is True
    assert str(flag) == ""


def test_set_overwrites_previous_value():
    flag = StringFlag()
    flag.set("seed")
    flag.set("join")
    assert str(flag) == "join"