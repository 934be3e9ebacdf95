import pytest

from dhtmeta.scanner import find_element_end


@pytest.mark.parametrize("data,expected", [
    (b'i42e', 3),
    (b'i-7e', 3),
    (b'4:spam', 5),
    (b'0:', 1),
    (b'le', 1),
    (b'de', 1),
    (b'l4:spami1ee', 10),
    (b'd3:cow3:moo4:spaml1:a1:bee', 25),
    (b'd8:msg_typei1e5:piecei0ee', 24),
])
def test_find_element_end(data, expected):
    assert find_element_end(data, 0) == expected


def test_find_element_end_with_trailing_payload():
    header = b'd8:msg_typei1e5:piecei3e10:total_sizei40000ee'
    buf = b'\x14\x02' + header + b'eeee raw bytes'
    assert find_element_end(buf, 2) == 2 + len(header) - 1


def test_find_element_end_string_containing_markers():
    data = b'd1:x5:ddlee1:yi1ee'
    assert find_element_end(data, 0) == len(data) - 1


def test_find_element_end_nested_offset():
    data = b'xxl' + b'd1:ali1ei2eee' + b'e'
    assert find_element_end(data, 3) == 3 + len(b'd1:ali1ei2eee') - 1


@pytest.mark.parametrize("data", [
    b'',
    b'd',
    b'd3:cow3:moo',
    b'l4:spam',
    b'i42',
    b'ie',
    b'5:spam',
    b'4spam',
    b'x',
    b'e',
    b'-1:a',
    b'd3:cowx3:mooe',
])
def test_find_element_end_not_found(data):
    assert find_element_end(data, 0) is None


def test_find_element_end_offset_out_of_range():
    assert find_element_end(b'i1e', 3) is None
    assert find_element_end(b'i1e', -1) is None


def test_find_element_end_deep_nesting():
    data = b'l' * 5000 + b'e' * 5000
    assert find_element_end(data, 0) == len(data) - 1
