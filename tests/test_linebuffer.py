"""Tests for line splitting writers."""

import io

import pytest

from ffcat.executor.linebuffer import LastLines, LineBuffer, MultiWriter


class TestLineBuffer:
    """Tests for LineBuffer."""

    def test_splits_on_newline_and_carriage_return(self):
        """Test both terminators end a line and are kept."""
        lines = []
        buf = LineBuffer(lines.append)
        buf.write(b"a\nb\rc\r\n")
        assert lines == ["a\n", "b\r", "c\r", "\n"]

    def test_partial_line_kept_across_writes(self):
        """Test unterminated content waits for the rest of the line."""
        lines = []
        buf = LineBuffer(lines.append)
        buf.write(b"fra")
        assert lines == []
        buf.write(b"me=1\nfps=")
        assert lines == ["frame=1\n"]
        buf.write(b"25\n")
        assert lines == ["frame=1\n", "fps=25\n"]

    def test_close_flushes_remainder_once(self):
        """Test close delivers the unterminated tail exactly once."""
        lines = []
        buf = LineBuffer(lines.append)
        buf.write(b"done\ntail")
        buf.close()
        buf.close()
        assert lines == ["done\n", "tail"]

    def test_close_without_remainder(self):
        """Test close with nothing pending calls nothing."""
        lines = []
        buf = LineBuffer(lines.append)
        buf.write(b"x\n")
        buf.close()
        assert lines == ["x\n"]

    def test_write_returns_length(self):
        """Test write reports all bytes as consumed."""
        buf = LineBuffer(lambda line: None)
        assert buf.write(b"abc\nde") == 6

    def test_multibyte_split_across_writes(self):
        """Test UTF-8 split over two writes decodes as one line."""
        lines = []
        buf = LineBuffer(lines.append)
        data = "ñandú\n".encode()
        buf.write(data[:2])
        buf.write(data[2:])
        assert lines == ["ñandú\n"]


class TestLastLines:
    """Tests for LastLines ring buffer."""

    def test_keeps_last_lines_in_order(self):
        """Test capacity K fed K+5 lines renders the last K."""
        ll = LastLines(10)
        for i in range(1, 16):
            ll.write(f"{i}\n".encode())
        assert ll.render() == "".join(f"{i}\n" for i in range(6, 16))

    def test_capacity_three_line_by_line(self):
        """Test a,b,c,d into capacity 3 renders b, c, d."""
        ll = LastLines(3)
        for line in (b"a\n", b"b\n", b"c\n", b"d\n"):
            ll.write(line)
        assert ll.render() == "b\nc\nd\n"
        assert str(ll) == "b\nc\nd\n"

    def test_fewer_lines_than_capacity(self):
        """Test empty slots contribute nothing."""
        ll = LastLines(5)
        ll.write(b"one\ntwo\n")
        assert ll.render() == "one\ntwo\n"

    def test_close_adds_partial_line(self):
        """Test the flushed remainder lands in the ring."""
        ll = LastLines(2)
        ll.write(b"a\nb\nlast")
        ll.close()
        assert ll.render() == "b\nlast"

    def test_default_capacity(self):
        """Test default capacity is 100 lines."""
        ll = LastLines()
        for i in range(150):
            ll.write(f"{i}\n".encode())
        rendered = ll.render().splitlines()
        assert len(rendered) == 100
        assert rendered[0] == "50"

    def test_invalid_capacity(self):
        """Test capacity below one is rejected."""
        with pytest.raises(ValueError):
            LastLines(0)


class TestMultiWriter:
    """Tests for MultiWriter."""

    def test_tees_to_all_writers(self):
        """Test every writer receives every byte."""
        a, b = io.BytesIO(), io.BytesIO()
        mw = MultiWriter(a, b)
        mw.write(b"hello")
        assert a.getvalue() == b"hello"
        assert b.getvalue() == b"hello"

    def test_text_writer_gets_text(self):
        """Test text streams receive decoded text."""
        text = io.StringIO()
        ll = LastLines(2)
        MultiWriter(ll, text).write(b"warning\n")
        assert text.getvalue() == "warning\n"
        assert ll.render() == "warning\n"
