from __future__ import annotations

import pytest

from sqa_scheduler.services.log_buffer import LogBuffer


@pytest.mark.unit
def test_buffer_keeps_suffix_of_all_output() -> None:
    buffer = LogBuffer(limit=50)
    full = ""
    for index in range(40):
        chunk = f"line {index}\n"
        buffer.append(chunk)
        full += chunk
        assert len(buffer) <= 50
        assert full.endswith(buffer.text)
    assert buffer.text == full[-50:]


@pytest.mark.unit
def test_buffer_decodes_bytes_and_ignores_empty_chunks() -> None:
    buffer = LogBuffer(limit=8000)
    buffer.append(b"caf\xc3\xa9 ")
    buffer.append(None)
    buffer.append("")
    buffer.append("ok")
    assert buffer.text == "café ok"


@pytest.mark.unit
def test_single_oversized_chunk_is_truncated_from_the_front() -> None:
    buffer = LogBuffer(limit=8000)
    buffer.append("x" * 9000 + "tail")
    assert len(buffer) == 8000
    assert buffer.text.endswith("tail")


@pytest.mark.unit
def test_limit_must_be_positive() -> None:
    with pytest.raises(ValueError):
        LogBuffer(limit=0)
