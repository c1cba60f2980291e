"""Unit tests for host port allocation."""

from __future__ import annotations

from deskgate.managers.session import allocate_port, allocate_session_port
from deskgate.models.session import aux_port_for


def test_empty_set_returns_base():
    assert allocate_port(set(), 6080) == 6080


def test_returns_first_gap():
    assert allocate_port({6080, 6081, 6083}, 6080) == 6082


def test_ports_below_base_are_ignored():
    assert allocate_port({5000, 6079}, 6080) == 6080


def test_contiguous_block_returns_next():
    assert allocate_port(range(6080, 6090), 6080) == 6090


def test_session_port_skips_hosts_whose_aux_port_is_taken():
    # Display 79 would bind aux 6080, already a host port
    in_use = set(range(6080, 6159)) | set(range(6001, 6080))

    port = allocate_session_port(in_use, 6080)

    assert port == 6238
    assert aux_port_for(port - 6080) == 6159


def test_session_port_skips_ports_taken_as_aux():
    # 6082 is held as some display's aux port
    assert allocate_session_port({6080, 6001, 6081, 6002, 6082}, 6080) == 6083
