"""Options for the chain-sync input and their command-line form."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .events import Point

_MAX_UINT32 = 2**32 - 1
_MAX_UINT64 = 2**64 - 1
_DIGITS = re.compile(r"[0-9]+")
_HEX = re.compile(r"(?:[0-9a-fA-F]{2})*")


@dataclass
class ChainSyncOptions:
    """Settings for a chain-sync input.

    intersect_points default to the chain genesis; network_magic 0 means
    the magic of the named network is used.
    """

    logger: Any = None
    network: str = ""
    network_magic: int = 0
    address: str = ""
    socket_path: str = ""
    ntc_tcp: bool = False
    bulk_mode: bool = False
    intersect_tip: bool = False
    intersect_points: list[Point] = field(default_factory=list)
    include_cbor: bool = False
    auto_reconnect: bool = False
    status_update_func: Callable[[Any], None] | None = None
    kupo_url: str = ""


def parse_intersect_points(value: str) -> list[Point]:
    """Parse comma-separated '<slot>.<hash>' points."""
    points = []
    for item in value.split(","):
        parts = item.split(".")
        if len(parts) != 2:
            raise ValueError("invalid intersect point format")
        slot_text, hash_text = parts
        if not _DIGITS.fullmatch(slot_text) or int(slot_text) > _MAX_UINT64:
            raise ValueError("invalid intersect point format")
        if not _HEX.fullmatch(hash_text):
            raise ValueError("invalid intersect point format")
        points.append(Point(slot=int(slot_text), hash=bytes.fromhex(hash_text)))
    return points


def options_from_cmdline(
    network: str = "mainnet",
    network_magic: int = 0,
    address: str = "",
    socket_path: str = "",
    ntc_tcp: bool = False,
    bulk_mode: bool = False,
    intersect_tip: bool = True,
    intersect_point: str = "",
    include_cbor: bool = False,
    auto_reconnect: bool = True,
    kupo_url: str = "",
) -> ChainSyncOptions:
    """Build input options from command-line values.

    A network magic outside the 32-bit range falls back to 0. Explicit
    intersect points take the place of the intersect-tip setting.
    """
    magic = network_magic if 0 < network_magic < _MAX_UINT32 else 0
    options = ChainSyncOptions(
        logger=logging.getLogger("adder.input.chainsync"),
        network=network,
        network_magic=magic,
        address=address,
        socket_path=socket_path,
        ntc_tcp=ntc_tcp,
        bulk_mode=bulk_mode,
        include_cbor=include_cbor,
        auto_reconnect=auto_reconnect,
        kupo_url=kupo_url,
    )
    if intersect_point:
        options.intersect_points = parse_intersect_points(intersect_point)
    else:
        options.intersect_tip = intersect_tip
    return options