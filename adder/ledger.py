"""Cardano ledger primitives: bech32, addresses, assets and certificates."""

from __future__ import annotations

import hashlib
import logging
import zlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

_log = logging.getLogger(__name__)

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_REV = {char: value for value, char in enumerate(_CHARSET)}
_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_BASE58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_REV = {char: value for value, char in enumerate(_BASE58)}
_HASH28_SIZE = 28
_BYRON_TYPE = 8


def convert_bits(
    data: Iterable[int], from_bits: int, to_bits: int, pad: bool = True
) -> list[int]:
    """Regroup a sequence of from_bits-wide values into to_bits-wide values."""
    if not (1 <= from_bits <= 8 and 1 <= to_bits <= 8):
        raise ValueError("bit widths must be between 1 and 8")
    acc = 0
    bits = 0
    out: list[int] = []
    max_value = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError(f"invalid data range: {value}")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & max_value)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or (acc << (to_bits - bits)) & max_value:
        raise ValueError("invalid padding")
    return out


def _polymod(values: Iterable[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i, generator in enumerate(_GENERATORS):
            if (top >> i) & 1:
                chk ^= generator
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def bech32_encode(hrp: str, data: Iterable[int]) -> str:
    """Encode 5-bit values under a human-readable prefix as bech32."""
    hrp = hrp.lower()
    values = list(data)
    if not hrp:
        raise ValueError("empty human-readable part")
    if any(v < 0 or v > 31 for v in values):
        raise ValueError("data values must be 5-bit")
    polymod = _polymod(_hrp_expand(hrp) + values + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(_CHARSET[v] for v in values + checksum)


def bech32_decode(text: str) -> tuple[str, list[int]]:
    """Decode a bech32 string into its prefix and 5-bit data values."""
    if text.lower() != text and text.upper() != text:
        raise ValueError("mixed case in bech32 string")
    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text):
        raise ValueError("invalid bech32 separator position")
    hrp, rest = text[:pos], text[pos + 1 :]
    if any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise ValueError("invalid character in human-readable part")
    try:
        data = [_CHARSET_REV[c] for c in rest]
    except KeyError as exc:
        raise ValueError(f"invalid bech32 character {exc.args[0]!r}") from None
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise ValueError("invalid bech32 checksum")
    return hrp, data[:-6]


def blake2b224(data: bytes) -> bytes:
    """Return the 28-byte BLAKE2b digest of data."""
    return hashlib.blake2b(bytes(data), digest_size=_HASH28_SIZE).digest()


def asset_fingerprint(policy_id: bytes, asset_name: bytes) -> str:
    """Return the asset1... fingerprint of a policy ID and asset name."""
    digest = hashlib.blake2b(bytes(policy_id) + bytes(asset_name), digest_size=20)
    return bech32_encode("asset", convert_bits(digest.digest(), 8, 5, True))


def _to_hash28(data: bytes) -> bytes:
    return bytes(data[:_HASH28_SIZE]).ljust(_HASH28_SIZE, b"\0")


def _b58decode(text: str) -> bytes:
    number = 0
    for char in text:
        try:
            number = number * 58 + _BASE58_REV[char]
        except KeyError:
            raise ValueError(f"invalid base58 character {char!r}") from None
    body = number.to_bytes((number.bit_length() + 7) // 8, "big")
    leading = len(text) - len(text.lstrip("1"))
    return b"\0" * leading + body


def _b58encode(data: bytes) -> str:
    number = int.from_bytes(data, "big")
    chars = []
    while number:
        number, rem = divmod(number, 58)
        chars.append(_BASE58[rem])
    leading = len(data) - len(data.lstrip(b"\0"))
    return "1" * leading + "".join(reversed(chars))


def _cbor_head(data: bytes, pos: int) -> tuple[int, int, int]:
    first = data[pos]
    major, info = first >> 5, first & 31
    if info < 24:
        return major, info, pos + 1
    size = {24: 1, 25: 2, 26: 4, 27: 8}.get(info)
    if size is None or pos + 1 + size > len(data):
        raise ValueError("malformed CBOR in Byron address")
    value = int.from_bytes(data[pos + 1 : pos + 1 + size], "big")
    return major, value, pos + 1 + size


def _decode_byron(text: str) -> bytes:
    data = _b58decode(text)
    try:
        major, count, pos = _cbor_head(data, 0)
        if (major, count) != (4, 2):
            raise ValueError("Byron address is not a two-element array")
        major, tag, pos = _cbor_head(data, pos)
        if (major, tag) != (6, 24):
            raise ValueError("Byron address payload is not tagged CBOR")
        major, length, pos = _cbor_head(data, pos)
        if major != 2 or pos + length > len(data):
            raise ValueError("Byron address payload is not a byte string")
        payload = data[pos : pos + length]
        major, crc, pos = _cbor_head(data, pos + length)
    except IndexError:
        raise ValueError("truncated Byron address") from None
    if major != 0 or pos != len(data):
        raise ValueError("malformed Byron address")
    if zlib.crc32(payload) != crc:
        raise ValueError("Byron address checksum mismatch")
    return data


class Address:
    """A Cardano address held as its raw bytes."""

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes) -> None:
        self._raw = bytes(raw)

    @property
    def raw(self) -> bytes:
        return self._raw

    @classmethod
    def parse(cls, text: str) -> Address:
        """Parse a bech32 (Shelley) or base58 (Byron) address string."""
        try:
            _, data = bech32_decode(text)
        except ValueError:
            try:
                return cls(_decode_byron(text))
            except ValueError as exc:
                raise ValueError(f"invalid address {text!r}: {exc}") from None
        raw = bytes(convert_bits(data, 5, 8, False))
        if not raw:
            raise ValueError(f"invalid address {text!r}: empty")
        return cls(raw)

    @property
    def kind(self) -> int:
        return self._raw[0] >> 4 if self._raw else 0

    @property
    def network_id(self) -> int:
        return self._raw[0] & 0x0F if self._raw else 0

    def stake_address(self) -> Address | None:
        """Return the reward address for the stake part, if there is one."""
        if self.kind in (14, 15):
            return self
        if self.kind > 3 or len(self._raw) < 1 + 2 * _HASH28_SIZE:
            return None
        header = (0xF0 if self.kind & 0b10 else 0xE0) | self.network_id
        stake = self._raw[1 + _HASH28_SIZE : 1 + 2 * _HASH28_SIZE]
        return Address(bytes([header]) + stake)

    def __str__(self) -> str:
        if not self._raw:
            return ""
        if self.kind == _BYRON_TYPE:
            return _b58encode(self._raw)
        hrp = "stake" if self.kind in (14, 15) else "addr"
        if self.network_id != 1:
            hrp += "_test"
        return bech32_encode(hrp, convert_bits(self._raw, 8, 5, True))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Address) and other._raw == self._raw

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return f"Address({str(self)!r})"


@dataclass
class MultiAsset:
    """Native asset quantities keyed by policy ID, then asset name."""

    data: dict[bytes, dict[bytes, int]] = field(default_factory=dict)

    def policies(self) -> list[bytes]:
        return list(self.data)

    def assets(self, policy_id: bytes) -> list[bytes]:
        return list(self.data.get(bytes(policy_id), {}))

    def to_json(self) -> list[dict[str, Any]]:
        return [
            {
                "name": name.decode("utf-8", "replace"),
                "nameHex": name.hex(),
                "policyId": policy.hex(),
                "fingerprint": asset_fingerprint(policy, name),
                "amount": amount,
            }
            for policy, assets in self.data.items()
            for name, amount in assets.items()
        ]


@dataclass(frozen=True)
class Credential:
    """A stake or payment credential: a key hash or a script hash."""

    cred_type: int
    credential: bytes

    def hash(self) -> bytes:
        return _to_hash28(self.credential)


@dataclass
class StakeDelegationCertificate:
    stake_credential: Credential
    pool_key_hash: bytes = b""
    cbor: bytes = b""


@dataclass
class StakeDeregistrationCertificate:
    stake_deregistration: Credential
    cbor: bytes = b""


@dataclass
class PoolRegistrationCertificate:
    operator: bytes
    cbor: bytes = b""


@dataclass
class PoolRetirementCertificate:
    pool_key_hash: bytes
    epoch: int = 0
    cbor: bytes = b""


@dataclass
class KupoMatch:
    """A matching output as reported by a Kupo indexer."""

    address: str
    value: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass
class ResolvedTransactionOutput:
    """A transaction output recovered from an indexer match."""

    address: Address
    amount: int
    assets: MultiAsset | None = None
    datum: Any = None
    datum_hash: bytes | None = None
    cbor: bytes = b""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"address": str(self.address), "amount": self.amount}
        if self.assets is not None:
            out["assets"] = self.assets.to_json()
        return out


def extract_asset_details_from_match(match: KupoMatch) -> tuple[MultiAsset, int]:
    """Split a match value into native assets and the lovelace amount."""
    assets: dict[bytes, dict[bytes, int]] = {}
    lovelace = 0
    for policy_id, policy_values in match.value.items():
        try:
            policy_bytes = bytes.fromhex(policy_id)
        except ValueError:
            _log.debug("PolicyId %s is not a valid hex string", policy_id)
            policy_bytes = policy_id.encode()
        policy_assets: dict[bytes, int] = {}
        for asset_name, amount in policy_values.items():
            if policy_id == "ada" and asset_name == "lovelace":
                lovelace = int(amount)
                _log.debug("Found ADA (lovelace): %d", lovelace)
                continue
            policy_assets[asset_name.encode()] = int(amount)
            _log.debug(
                "policyId: %s, assetName: %s, amount: %d",
                policy_id,
                asset_name,
                int(amount),
            )
        if policy_assets:
            assets[_to_hash28(policy_bytes)] = policy_assets
    return MultiAsset(assets), lovelace


def new_resolved_transaction_output(match: KupoMatch) -> ResolvedTransactionOutput:
    """Build a resolved output from an indexer match."""
    try:
        address = Address.parse(match.address)
    except ValueError as exc:
        raise ValueError(f"failed to convert base58 to bech32: {exc}") from exc
    assets, amount = extract_asset_details_from_match(match)
    _log.debug(
        "ResolvedTransactionOutput: address: %s, amount: %d, assets: %r",
        address,
        amount,
        assets,
    )
    return ResolvedTransactionOutput(
        address=address,
        amount=amount,
        assets=assets if assets.policies() else None,
    )