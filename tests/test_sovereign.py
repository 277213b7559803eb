"""
Tests for sovereign and pallet account derivation and SS58 rendering.
"""

import pytest

from xnft.sovereign import (
    SovereignKind,
    b58decode,
    b58encode,
    child_sovereign,
    derive_sovereign,
    pallet_account,
    pallet_sub_account,
    sibling_sovereign,
    ss58_decode,
    ss58_encode,
)

ALICE_PUBLIC = bytes.fromhex("d43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d")


class TestSovereign:
    def test_sibling_layout(self):
        account = sibling_sovereign(2000)
        assert len(account) == 32
        assert account == b"sibl" + bytes([0xD0, 0x07, 0x00, 0x00]) + b"\x00" * 24

    def test_child_layout(self):
        assert child_sovereign(2095) == b"para" + (2095).to_bytes(4, "little") + b"\x00" * 24

    def test_deterministic(self):
        assert derive_sovereign("sibling", 2000) == derive_sovereign(SovereignKind.SIBLING, 2000)
        assert sibling_sovereign(2000) != sibling_sovereign(2095)
        assert sibling_sovereign(2000) != child_sovereign(2000)

    def test_kind_parsing(self):
        assert SovereignKind.parse("child") is SovereignKind.CHILD
        with pytest.raises(ValueError):
            SovereignKind.parse("cousin")

    def test_para_id_range(self):
        assert derive_sovereign("child", 0xFFFF_FFFF)[4:8] == b"\xff" * 4
        with pytest.raises(ValueError):
            derive_sovereign("child", -1)
        with pytest.raises(ValueError):
            derive_sovereign("child", 2 ** 32)


class TestPalletAccounts:
    def test_pallet_account(self):
        assert pallet_account("aca/xNFT") == b"modlaca/xNFT" + b"\x00" * 20

    def test_sub_account_appends_index(self):
        assert pallet_sub_account("aca/aNFT", 1) == b"modlaca/aNFT\x01" + b"\x00" * 19
        assert pallet_sub_account("aca/aNFT", 256)[12:14] == b"\x00\x01"

    def test_sub_accounts_differ(self):
        assert pallet_sub_account("aca/aNFT", 0) != pallet_sub_account("aca/aNFT", 1)

    def test_pallet_id_length(self):
        with pytest.raises(ValueError):
            pallet_account("short")


class TestSS58:
    def test_known_address(self):
        assert ss58_encode(ALICE_PUBLIC, 42) == "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"

    def test_decode_known_address(self):
        fmt, account = ss58_decode("5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY")
        assert fmt == 42
        assert account == ALICE_PUBLIC

    @pytest.mark.parametrize("fmt", [0, 2, 8, 42, 255, 1000])
    def test_formats_decode_back(self, fmt):
        assert ss58_decode(ss58_encode(sibling_sovereign(2000), fmt)) == (fmt, sibling_sovereign(2000))

    def test_same_account_renders_per_ledger(self):
        account = sibling_sovereign(2095)
        assert ss58_encode(account, 8) != ss58_encode(account, 255)

    def test_bad_checksum(self):
        address = ss58_encode(ALICE_PUBLIC, 42)
        tampered = address[:-1] + ("Z" if address[-1] != "Z" else "Y")
        with pytest.raises(ValueError):
            ss58_decode(tampered)

    def test_account_length(self):
        with pytest.raises(ValueError):
            ss58_encode(b"\x01" * 20)

    def test_base58_leading_zeros(self):
        assert b58encode(b"\x00\x00\x01") == "112"
        assert b58decode("112") == b"\x00\x00\x01"
        with pytest.raises(ValueError):
            b58decode("0OIl")
