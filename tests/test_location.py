"""
Tests for the location model: junctions, locations, assets and their
wire encoding.
"""

import pytest

from xnft.location import (
    AccountId32,
    AssetId,
    AssetInstance,
    Fungibility,
    GeneralIndex,
    GeneralKey,
    Location,
    MultiAsset,
    PalletInstance,
    Parachain,
    RELAY_LOCATION,
    account_location,
    parachain_account_location,
    parachain_collection_location,
    parachain_location,
    unversioned,
    versioned,
)

BOB = bytes(range(32))


# ── Locations ─────────────────────────────────────────────────────────

class TestLocation:
    def test_here(self):
        loc = Location()
        assert loc.is_here
        assert loc.to_wire() == {"parents": 0, "interior": "Here"}

    def test_relay_location(self):
        assert RELAY_LOCATION.to_wire() == {"parents": 1, "interior": "Here"}

    def test_x1_carries_a_single_junction(self):
        assert parachain_location(2095).to_wire() == {
            "parents": 1, "interior": {"X1": {"Parachain": 2095}},
        }

    def test_x2_carries_a_list(self):
        wire = parachain_collection_location(2095, 7).to_wire()
        assert wire == {
            "parents": 1,
            "interior": {"X2": [{"Parachain": 2095}, {"GeneralIndex": 7}]},
        }

    def test_collection_with_pallet_instance(self):
        loc = parachain_collection_location(2000, 3, pallet_instance=121)
        assert loc.interior == (Parachain(2000), PalletInstance(121), GeneralIndex(3))
        assert loc.to_wire()["interior"]["X3"][1] == {"PalletInstance": 121}

    def test_account_locations(self):
        assert account_location(BOB).interior == (AccountId32(BOB),)
        loc = parachain_account_location(2000, BOB)
        assert loc.parents == 1
        assert loc.interior[1].to_wire() == {
            "AccountId32": {"network": None, "id": "0x" + BOB.hex()},
        }

    def test_structural_equality_and_hashing(self):
        a = parachain_collection_location(2095, 1)
        b = Location(1, [Parachain(2095), GeneralIndex(1)])
        assert a == b
        assert {a: "x"}[b] == "x"

    def test_wire_decoding(self):
        loc = parachain_collection_location(2000, 5, pallet_instance=121)
        assert Location.from_wire(loc.to_wire()) == loc
        assert Location.from_wire({"parents": 1, "interior": "Here"}) == RELAY_LOCATION

    def test_parachain_id(self):
        assert parachain_account_location(2000, BOB).parachain_id() == 2000
        assert RELAY_LOCATION.parachain_id() is None

    def test_pushed(self):
        assert parachain_location(1).pushed(GeneralIndex(4)) == parachain_collection_location(1, 4)

    def test_negative_parents_rejected(self):
        with pytest.raises(ValueError):
            Location(-1)

    def test_too_many_junctions_rejected(self):
        with pytest.raises(ValueError):
            Location(0, tuple(GeneralIndex(i) for i in range(9)))

    def test_mismatched_arity_rejected(self):
        with pytest.raises(ValueError):
            Location.from_wire({"parents": 0, "interior": {"X3": [{"Parachain": 1}]}})

    def test_unknown_junction_rejected(self):
        with pytest.raises(ValueError):
            Location.from_wire({"parents": 0, "interior": {"X1": {"Plurality": 1}}})


# ── Junctions ─────────────────────────────────────────────────────────

class TestJunctions:
    def test_account_id_must_be_32_bytes(self):
        with pytest.raises(ValueError):
            AccountId32(b"\x01" * 31)

    def test_general_key_is_padded(self):
        wire = GeneralKey(b"\x00\x80").to_wire()
        assert wire["GeneralKey"]["length"] == 2
        assert wire["GeneralKey"]["data"] == "0x0080" + "00" * 30

    def test_general_key_limit(self):
        with pytest.raises(ValueError):
            GeneralKey(b"\x00" * 33)

    def test_general_key_decoding_trims_padding(self):
        key = GeneralKey(b"\x00\x80")
        loc = Location(1, (Parachain(2000), key))
        assert Location.from_wire(loc.to_wire()).interior[1] == key


# ── Assets ────────────────────────────────────────────────────────────

class TestAssets:
    def test_asset_id_is_concrete_or_abstract(self):
        with pytest.raises(ValueError):
            AssetId()
        with pytest.raises(ValueError):
            AssetId(location=RELAY_LOCATION, abstract="x")

    def test_reserve_para_id(self):
        asset = AssetId.concrete(parachain_collection_location(2095, 1))
        assert asset.reserve_para_id() == 2095
        assert AssetId.of_abstract("KSM").reserve_para_id() is None

    def test_asset_instance_variants(self):
        assert AssetInstance.undefined().to_wire() == "Undefined"
        assert AssetInstance.of_index(3).to_wire() == {"Index": 3}
        assert AssetInstance.of_array(b"\x01" * 4).to_wire() == {"Array4": "0x01010101"}

    def test_asset_instance_array_sizes(self):
        with pytest.raises(ValueError):
            AssetInstance.of_array(b"\x01" * 5)

    def test_asset_instance_decoding(self):
        assert AssetInstance.from_wire({"Index": 9}) == AssetInstance.of_index(9)
        assert AssetInstance.from_wire("Undefined") == AssetInstance()

    def test_multiasset_wire(self):
        nft = MultiAsset.non_fungible(
            AssetId.concrete(parachain_collection_location(2095, 1)), AssetInstance.of_index(2))
        assert nft.to_wire() == {
            "id": {"Concrete": {"parents": 1, "interior": {"X2": [{"Parachain": 2095},
                                                                  {"GeneralIndex": 1}]}}},
            "fun": {"NonFungible": {"Index": 2}},
        }
        assert MultiAsset.from_wire(nft.to_wire()) == nft

    def test_fungibility(self):
        assert Fungibility(amount=10).is_fungible
        assert not Fungibility(instance=AssetInstance.of_index(1)).is_fungible

    def test_versioned(self):
        fee = MultiAsset.fungible(AssetId.concrete(parachain_location(2095)), 10)
        assert versioned(fee) == {"V3": fee.to_wire()}
        assert unversioned(versioned(fee)) == fee.to_wire()

    def test_unversioned_requires_tag(self):
        with pytest.raises(ValueError):
            unversioned({"V2": {}})
