"""Tests for the MiMC sponge and commitment derivation."""

import pytest

from zknote.core.hasher import CommitmentHasher, Deposit
from zknote.core.merkle_tree import ZERO_VALUE
from zknote.core.note import Secret
from zknote.crypto.mimc import MiMCSponge, round_constants
from zknote.utils.hash import FIELD_SIZE, keccak256, keccak256_field


class TestKeccak:
    """Keccak-256 is the Ethereum variant, not NIST SHA3."""

    def test_empty_digest(self):
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

    def test_zero_value_constant(self):
        """The empty leaf is keccak256("tornado") reduced into the field."""
        assert keccak256_field("tornado") == ZERO_VALUE
        assert ZERO_VALUE == 21663839004416932945382355908790599225266501822907911457504978515578255421292


class TestMiMCSponge:
    """Known answers for the sponge used by the circuit and the contract."""

    def test_round_constants_shape(self):
        constants = round_constants()
        assert len(constants) == 220
        assert constants[0] == 0
        assert constants[-1] == 0
        assert all(0 <= c < FIELD_SIZE for c in constants)

    def test_first_zero_level(self, hasher):
        """H(zero, zero) matches the contract's hard-coded level-1 zero."""
        level1 = hasher.hash_pair(ZERO_VALUE, ZERO_VALUE)
        assert level1 == 0x256a6135777eee2fd26f54b8b7037a25439d5235caee224154186d2b8a52e31d

    def test_second_zero_level(self, hasher):
        level1 = hasher.hash_pair(ZERO_VALUE, ZERO_VALUE)
        level2 = hasher.hash_pair(level1, level1)
        assert level2 == 0x1151949895e82ab19924de92c40a3d6f7bcb60d92b00504b8199613683f0c200

    def test_hash_small_inputs(self, hasher):
        assert hasher.hash_elements([1, 2]) == (
            19814528709687996974327303300007262407299502847885145507292406548098437687919
        )
        assert hasher.hash_elements([1]) == (
            8792246410719720074073794355580855662772292438409936688983564419486782556587
        )

    def test_order_matters(self, hasher):
        assert hasher.hash_pair(1, 2) != hasher.hash_pair(2, 1)

    def test_rejects_non_field_input(self, hasher):
        with pytest.raises(ValueError):
            hasher.hash_elements([FIELD_SIZE])

    def test_invalid_key(self):
        with pytest.raises(ValueError):
            MiMCSponge(key=FIELD_SIZE)


class TestCommitmentHasher:
    """Tests for commitment and nullifier hash derivation."""

    def test_known_commitment(self, commitment_hasher):
        """Preimage halves are read as little-endian field elements."""
        secret = Secret(nullifier=1, secret=2)
        assert commitment_hasher.commitment_of(secret) == (
            19814528709687996974327303300007262407299502847885145507292406548098437687919
        )
        assert commitment_hasher.nullifier_hash_of(1) == (
            8792246410719720074073794355580855662772292438409936688983564419486782556587
        )

    def test_deterministic(self, commitment_hasher):
        secret = Secret.generate()
        assert commitment_hasher.commitment_of(secret) == commitment_hasher.commitment_of(secret)
        assert (commitment_hasher.nullifier_hash_of(secret.nullifier)
                == commitment_hasher.nullifier_hash_of(secret.nullifier))

    def test_domain_separation(self, commitment_hasher):
        for _ in range(5):
            secret = Secret.generate()
            assert (commitment_hasher.commitment_of(secret)
                    != commitment_hasher.nullifier_hash_of(secret.nullifier))

    def test_different_secrets_different_commitments(self, commitment_hasher):
        nullifier = Secret.generate().nullifier
        c1 = commitment_hasher.commitment_of(Secret(nullifier, 1))
        c2 = commitment_hasher.commitment_of(Secret(nullifier, 2))
        assert c1 != c2

    def test_hash_bytes_length_checked(self, commitment_hasher):
        with pytest.raises(ValueError):
            commitment_hasher.hash_bytes(b"")
        with pytest.raises(ValueError):
            commitment_hasher.hash_bytes(b"\x01" * 32)

    def test_create_deposit(self, commitment_hasher):
        secret = Secret(nullifier=1, secret=2)
        deposit = commitment_hasher.create_deposit(secret)

        assert isinstance(deposit, Deposit)
        assert deposit.nullifier == 1
        assert deposit.preimage == secret.preimage
        assert deposit.commitment_hex == "0x" + format(deposit.commitment, "064x")
        assert len(deposit.nullifier_hash_hex) == 66

    def test_default_hasher_is_mimc(self):
        assert isinstance(CommitmentHasher().hasher, MiMCSponge)
