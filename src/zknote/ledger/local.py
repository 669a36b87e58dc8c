"""SQLAlchemy-backed in-process ledger.

Applies the same rules as the pool contract: fixed denomination, unique
commitments, a bounded ring of recent roots, a nullifier-spent set and a
pluggable proof verifier. Used for local development and tests; a
production deployment points the client at the real ledger instead.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy import Column, DateTime, Integer, String, create_engine, func
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from zknote.core.merkle_tree import MerkleTree
from zknote.crypto.mimc import FieldHasher
from zknote.exceptions import LedgerRevert
from zknote.ledger.base import DepositEvent, Ledger, TxReceipt
from zknote.utils.encoding import hex_to_int, to_hex
from zknote.utils.hash import FIELD_SIZE, keccak256

logger = logging.getLogger(__name__)

Base = declarative_base()

# verifier(proof, [root, nullifier_hash, recipient, relayer, fee, refund]) -> bool
ProofVerifier = Callable[[bytes, Sequence[int]], bool]


class DepositRecord(Base):
    """Deposit log entry."""
    __tablename__ = "deposits"

    leaf_index = Column(Integer, primary_key=True)
    commitment = Column(String(66), unique=True, nullable=False, index=True)
    block_number = Column(Integer, nullable=False, index=True)
    transaction_hash = Column(String(66), unique=True, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<DepositRecord(index={self.leaf_index} {self.commitment[:10]}...)>"


class RootRecord(Base):
    """One slot of the root history ring."""
    __tablename__ = "root_history"

    slot = Column(Integer, primary_key=True)
    root = Column(String(66), nullable=False, index=True)
    num_leaves = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<RootRecord(slot={self.slot} {self.root[:10]}... {self.num_leaves} leaves)>"


class NullifierRecord(Base):
    """Spent nullifier hash."""
    __tablename__ = "nullifiers"

    id = Column(Integer, primary_key=True)
    nullifier_hash = Column(String(66), unique=True, nullable=False, index=True)
    recipient = Column(String(42), nullable=False)
    relayer = Column(String(42), nullable=False)
    fee = Column(String(66), nullable=False)
    refund = Column(String(66), nullable=False)
    block_number = Column(Integer, nullable=False, index=True)
    transaction_hash = Column(String(66), unique=True, nullable=False)
    spent_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<NullifierRecord({self.nullifier_hash[:10]}...)>"


class LocalLedger(Ledger):
    """
    Pool ledger kept in a SQL database.

    Every accepted transaction occupies its own block, so block numbers
    increase by one per deposit or withdrawal. All database access goes
    through one lock, which makes a shared in-memory engine safe to use
    from several client threads.
    """

    DEFAULT_ROOT_HISTORY_SIZE = 30

    def __init__(
        self,
        verifier: ProofVerifier,
        database_url: str = "sqlite://",
        tree_height: int = MerkleTree.DEFAULT_HEIGHT,
        denomination: int = 10**18,
        native: bool = True,
        root_history_size: int = DEFAULT_ROOT_HISTORY_SIZE,
        hasher: Optional[FieldHasher] = None,
    ):
        """
        Initialize ledger and replay any stored deposits.

        Args:
            verifier: Proof verification callable
            database_url: SQLAlchemy database URL (default in-memory SQLite)
            tree_height: Height of the commitment tree
            denomination: Deposit value in base units
            native: True if the pool holds the native asset
            root_history_size: Number of recent roots accepted at withdrawal
            hasher: Node hash, must match the client's
        """
        if root_history_size < 1:
            raise ValueError("Root history size must be positive")

        self.verifier = verifier
        self.database_url = database_url
        self.denomination = denomination
        self.native = native
        self.root_history_size = root_history_size

        engine_kwargs = {"echo": False}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

        # Ledger-side tree, mirrors what the contract stores incrementally
        self._lock = threading.Lock()
        with self.get_session() as session:
            self.tree = self._load_tree(session, tree_height, hasher)
            if session.get(RootRecord, 0) is None:
                self._record_root(session)
                session.commit()

        logger.info("Ledger ready: %d deposits, root %s", len(self.tree), to_hex(self.tree.root))

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def drop_tables(self):
        """Drop all tables (for testing)."""
        Base.metadata.drop_all(self.engine)

    # Internal helpers
    @staticmethod
    def _load_tree(session: Session, tree_height: int, hasher: Optional[FieldHasher]) -> MerkleTree:
        stored = session.query(DepositRecord).order_by(DepositRecord.leaf_index).all()
        return MerkleTree(
            tree_height=tree_height,
            leaves=[hex_to_int(d.commitment) for d in stored],
            hasher=hasher,
        )

    def _next_block(self, session: Session) -> int:
        last_deposit = session.query(func.max(DepositRecord.block_number)).scalar() or 0
        last_withdrawal = session.query(func.max(NullifierRecord.block_number)).scalar() or 0
        return max(last_deposit, last_withdrawal) + 1

    def _record_root(self, session: Session) -> None:
        """Write the current root into the next ring slot."""
        slot = len(self.tree) % self.root_history_size
        record = session.get(RootRecord, slot)
        root_hex = to_hex(self.tree.root)
        if record is None:
            session.add(RootRecord(slot=slot, root=root_hex, num_leaves=len(self.tree)))
        else:
            record.root = root_hex
            record.num_leaves = len(self.tree)

    @staticmethod
    def _tx_hash(kind: str, block_number: int, payload: str) -> str:
        return to_hex(keccak256(f"{kind}:{block_number}:{payload}"))

    # Queries
    def get_events(self, from_block: int = 0, to_block: Optional[int] = None) -> List[DepositEvent]:
        with self._lock, self.get_session() as session:
            query = session.query(DepositRecord).filter(DepositRecord.block_number >= from_block)
            if to_block is not None:
                query = query.filter(DepositRecord.block_number <= to_block)
            return [
                DepositEvent(
                    commitment=record.commitment,
                    leaf_index=record.leaf_index,
                    block_number=record.block_number,
                    timestamp=record.timestamp,
                )
                for record in query.order_by(DepositRecord.block_number).all()
            ]

    @staticmethod
    def _root_in_history(session: Session, root: str) -> bool:
        root_int = hex_to_int(root)
        if root_int == 0:
            return False
        return session.query(RootRecord).filter_by(root=to_hex(root_int)).first() is not None

    def is_known_root(self, root: str) -> bool:
        with self._lock, self.get_session() as session:
            return self._root_in_history(session, root)

    def is_spent(self, nullifier_hash: str) -> bool:
        with self._lock, self.get_session() as session:
            key = to_hex(hex_to_int(nullifier_hash))
            return session.query(NullifierRecord).filter_by(nullifier_hash=key).first() is not None

    # Submissions
    def submit_deposit(self, commitment: str, value: int) -> TxReceipt:
        """
        Append a commitment to the pool.

        Raises:
            LedgerRevert: On a duplicate commitment, wrong value or full tree
        """
        commitment_int = hex_to_int(commitment)
        commitment_hex = to_hex(commitment_int)

        with self._lock, self.get_session() as session:
            if commitment_int >= FIELD_SIZE:
                raise LedgerRevert("_left should be inside the field")
            if session.query(DepositRecord).filter_by(commitment=commitment_hex).first():
                raise LedgerRevert("The commitment has been submitted")
            if self.native and value != self.denomination:
                raise LedgerRevert("Please send `mixDenomination` ETH along with transaction")
            if not self.native and value != 0:
                raise LedgerRevert("ETH value is supposed to be 0 for ERC20 instance")
            if len(self.tree) >= self.tree.max_leaves:
                raise LedgerRevert("Merkle tree is full. No more leaves can be added")

            block_number = self._next_block(session)
            tx_hash = self._tx_hash("deposit", block_number, commitment_hex)
            leaf_index = self.tree.insert(commitment_int)
            try:
                session.add(DepositRecord(
                    leaf_index=leaf_index,
                    commitment=commitment_hex,
                    block_number=block_number,
                    transaction_hash=tx_hash,
                ))
                self._record_root(session)
                session.commit()
            except Exception:
                # The tree must only hold leaves the database stored
                session.rollback()
                self.tree = self._load_tree(session, self.tree.height, self.tree.hasher)
                logger.error("Deposit at leaf %d was not stored", leaf_index, exc_info=True)
                raise

        logger.info("Deposit accepted at leaf %d (block %d)", leaf_index, block_number)
        return TxReceipt(transaction_hash=tx_hash, block_number=block_number)

    def submit_withdrawal(
        self,
        proof: bytes,
        root: str,
        nullifier_hash: str,
        recipient: str,
        relayer: str,
        fee: str,
        refund: str,
        value: int = 0,
    ) -> TxReceipt:
        """
        Spend a note.

        Checks run in the contract's order; the first failure reverts.

        Raises:
            LedgerRevert: With the contract's reason string
        """
        public_inputs = [hex_to_int(v) for v in (root, nullifier_hash, recipient, relayer, fee, refund)]
        fee_int, refund_int = public_inputs[4], public_inputs[5]
        nullifier_key = to_hex(public_inputs[1])

        with self._lock, self.get_session() as session:
            if fee_int > self.denomination:
                raise LedgerRevert("Fee exceeds transfer value")
            if session.query(NullifierRecord).filter_by(nullifier_hash=nullifier_key).first():
                raise LedgerRevert("The note has been already spent")
            if not self._root_in_history(session, root):
                raise LedgerRevert("Cannot find your merkle root")
            if not self.verifier(proof, public_inputs):
                raise LedgerRevert("Invalid withdraw proof")
            if self.native:
                if value != 0:
                    raise LedgerRevert("Message value is supposed to be zero for ETH instance")
                if refund_int != 0:
                    raise LedgerRevert("Refund value is supposed to be zero for ETH instance")
            elif value != refund_int:
                raise LedgerRevert("Incorrect refund amount received by the contract")

            block_number = self._next_block(session)
            tx_hash = self._tx_hash("withdrawal", block_number, nullifier_key)
            session.add(NullifierRecord(
                nullifier_hash=nullifier_key,
                recipient=to_hex(public_inputs[2], 20),
                relayer=to_hex(public_inputs[3], 20),
                fee=to_hex(fee_int),
                refund=to_hex(refund_int),
                block_number=block_number,
                transaction_hash=tx_hash,
            ))
            session.commit()

        logger.info("Withdrawal accepted (block %d)", block_number)
        return TxReceipt(transaction_hash=tx_hash, block_number=block_number)

    def __repr__(self) -> str:
        return f"LocalLedger(deposits={len(self.tree)}, native={self.native}, url={self.database_url!r})"
