"""Raft node state, RPC messages and the replicated key-value store."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

ELECTION_TIMEOUT_BASE = 0.150
HEARTBEAT_INTERVAL = 0.050


class NodeState(Enum):
    """Role a node plays in the cluster."""

    FOLLOWER = "Follower"
    CANDIDATE = "Candidate"
    LEADER = "Leader"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SetCommand:
    """Store ``value`` under ``key``."""

    key: str
    value: str


@dataclass(frozen=True)
class DeleteCommand:
    """Remove ``key`` from the store."""

    key: str


Command = Union[SetCommand, DeleteCommand]


@dataclass(frozen=True)
class LogEntry:
    """A command together with the term in which the leader received it."""

    term: int
    command: Command


@dataclass(frozen=True)
class AppendEntriesReply:
    term: int
    success: bool


@dataclass(frozen=True)
class RequestVoteReply:
    term: int
    vote_granted: bool


@dataclass(frozen=True)
class RequestVoteArgs:
    term: int
    candidate_id: int
    last_log_index: int
    last_log_term: int


@dataclass
class AppendEntriesArgs:
    term: int
    leader_id: int
    prev_log_index: int
    prev_log_term: int
    entries: List[LogEntry] = field(default_factory=list)
    leader_commit: int = 0


RpcMessage = Union[RequestVoteArgs, RequestVoteReply, AppendEntriesArgs, AppendEntriesReply]


def _randomized_election_timeout(base: float) -> float:
    """Return the election timeout derived from ``base`` (base plus half of it, in whole ms)."""
    base_ms = round(base * 1000)
    return (base_ms + base_ms // 2) / 1000


@dataclass(eq=False)
class Server:
    """A single Raft node holding a log and the key-value store it drives.

    Log indices are 1-based as in the Raft paper; index 0 means "no entry".
    """

    id: int
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    state: NodeState = NodeState.FOLLOWER
    current_term: int = 0
    voted_for: Optional[int] = None
    log: List[LogEntry] = field(default_factory=list)
    commit_index: int = 0
    last_applied: int = 0
    next_index: dict = field(default_factory=dict)
    match_index: dict = field(default_factory=dict)
    kv_store: dict = field(default_factory=dict)
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    election_timeout_base: float = ELECTION_TIMEOUT_BASE
    election_timeout_due: float = field(init=False)

    def __post_init__(self) -> None:
        self.election_timeout_due = self.clock() + _randomized_election_timeout(
            self.election_timeout_base
        )

    @property
    def _last_log_term(self) -> int:
        return self.log[-1].term if self.log else 0

    def reset_election_timer(self) -> None:
        """Push the election deadline one timeout into the future."""
        self.election_timeout_due = self.clock() + _randomized_election_timeout(
            self.election_timeout_base
        )
        logger.info(
            "[Server %s Term %s] Election timer reset. Due at: %s",
            self.id,
            self.current_term,
            self.election_timeout_due,
        )

    def tick(self, peers) -> List[Tuple[int, RpcMessage]]:
        """Advance the node's timers and return the messages it wants to send."""
        outgoing: List[Tuple[int, RpcMessage]] = []
        now = self.clock()

        if self.state is NodeState.FOLLOWER:
            if now >= self.election_timeout_due:
                logger.info(
                    "[Server %s Term %s] Election timeout! Becoming Candidate.",
                    self.id,
                    self.current_term,
                )
                self.state = NodeState.CANDIDATE
        elif self.state is NodeState.CANDIDATE:
            if now >= self.election_timeout_due:
                logger.info(
                    "[Server %s] Starting new election for Term %s",
                    self.id,
                    self.current_term + 1,
                )
                self.current_term += 1
                self.voted_for = self.id
                self.reset_election_timer()
                args = RequestVoteArgs(
                    term=self.current_term,
                    candidate_id=self.id,
                    last_log_index=len(self.log),
                    last_log_term=self._last_log_term,
                )
                outgoing.extend((peer_id, args) for peer_id in peers if peer_id != self.id)
        else:
            logger.info(
                "[Server %s Term %s] Leader tick (heartbeat logic TBD).",
                self.id,
                self.current_term,
            )

        old_last_applied = self.last_applied
        if self.commit_index > self.last_applied:
            self.apply_committed_entries()
            if self.last_applied > old_last_applied:
                logger.info(
                    "[Server %s] Applied %s entries. KV store: %s",
                    self.id,
                    self.last_applied - old_last_applied,
                    self.kv_store,
                )

        return outgoing

    def _reject_append(self) -> AppendEntriesReply:
        return AppendEntriesReply(term=self.current_term, success=False)

    def handle_append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        """Process an AppendEntries RPC from a leader."""
        logger.info(
            "[Server %s Term %s State %s] Received AppendEntries from Leader %s in Term %s",
            self.id,
            self.current_term,
            self.state,
            args.leader_id,
            args.term,
        )

        if args.term < self.current_term:
            logger.info(
                "[Server %s] Rejecting AppendEntries: Leader's term %s is old (our term is %s)",
                self.id,
                args.term,
                self.current_term,
            )
            return self._reject_append()

        self.reset_election_timer()

        if args.term > self.current_term:
            logger.info(
                "[Server %s] New term %s from leader %s. Updating term and becoming Follower.",
                self.id,
                args.term,
                args.leader_id,
            )
            self.current_term = args.term
            self.state = NodeState.FOLLOWER
            self.voted_for = None
        elif self.state is NodeState.CANDIDATE:
            logger.info(
                "[Server %s] Candidate in term %s received valid AppendEntries from Leader %s. "
                "Becoming Follower.",
                self.id,
                self.current_term,
                args.leader_id,
            )
            self.state = NodeState.FOLLOWER

        if args.prev_log_index > 0:
            prev_pos = args.prev_log_index - 1
            if prev_pos >= len(self.log):
                logger.info(
                    "[Server %s] Rejecting AppendEntries: Log doesn't have entry at "
                    "prev_log_index %s (our log len is %s). Mismatch.",
                    self.id,
                    args.prev_log_index,
                    len(self.log),
                )
                return self._reject_append()
            if self.log[prev_pos].term != args.prev_log_term:
                logger.info(
                    "[Server %s] Rejecting AppendEntries: Term mismatch at prev_log_index %s. "
                    "Expected term %s, got %s. Mismatch.",
                    self.id,
                    args.prev_log_index,
                    args.prev_log_term,
                    self.log[prev_pos].term,
                )
                return self._reject_append()

        for offset, new_entry in enumerate(args.entries):
            pos = args.prev_log_index + offset
            if pos < len(self.log):
                if self.log[pos].term != new_entry.term:
                    logger.info(
                        "[Server %s] Conflict at index %s: existing term %s, new entry term %s. "
                        "Truncating log.",
                        self.id,
                        pos + 1,
                        self.log[pos].term,
                        new_entry.term,
                    )
                    del self.log[pos:]
                    self.log.append(new_entry)
            else:
                self.log.append(new_entry)

        logger.info("[Server %s] Log after AppendEntries: %s", self.id, self.log)

        if args.leader_commit > self.commit_index:
            self.commit_index = min(args.leader_commit, len(self.log))
            logger.info("[Server %s] Updated commit_index to %s", self.id, self.commit_index)

        return AppendEntriesReply(term=self.current_term, success=True)

    def apply_committed_entries(self) -> None:
        """Apply every committed but unapplied entry to the key-value store."""
        while self.last_applied < self.commit_index:
            self.last_applied += 1
            pos = self.last_applied - 1
            if pos >= len(self.log):
                logger.error(
                    "[Server %s] CRITICAL ERROR: Trying to apply log index %s (vec index %s) "
                    "but log length is %s. Halting application.",
                    self.id,
                    self.last_applied,
                    pos,
                    len(self.log),
                )
                self.last_applied -= 1
                break

            command = self.log[pos].command
            logger.info(
                "[Server %s Term %s] Applying log index %s to KV store: %s",
                self.id,
                self.current_term,
                self.last_applied,
                command,
            )
            match command:
                case SetCommand(key=key, value=value):
                    self.kv_store[key] = value
                case DeleteCommand(key=key):
                    self.kv_store.pop(key, None)

        if self.last_applied > 0 or self.kv_store:
            logger.info(
                "[Server %s] KV Store after applying entries up to index %s: %s",
                self.id,
                self.last_applied,
                self.kv_store,
            )

    def handle_request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        """Process a RequestVote RPC from a candidate."""
        logger.info(
            "[Server %s Term %s State %s] Received RequestVote from Candidate %s in Term %s",
            self.id,
            self.current_term,
            self.state,
            args.candidate_id,
            args.term,
        )

        if args.term < self.current_term:
            logger.info(
                "[Server %s] Rejecting vote: Candidate's term %s is old (our term is %s)",
                self.id,
                args.term,
                self.current_term,
            )
            self.reset_election_timer()
            return RequestVoteReply(term=self.current_term, vote_granted=False)

        if args.term > self.current_term:
            logger.info(
                "[Server %s] Candidate %s has newer term %s. Updating my term, becoming "
                "Follower, clearing vote.",
                self.id,
                args.candidate_id,
                args.term,
            )
            self.current_term = args.term
            self.state = NodeState.FOLLOWER
            self.voted_for = None
            self.reset_election_timer()

        free_to_vote = self.voted_for is None or self.voted_for == args.candidate_id

        our_last_term = self._last_log_term
        our_last_index = len(self.log)
        if args.last_log_term != our_last_term:
            candidate_up_to_date = args.last_log_term > our_last_term
        else:
            candidate_up_to_date = args.last_log_index >= our_last_index

        vote_granted = free_to_vote and candidate_up_to_date
        if vote_granted:
            logger.info(
                "[Server %s] Granting vote to Candidate %s for Term %s",
                self.id,
                args.candidate_id,
                self.current_term,
            )
            self.voted_for = args.candidate_id
            self.state = NodeState.FOLLOWER
            self.reset_election_timer()
        else:
            logger.info(
                "[Server %s] Rejecting vote for Candidate %s for Term %s. Prior vote: %s, "
                "Candidate up-to-date: %s",
                self.id,
                args.candidate_id,
                self.current_term,
                self.voted_for,
                candidate_up_to_date,
            )

        return RequestVoteReply(term=self.current_term, vote_granted=vote_granted)