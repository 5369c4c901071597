"""Drive a small in-process cluster of Raft nodes over a simulated network."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Iterable, List, Sequence, Tuple

from raftkv.core_types import (
    AppendEntriesArgs,
    AppendEntriesReply,
    RequestVoteArgs,
    RequestVoteReply,
    RpcMessage,
    Server,
)

Envelope = Tuple[int, int, RpcMessage]


def deliver(servers: Iterable[Server], messages: Iterable[Envelope]) -> List[Tuple[int, RpcMessage]]:
    """Hand each (sender, receiver, message) to its receiver.

    Returns the replies produced, as (replying server id, reply) pairs.
    Messages addressed to unknown servers are dropped.
    """
    by_id = {server.id: server for server in servers}
    replies: List[Tuple[int, RpcMessage]] = []
    for sender_id, receiver_id, message in messages:
        receiver = by_id.get(receiver_id)
        if receiver is None:
            continue
        print(f"[Network] Delivering message from S{sender_id} to S{receiver_id}: {message!r}")
        match message:
            case RequestVoteArgs():
                reply = receiver.handle_request_vote(message)
                print(f"[Server {receiver.id}] Sent RequestVoteReply: {reply!r}")
                replies.append((receiver.id, reply))
            case AppendEntriesArgs():
                reply = receiver.handle_append_entries(message)
                print(f"[Server {receiver.id}] Sent AppendEntriesReply: {reply!r}")
                replies.append((receiver.id, reply))
            case RequestVoteReply():
                print(f"[Network] S{receiver_id} received RequestVoteReply (handler TBD): {message!r}")
            case AppendEntriesReply():
                print(
                    f"[Network] S{receiver_id} received AppendEntriesReply (handler TBD): {message!r}"
                )
    return replies


def server_summary(server: Server) -> str:
    """One-line overview of a server's state."""
    return (
        f"S{server.id}: Term={server.current_term}, State={server.state}, "
        f"LogLen={len(server.log)}, Commit={server.commit_index}, "
        f"Applied={server.last_applied}, VotedFor={server.voted_for}"
    )


def server_details(label: str, server: Server) -> str:
    """Labelled description of a server's state."""
    return (
        f"{label}: ID={server.id}, Term={server.current_term}, State={server.state}, "
        f"VotedFor={server.voted_for}, LogLen={len(server.log)}, "
        f"CommitIdx={server.commit_index}, AppliedIdx={server.last_applied}"
    )


def run_simulation(
    peer_ids: Sequence[int] = (1, 2, 3),
    ticks: int = 100,
    tick_interval: float = 0.05,
) -> List[Server]:
    """Run the cluster for ``ticks`` rounds and return the servers afterwards."""
    peer_ids = list(peer_ids)
    servers = [Server(peer_id) for peer_id in peer_ids]

    for tick_num in range(ticks):
        print(f"\n--- TICK {tick_num} ---")

        outgoing: List[Envelope] = []
        for server in servers:
            others = [peer_id for peer_id in peer_ids if peer_id != server.id]
            outgoing.extend((server.id, target, msg) for target, msg in server.tick(others))

        if outgoing:
            print(f"--- Delivering {len(outgoing)} messages this tick ---")
        deliver(servers, outgoing)

        for server in servers:
            print(server_summary(server))

        if tick_interval > 0:
            time.sleep(tick_interval)

    return servers


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Simulate a small Raft key-value cluster.")
    parser.add_argument("--ticks", type=int, default=100, help="number of rounds to run")
    parser.add_argument(
        "--interval", type=float, default=0.05, help="seconds to sleep between rounds"
    )
    parser.add_argument(
        "--peers", type=int, nargs="+", default=[1, 2, 3], help="ids of the cluster members"
    )
    parser.add_argument("--verbose", action="store_true", help="show per-node log messages")
    args = parser.parse_args(argv)

    if args.ticks < 0:
        parser.error("--ticks must not be negative")
    if args.interval < 0:
        parser.error("--interval must not be negative")

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(message)s",
        stream=sys.stdout,
    )
    print("--- Simplified Raft KV Store Simulation ---")
    run_simulation(args.peers, args.ticks, args.interval)
    return 0


if __name__ == "__main__":
    sys.exit(main())